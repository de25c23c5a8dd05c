"""Job runs, the orchestrator and daemon wiring."""
