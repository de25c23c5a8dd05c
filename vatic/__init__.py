"""vatic - cron and chat triggered agent jobs."""

__version__ = "0.3.0"
__logo__ = "⏰"
