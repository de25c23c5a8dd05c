"""Output sinks and the dispatcher that fans results out to them."""

from vatic.output.dispatcher import OutputDispatcher, OutputReport
from vatic.output.sinks import create_sink

__all__ = ["OutputDispatcher", "OutputReport", "create_sink"]
