"""Fan a job result out to its configured outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from vatic.config.schema import JobConfig
from vatic.errors import OutputError, VaticError
from vatic.output.sinks import create_sink
from vatic.template.functions import RenderContext
from vatic.template.renderer import render

if TYPE_CHECKING:
    from vatic.channels.manager import ChannelManager


@dataclass
class OutputReport:
    """What happened to each output of one run."""

    delivered: list[int] = field(default_factory=list)
    errors: list[OutputError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class OutputDispatcher:
    """
    Delivers to every output in order.

    One failing output never stops the others; failures are collected into
    the returned ``OutputReport`` and logged, never raised.
    """

    def __init__(self, channels: "ChannelManager | None" = None):
        self.channels = channels

    async def dispatch(self, job: JobConfig, ctx: RenderContext) -> OutputReport:
        report = OutputReport()
        result = ctx.result or ""
        for index, output in enumerate(job.outputs, start=1):
            try:
                sink = create_sink(index, output, self.channels)
                message = await render(output.message, ctx) if output.message else result
                await sink.deliver(message, result, ctx.message)
            except OutputError as e:
                report.errors.append(e)
            except VaticError as e:
                report.errors.append(OutputError(output.name, index, str(e)))
            else:
                report.delivered.append(index)
                logger.debug(f"[{job.alias}] output #{index} ({output.name}) delivered")

        for error in report.errors:
            logger.error(f"[{job.alias}] {error}")
        return report
