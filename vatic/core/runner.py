"""Executes one job run from prompt rendering to output delivery."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from loguru import logger

from vatic.bus.events import InboundMessage
from vatic.config.dictionary import Dictionary
from vatic.config.schema import AgentConfig, EnvironmentConfig, JobConfig
from vatic.config.secrets import SecretsResolver
from vatic.errors import AgentError, JobRunError, RenderError, SandboxError, StoreError
from vatic.memory.sqlite_store import MemoryEntry, MemoryStore, SessionTurn
from vatic.output.dispatcher import OutputDispatcher, OutputReport
from vatic.providers.base import AgentBackend
from vatic.providers.registry import create_agent
from vatic.sandbox import Environment, create_environment
from vatic.template.functions import RenderContext
from vatic.template.parser import references
from vatic.template.renderer import render

if TYPE_CHECKING:
    from vatic.channels.manager import ChannelManager


@dataclass
class RunResult:
    alias: str
    prompt: str
    result: str
    entry: MemoryEntry
    outputs: OutputReport
    summary: str | None = None
    duration: float = 0.0


def build_session_prompt(turns: list[SessionTurn], prompt: str) -> str:
    """Prior turns as ``User:``/``Assistant:`` lines, then the new user line."""
    lines = []
    for turn in turns:
        lines.append(f"User: {turn.user_text}")
        lines.append(f"Assistant: {turn.assistant_text}")
    lines.append(f"User: {prompt}")
    return "\n".join(lines)


class JobRunner:
    """
    Runs jobs through render, environment, agent, history, store and outputs.

    Any failure before the memory entry is written aborts the run with a
    ``JobRunError`` naming the failed stage, and nothing is stored. Output
    failures are reported in the result instead.
    """

    def __init__(
        self,
        *,
        store: MemoryStore,
        dictionary: Dictionary | None = None,
        secrets: SecretsResolver | None = None,
        channels: "ChannelManager | None" = None,
        agent_factory: Callable[[AgentConfig, Environment], AgentBackend] | None = None,
        environment_factory: Callable[[EnvironmentConfig], Environment] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.dictionary = dictionary or Dictionary()
        self.secrets = secrets or SecretsResolver()
        self.outputs = OutputDispatcher(channels)
        self.agent_factory = agent_factory or create_agent
        self.environment_factory = environment_factory or create_environment
        self.clock = clock

    async def run_job(self, job: JobConfig, message: InboundMessage | None = None) -> RunResult:
        alias = job.alias
        started = time.monotonic()
        source = f"message from {message.sender} on {message.channel}" if message else "schedule"
        logger.info(f"[{alias}] run started ({source})")

        environment = self.environment_factory(job.environment)
        agent = self.agent_factory(job.agent, environment)

        try:
            ctx = RenderContext.capture(
                alias=alias,
                dictionary=self.dictionary,
                secrets=self.secrets,
                store=self.store,
                agent=agent,
                message=message,
                now=self.clock() if self.clock else None,
            )
            template = job.prompt if job.prompt else (message.text if message else None)
            if template is None:
                raise RenderError("job has no prompt and no triggering message")
            prompt = await render(template, ctx)
        except (RenderError, StoreError) as e:
            raise JobRunError(alias, "render", e) from e
        logger.debug(f"[{alias}] rendered prompt: {prompt}")

        session_key = message.session_key if (job.session and message) else None
        agent_prompt = prompt
        if session_key:
            try:
                turns = self.store.session_turns(alias, session_key)
            except StoreError as e:
                raise JobRunError(alias, "store", e) from e
            agent_prompt = build_session_prompt(turns, prompt)

        result = await self._complete(alias, agent, agent_prompt, job.agent.prompt, "agent")
        logger.info(f"[{alias}] agent answered {len(result)} chars")

        summary = None
        if job.history:
            summary = await self._summarize(job, agent, ctx.with_result(result))

        try:
            entry = self.store.append(alias, result, summary)
            if session_key:
                self.store.push_turn(alias, session_key, prompt, result, job.session.context)
        except StoreError as e:
            raise JobRunError(alias, "store", e) from e

        report = await self.outputs.dispatch(job, ctx.with_result(result))
        duration = time.monotonic() - started
        logger.info(
            f"[{alias}] run finished in {duration:.1f}s "
            f"({len(report.delivered)}/{len(job.outputs)} outputs delivered)"
        )
        return RunResult(alias, prompt, result, entry, report, summary, duration)

    async def _complete(
        self, alias: str, agent: AgentBackend, prompt: str, system_prompt: str | None, stage: str
    ) -> str:
        try:
            return await agent.complete(prompt, system_prompt)
        except SandboxError as e:
            raise JobRunError(alias, "environment" if stage == "agent" else stage, e) from e
        except AgentError as e:
            raise JobRunError(alias, stage, e) from e

    async def _summarize(self, job: JobConfig, agent: AgentBackend, ctx: RenderContext) -> str:
        template = job.history.prompt
        try:
            prompt = await render(template, ctx)
        except (RenderError, StoreError) as e:
            raise JobRunError(job.alias, "history", e) from e
        if not references(template, "result"):
            prompt = f"{prompt}\n\n{ctx.result}"
        summary = await self._complete(job.alias, agent, prompt, None, "history")
        logger.debug(f"[{job.alias}] history summary: {summary[:80]}")
        return summary
