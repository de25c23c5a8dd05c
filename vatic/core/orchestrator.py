"""Dispatch queue, worker pool and per-job run guard for the daemon."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque

from loguru import logger

from vatic.bus.events import ChannelEvent, DispatchEvent, InboundMessage
from vatic.bus.queue import MessageBus
from vatic.config.schema import JobConfig
from vatic.core.runner import JobRunner
from vatic.cron.scheduler import CronScheduler
from vatic.errors import JobRunError
from vatic.routing.trigger import match_jobs


class Orchestrator:
    """
    Runs dispatch events on a bounded pool of workers.

    Events wait in a FIFO deque per job alias. An alias sits in the ready
    queue at most once and never while one of its runs is live, so each
    job has at most one run at a time and its events run in arrival order,
    while different jobs run in parallel up to ``workers``.

    Shutdown stops intake, drops queued events, gives live runs
    ``shutdown_grace`` seconds to finish and cancels the rest.
    """

    def __init__(
        self,
        jobs: dict[str, JobConfig],
        runner: JobRunner,
        bus: MessageBus | None = None,
        workers: int = 4,
        shutdown_grace: float = 30.0,
    ):
        self.jobs = jobs
        self.runner = runner
        self.bus = bus or MessageBus()
        self.workers = workers
        self.shutdown_grace = shutdown_grace
        self.scheduler = CronScheduler(list(jobs.values()), self.fire)

        self._pending: dict[str, deque[DispatchEvent]] = defaultdict(deque)
        self._ready: asyncio.Queue[str] = asyncio.Queue()
        self._scheduled: set[str] = set()  # aliases queued in _ready or running
        self._running: dict[str, asyncio.Task] = {}
        self._workers: list[asyncio.Task] = []
        self._router: asyncio.Task | None = None
        self._accepting = False
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self.bus.subscribe_channel_events(self._on_channel_event)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit(self, event: DispatchEvent) -> bool:
        """Queue ``event`` behind earlier events for the same job."""
        if not self._accepting:
            logger.warning(f"[{event.alias}] dispatch ignored, orchestrator is not accepting work")
            return False
        if event.alias not in self.jobs:
            logger.error(f"[{event.alias}] dispatch for unknown job ignored")
            return False

        self._pending[event.alias].append(event)
        self._outstanding += 1
        self._idle.clear()
        if event.alias not in self._scheduled:
            self._scheduled.add(event.alias)
            self._ready.put_nowait(event.alias)
        depth = len(self._pending[event.alias])
        logger.debug(f"[{event.alias}] queued {event.source} dispatch (pending: {depth})")
        return True

    async def fire(self, alias: str) -> None:
        """Cron callback."""
        self.submit(DispatchEvent(alias=alias, source="cron"))

    def route(self, msg: InboundMessage) -> int:
        """Dispatch every job whose trigger matches ``msg``."""
        matches = match_jobs(list(self.jobs.values()), msg)
        if not matches:
            logger.debug(f"No job matched message on {msg.channel} from {msg.sender}")
        for job, stripped in matches:
            self.submit(DispatchEvent(alias=job.alias, source="channel", message=stripped))
        return len(matches)

    async def _route_inbound(self) -> None:
        while True:
            msg = await self.bus.consume_inbound()
            try:
                self.route(msg)
            except Exception as e:
                logger.error(f"Routing message from {msg.channel} failed: {e}")

    async def _on_channel_event(self, event: ChannelEvent) -> None:
        if event.fatal:
            logger.error(f"Channel {event.channel} gave up: {event.error}; other channels keep running")

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        while True:
            alias = await self._ready.get()
            pending = self._pending[alias]
            if not pending:
                self._scheduled.discard(alias)
                continue
            event = pending.popleft()
            task = asyncio.create_task(self._execute(event), name=f"run:{alias}")
            self._running[alias] = task
            try:
                await task
            finally:
                self._running.pop(alias, None)
                self._finish_one()
                if pending and self._accepting:
                    self._ready.put_nowait(alias)
                else:
                    self._scheduled.discard(alias)

    async def _execute(self, event: DispatchEvent) -> None:
        job = self.jobs[event.alias]
        try:
            await self.runner.run_job(job, event.message)
        except asyncio.CancelledError:
            logger.warning(f"[{event.alias}] run cancelled")
            raise
        except JobRunError as e:
            logger.error(f"[{e.alias}] {e.stage} failed: {e.cause}")
        except Exception as e:
            logger.exception(f"[{event.alias}] run crashed: {e}")

    def _finish_one(self) -> None:
        self._outstanding = max(self._outstanding - 1, 0)
        if self._outstanding == 0:
            self._idle.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, with_cron: bool = True) -> None:
        self._accepting = True
        for i in range(self.workers):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"worker:{i}"))
        self._router = asyncio.create_task(self._route_inbound(), name="router")
        if with_cron:
            self.scheduler.start()
        logger.info(f"Orchestrator started: {len(self.jobs)} jobs, {self.workers} workers")

    async def join(self) -> None:
        """Wait until every queued and running event is done."""
        await self._idle.wait()

    def is_running(self, alias: str) -> bool:
        return alias in self._running

    async def shutdown(self) -> None:
        """Stop intake, drop queued events, then finish or cancel live runs."""
        self._accepting = False
        await self.scheduler.stop()
        if self._router:
            self._router.cancel()
            await asyncio.gather(self._router, return_exceptions=True)
            self._router = None

        dropped = 0
        for alias, pending in self._pending.items():
            if pending:
                logger.warning(f"[{alias}] dropping {len(pending)} queued dispatches on shutdown")
                dropped += len(pending)
                pending.clear()
        for _ in range(dropped):
            self._finish_one()

        live = list(self._running.values())
        if live:
            logger.info(f"Waiting up to {self.shutdown_grace:.0f}s for {len(live)} running jobs")
            _, still_running = await asyncio.wait(live, timeout=self.shutdown_grace)
            for task in still_running:
                logger.warning(f"{task.get_name()} exceeded the shutdown grace period, cancelling")
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Orchestrator stopped")
