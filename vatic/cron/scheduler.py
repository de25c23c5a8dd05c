"""Cron timers feeding scheduled jobs into the dispatch queue."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from croniter import croniter
from loguru import logger

from vatic.config.schema import JobConfig


def local_now() -> datetime:
    return datetime.now().astimezone()


# a fire whose wake-up lags further than this (suspend, clock jump) is dropped
MISSED_FIRE_TOLERANCE = timedelta(seconds=60)


def compute_next_run(expr: str, after: datetime) -> datetime:
    """Next fire time strictly after ``after``."""
    return croniter(expr, after).get_next(datetime)


class CronScheduler:
    """
    One timer task per job with an ``interval``.

    Each task sleeps until the next fire time and then calls ``on_fire``
    with the job alias. The next fire is always computed from the current
    time and the wall clock is read again on wake-up, so fires missed while
    the machine slept or the daemon was down are skipped rather than replayed.
    """

    def __init__(
        self,
        jobs: list[JobConfig],
        on_fire: Callable[[str], Awaitable[None]],
        clock: Callable[[], datetime] = local_now,
    ):
        self.jobs = [job for job in jobs if job.interval]
        self.on_fire = on_fire
        self.clock = clock
        self._tasks: dict[str, asyncio.Task] = {}
        self._next: dict[str, datetime] = {}
        self._running = False

    def start(self) -> None:
        self._running = True
        for job in self.jobs:
            self._tasks[job.alias] = asyncio.create_task(self._run_job(job), name=f"cron:{job.alias}")
        if self.jobs:
            logger.info(f"Cron: {len(self.jobs)} scheduled jobs")

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run_job(self, job: JobConfig) -> None:
        last_fire: datetime | None = None
        while self._running:
            now = self.clock()
            base = max(now, last_fire) if last_fire else now
            fire_at = compute_next_run(job.interval, base)
            self._next[job.alias] = fire_at
            delay = (fire_at - now).total_seconds()
            logger.debug(f"[{job.alias}] next cron fire at {fire_at:%Y-%m-%d %H:%M} (in {delay:.0f}s)")
            await asyncio.sleep(max(delay, 0))
            last_fire = fire_at
            if not self._running:
                break
            # asyncio sleeps on the monotonic clock, which stops during a suspend
            lag = self.clock() - fire_at
            if lag > MISSED_FIRE_TOLERANCE:
                logger.warning(
                    f"[{job.alias}] skipping cron fire due at {fire_at:%Y-%m-%d %H:%M}, "
                    f"woke {lag.total_seconds():.0f}s late"
                )
                continue
            try:
                await self.on_fire(job.alias)
            except Exception as e:
                logger.error(f"[{job.alias}] cron dispatch failed: {e}")

    def status(self) -> dict[str, datetime]:
        """Next fire time per scheduled alias, for jobs whose timer has started."""
        return dict(self._next)
