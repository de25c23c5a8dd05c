"""Daemon wiring: store, channels, runner, orchestrator and signal handling."""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from vatic.bus.queue import MessageBus
from vatic.channels.manager import ChannelManager
from vatic.config.loader import LoadedConfig
from vatic.core.orchestrator import Orchestrator
from vatic.core.runner import JobRunner
from vatic.memory.sqlite_store import MemoryStore


class Daemon:
    """Long-running service: every channel, the cron timers and the worker pool."""

    def __init__(self, config: LoadedConfig, store: MemoryStore | None = None):
        settings = config.settings
        self.config = config
        self.store = store or MemoryStore(settings.db_path, config.secrets)
        self.bus = MessageBus()
        self.channels = ChannelManager(list(config.channels.values()), self.bus)
        self.runner = JobRunner(
            store=self.store,
            dictionary=config.dictionary,
            secrets=config.secrets,
            channels=self.channels,
        )
        self.orchestrator = Orchestrator(
            config.jobs,
            self.runner,
            bus=self.bus,
            workers=settings.workers,
            shutdown_grace=settings.shutdown_grace,
        )
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutdown requested")
            self._stop.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install a handler for {sig.name} on this platform")

    async def run(self) -> None:
        """Serve until SIGINT/SIGTERM or ``request_stop()``."""
        self.store.prune(self.config.settings.prune_keep)
        self._install_signal_handlers()

        self.orchestrator.start()
        await self.channels.start_all()
        logger.info(f"Channels enabled: {', '.join(self.channels.enabled_channels)}")

        try:
            await self._stop.wait()
        finally:
            await self.channels.stop_all()
            await self.orchestrator.shutdown()
