"""Periodic asyncio worker that drives one engine.

The worker runs its tick immediately on start and then every
``interval_seconds`` measured from the start of the previous tick. A tick
that finds the previous one still in flight is skipped, so two cycles of the
same engine never overlap. Per-tick exceptions are logged and the loop
continues. Cancellation propagates.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class PeriodicWorker:
    """Runs ``tick`` on a fixed interval until stopped or cancelled.

    Args:
        name: Worker name used in log events.
        interval_seconds: Seconds between tick starts.
        tick: Coroutine function running one cycle.
        enabled: Disabled workers return from ``run`` immediately.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], Awaitable[Any]],
        enabled: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._tick = tick
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self.ticks_run = 0
        self.ticks_skipped = 0

    @property
    def is_running_tick(self) -> bool:
        return self._lock.locked()

    def stop(self) -> None:
        self._stopped.set()

    async def run_once(self) -> bool:
        """Run one tick unless one is in flight.

        Returns:
            True if the tick ran (successfully or not), False if skipped.
        """
        if self._lock.locked():
            self.ticks_skipped += 1
            logger.warning("worker_tick_skipped", worker=self.name)
            return False

        async with self._lock:
            self.ticks_run += 1
            try:
                await self._tick()
            except Exception as exc:
                logger.error(
                    "worker_tick_failed",
                    worker=self.name,
                    error=str(exc),
                    exc_info=True,
                )
        return True

    async def run(self) -> None:
        if not self.enabled:
            logger.info("worker_disabled", worker=self.name)
            return

        logger.info("worker_started", worker=self.name, interval_seconds=self.interval_seconds)
        loop = asyncio.get_running_loop()
        try:
            while not self._stopped.is_set():
                started = loop.time()
                await self.run_once()
                delay = max(0.0, self.interval_seconds - (loop.time() - started))
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stopped.wait(), timeout=delay)
        except asyncio.CancelledError:
            logger.info("worker_cancelled", worker=self.name)
            raise
        logger.info("worker_stopped", worker=self.name, ticks_run=self.ticks_run)
