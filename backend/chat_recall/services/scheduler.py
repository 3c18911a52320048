"""In-process periodic trigger for the retry sweep.

Deployments with an external scheduler call ``POST /retry-queue/sweep`` instead
and leave ``enable_retry_sweeper`` off. Sweeps run strictly one after another.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from chat_recall.services.retry_queue import SweepResult

_LOGGER = logging.getLogger(__name__)


class RetrySweeper:
    def __init__(
        self,
        sweep: Callable[[], Awaitable[SweepResult]],
        *,
        interval_seconds: float,
        timeout_seconds: float,
    ) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="retry-sweeper")

    async def stop(self) -> None:
        self._stopped.set()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> Optional[SweepResult]:
        try:
            return await asyncio.wait_for(self._sweep(), self._timeout)
        except asyncio.TimeoutError:
            _LOGGER.error("Retry sweep timed out", extra={"timeout_seconds": self._timeout})
        except SQLAlchemyError:
            _LOGGER.exception("Retry sweep failed; database unavailable")
        return None

    async def _run(self) -> None:
        while not self._stopped.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), self._interval)
            except asyncio.TimeoutError:
                continue
