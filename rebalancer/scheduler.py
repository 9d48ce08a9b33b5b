from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .controller import RebalanceController

__all__ = ["RebalanceScheduler"]

_LOG = logging.getLogger(__name__)


class RebalanceScheduler:
    """Calls ``controller.trigger("periodic")`` every *interval* seconds."""

    def __init__(
        self,
        controller: RebalanceController,
        interval: float,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._controller = controller
        self._interval = interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, *, ticks: Optional[int] = None) -> None:
        done = 0
        while ticks is None or done < ticks:
            try:
                await self._controller.trigger("periodic")
            except asyncio.CancelledError:
                raise
            except Exception:
                # one bad tick must not kill the loop
                _LOG.exception("periodic rebalance failed")
            done += 1
            await self._sleep(self._interval)

    def start(self) -> asyncio.Task:
        if not self.running:
            _LOG.info("rebalancer scheduler started, interval=%ss", self._interval)
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        _LOG.info("rebalancer scheduler stopped")
