from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .manager import TransactionManager

logger = logging.getLogger(__name__)


class TimeoutMonitor:
    """Background task that sweeps expired transactions on an interval"""

    def __init__(
        self,
        manager: TransactionManager,
        interval: float = 5.0,
        enabled: bool = True,
    ):
        self.manager = manager
        self.interval = interval
        self.enabled = enabled
        self.passes = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.enabled:
            logger.info("Transaction monitor disabled")
            return
        if self.is_running:
            return
        self._stop.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="txgate-timeout-monitor"
        )
        logger.info(
            "Transaction monitor started, sweeping every %.3fs", self.interval
        )

    async def stop(self) -> None:
        """Stop sweeping, waiting for a pass in progress to finish"""
        if self._task is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        await task
        logger.info("Transaction monitor stopped")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.manager.sweep()
            except Exception as e:
                logger.error("Transaction sweep failed: %s", e)
            self.passes += 1
