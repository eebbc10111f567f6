"""
Pending Order Sweeper

Background loop that fails PENDING orders left past the grace window.
Safe to run on every replica: the sweep is a conditional update and a
late legitimate finalize simply loses the race.
"""

import asyncio
import contextlib
import logging
from typing import Optional

from .checkout_service import CheckoutService
from .models import SweepResult

logger = logging.getLogger(__name__)


class PendingOrderSweeper:
    """Runs CheckoutService.expire_stale_orders on an interval"""

    def __init__(self, service: CheckoutService, interval_seconds: float = 60.0):
        self.service = service
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> Optional[SweepResult]:
        try:
            return await self.service.expire_stale_orders()
        except Exception as e:
            logger.error(f"Pending order sweep failed: {e}", exc_info=True)
            return None

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("Pending order sweeper cancelled")
                break

    def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Pending order sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Pending order sweeper stopped")
