"""
Pending Order Sweeper - Unit Tests
"""
import asyncio
from datetime import datetime, timezone

import pytest

from microservices.checkout_service.models import SweepResult
from microservices.checkout_service.sweeper import PendingOrderSweeper

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


class FakeService:
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def expire_stale_orders(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("database down")
        return SweepResult(expired_order_ids=[], cutoff=datetime.now(timezone.utc))


class TestPendingOrderSweeper:

    async def test_run_once(self):
        service = FakeService()

        result = await PendingOrderSweeper(service).run_once()

        assert result.expired_order_ids == []
        assert service.calls == 1

    async def test_run_once_survives_errors(self):
        assert await PendingOrderSweeper(FakeService(fail=True)).run_once() is None

    async def test_start_and_stop(self):
        service = FakeService()
        sweeper = PendingOrderSweeper(service, interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert service.calls >= 2
        assert sweeper.is_running is False
