"""
Checkout Repository Integration Tests

Conditional updates and finalize transactions against PostgreSQL.

Usage:
    CHECKOUT_TEST_DB=1 pytest tests/integration/checkout -v
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from microservices.checkout_service.models import (
    Order, OrderItem, OrderStatus, PaymentRecord, PaymentRecordStatus, PaymentStatus,
)

from .conftest import insert_coupon, insert_product

pytestmark = [pytest.mark.integration, pytest.mark.asyncio, pytest.mark.requires_db]


def _order(product_id: str, quantity: int = 1, coupon_id=None, created_at=None) -> Order:
    now = created_at or datetime.now(timezone.utc)
    total = Decimal("500.00") * quantity
    return Order(
        order_id=f"ord_{uuid.uuid4().hex[:24]}",
        user_id="usr_integration",
        items=[OrderItem(
            product_id=product_id, quantity=quantity,
            list_price=Decimal("500.00"), unit_price=Decimal("500.00"), line_total=total,
        )],
        subtotal=total,
        final_amount=total,
        coupon_id=coupon_id,
        created_at=now,
        updated_at=now,
    )


def _record(order: Order) -> PaymentRecord:
    now = datetime.now(timezone.utc)
    return PaymentRecord(
        payment_record_id=f"payrec_{uuid.uuid4().hex[:20]}",
        order_id=order.order_id,
        gateway_order_id=f"order_{uuid.uuid4().hex[:14]}",
        amount=int(order.final_amount * 100),
        created_at=now,
        updated_at=now,
    )


class TestOrders:

    async def test_create_and_read_back(self, repository, db):
        await insert_product(db, "prd_1")
        order = await repository.create_order(_order("prd_1", 2))

        loaded = await repository.get_order(order.order_id)

        assert loaded.final_amount == Decimal("1000.00")
        assert loaded.items[0].quantity == 2
        assert loaded.status == OrderStatus.PENDING

    async def test_transition_is_compare_and_set(self, repository, db):
        await insert_product(db, "prd_1")
        order = await repository.create_order(_order("prd_1"))

        first = await repository.transition_order(
            order.order_id, [OrderStatus.PENDING], OrderStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
        )
        second = await repository.transition_order(
            order.order_id, [OrderStatus.PENDING], OrderStatus.CANCELLED,
        )

        assert first.status == OrderStatus.PAYMENT_FAILED
        assert second is None

    async def test_flag_refund_once(self, repository, db):
        await insert_product(db, "prd_1")
        order = await repository.create_order(_order("prd_1"))

        assert (await repository.flag_refund_required(order.order_id, "late capture")).refund_required
        assert await repository.flag_refund_required(order.order_id, "late capture") is None

    async def test_failed_attempt_is_noted_only_while_pending(self, repository, db):
        await insert_product(db, "prd_1", stock=3)
        order = await repository.create_order(_order("prd_1"))

        noted = await repository.note_failed_attempt(order.order_id, "Card declined")

        assert noted.status == OrderStatus.PENDING
        assert noted.failure_reason == "Card declined"

        async with repository.transaction() as tx:
            claimed = await tx.claim_pending_order(order.order_id)
        assert claimed.failure_reason is None
        assert await repository.note_failed_attempt(order.order_id, "Card declined") is None

    async def test_expire_pending_orders(self, repository, db):
        await insert_product(db, "prd_1")
        old = await repository.create_order(
            _order("prd_1", created_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        fresh = await repository.create_order(_order("prd_1"))
        await repository.create_payment_record(_record(old))

        expired = await repository.expire_pending_orders(datetime.now(timezone.utc) - timedelta(minutes=30))

        assert [o.order_id for o in expired] == [old.order_id]
        assert (await repository.get_order(fresh.order_id)).status == OrderStatus.PENDING
        records = await repository.get_payment_records(old.order_id)
        assert records[0].status == PaymentRecordStatus.FAILED


class TestFinalizeTransaction:

    async def test_commit(self, repository, db):
        await insert_product(db, "prd_1", stock=3)
        await insert_coupon(db, "cpn_1", "SAVE10")
        order = await repository.create_order(_order("prd_1", 2, coupon_id="cpn_1"))
        record = await repository.create_payment_record(_record(order))

        async with repository.transaction() as tx:
            assert await tx.claim_pending_order(order.order_id) is not None
            assert await tx.redeem_coupon("cpn_1", order.user_id, order.order_id, Decimal("100"))
            assert await tx.decrement_stock("prd_1", 2)
            assert await tx.verify_payment_record(order.order_id, record.gateway_order_id, "pay_1", "d" * 64)

        assert (await repository.get_products(["prd_1"]))["prd_1"].stock == 1
        assert (await repository.get_coupon_by_code("save10")).times_redeemed == 1
        assert await repository.count_user_redemptions("cpn_1", order.user_id) == 1
        assert (await repository.get_order(order.order_id)).status == OrderStatus.PROCESSING

    async def test_rollback_on_error(self, repository, db):
        await insert_product(db, "prd_1", stock=1)
        order = await repository.create_order(_order("prd_1"))

        with pytest.raises(RuntimeError):
            async with repository.transaction() as tx:
                await tx.claim_pending_order(order.order_id)
                await tx.decrement_stock("prd_1", 1)
                raise RuntimeError("abort")

        assert (await repository.get_order(order.order_id)).status == OrderStatus.PENDING
        assert (await repository.get_products(["prd_1"]))["prd_1"].stock == 1

    async def test_stock_never_goes_negative(self, repository, db):
        await insert_product(db, "prd_1", stock=1)

        async with repository.transaction() as tx:
            assert await tx.decrement_stock("prd_1", 2) is False

    async def test_concurrent_claims(self, repository, db):
        await insert_product(db, "prd_1")
        order = await repository.create_order(_order("prd_1"))

        async def claim():
            async with repository.transaction() as tx:
                return await tx.claim_pending_order(order.order_id)

        results = await asyncio.gather(claim(), claim(), claim())

        assert sum(1 for r in results if r is not None) == 1

    async def test_coupon_cap_under_concurrency(self, repository, db):
        await insert_product(db, "prd_1")
        await insert_coupon(db, "cpn_1", "ONE", usage_limit=1)
        orders = [await repository.create_order(_order("prd_1", coupon_id="cpn_1")) for _ in range(3)]

        async def redeem(order):
            async with repository.transaction() as tx:
                return await tx.redeem_coupon("cpn_1", f"usr_{order.order_id}", order.order_id, Decimal("50"))

        results = await asyncio.gather(*(redeem(o) for o in orders))

        assert results.count(True) == 1
