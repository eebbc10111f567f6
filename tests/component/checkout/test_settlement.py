"""
Settlement Component Tests

verify_and_finalize() against in-memory storage: finalize atomicity,
idempotent replays, concurrent callbacks and finalize-time races.
"""
import asyncio
from decimal import Decimal

import pytest

from microservices.checkout_service.models import (
    ErrorKind, OrderStatus, PaymentRecordStatus, PaymentStatus,
)
from tests.fixtures import (
    make_cart_line, make_coupon, make_payment_id, make_product, make_user_id,
)

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


class TestVerifyAndFinalize:
    """Happy path and replay"""

    async def test_valid_payment_settles_order(
        self, driver, repo, mock_event_bus, frame, save10, user_id
    ):
        created = await driver.buy(user_id, frame.product_id, 2, coupon_code="SAVE10")
        payment_id = make_payment_id()

        result = await driver.pay(created, user_id=user_id, payment_id=payment_id)

        assert result.success is True
        assert result.status == OrderStatus.PROCESSING
        assert result.payment_status == PaymentStatus.PAID
        assert result.replayed is False

        order = repo.orders[created.order_id]
        assert order.status == OrderStatus.PROCESSING
        assert order.payment_status == PaymentStatus.PAID
        assert repo.stock_of(frame.product_id) == 8
        assert repo.redemptions_of(save10.coupon_id) == 1

        record = (await repo.get_payment_records(created.order_id))[0]
        assert record.status == PaymentRecordStatus.VERIFIED
        assert record.gateway_payment_id == payment_id
        assert record.signature_digest is not None
        assert len(record.signature_digest) == 64

        mock_event_bus.assert_event_published("order.paid", {"order_id": created.order_id})

    async def test_replay_returns_success_without_mutation(self, driver, repo, frame, save10, user_id):
        created = await driver.buy(user_id, frame.product_id, 2, coupon_code="SAVE10")
        callback = driver.callback(created)

        first = await driver.service.verify_and_finalize(**callback)
        second = await driver.service.verify_and_finalize(**callback)

        assert first.success is True
        assert second.success is True
        assert second.replayed is True
        assert second.status == OrderStatus.PROCESSING
        assert repo.stock_of(frame.product_id) == 8
        assert repo.redemptions_of(save10.coupon_id) == 1
        assert repo.get_call_count("claim_pending_order") == 1

    async def test_concurrent_duplicate_callbacks_settle_once(self, driver, repo, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)
        callback = driver.callback(created)

        results = await asyncio.gather(
            driver.service.verify_and_finalize(**callback),
            driver.service.verify_and_finalize(**callback),
            driver.service.verify_and_finalize(**callback),
        )

        assert all(r.success for r in results)
        assert sum(1 for r in results if not r.replayed) == 1
        assert repo.stock_of(frame.product_id) == 9

    async def test_different_payment_after_settlement_is_rejected(self, driver, repo, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)
        await driver.pay(created)

        result = await driver.pay(created)

        assert result.success is False
        assert result.error_code == ErrorKind.ORDER_NOT_PENDING
        assert repo.orders[created.order_id].status == OrderStatus.PROCESSING
        assert repo.stock_of(frame.product_id) == 9

    async def test_other_users_order_is_not_found(self, driver, repo, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)

        result = await driver.pay(created, user_id=make_user_id())

        assert result.error_code == ErrorKind.ORDER_NOT_FOUND
        assert repo.orders[created.order_id].status == OrderStatus.PENDING

    async def test_unknown_order(self, service):
        result = await service.verify_and_finalize("ord_missing", "order_x", "pay_x", "sig")

        assert result.success is False
        assert result.error_code == ErrorKind.ORDER_NOT_FOUND


class TestSignatureFailures:
    """Forged or mismatched callbacks"""

    async def test_wrong_secret_fails_order(self, driver, repo, mock_event_bus, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)

        result = await driver.pay(created, secret="not_the_merchant_secret")

        assert result.success is False
        assert result.error_code == ErrorKind.SIGNATURE_MISMATCH
        order = repo.orders[created.order_id]
        assert order.status == OrderStatus.PAYMENT_FAILED
        assert order.payment_status == PaymentStatus.FAILED
        assert (await repo.get_payment_records(created.order_id))[0].status == PaymentRecordStatus.FAILED
        assert repo.stock_of(frame.product_id) == 10
        mock_event_bus.assert_event_published("order.payment_failed", {"error_code": "SignatureMismatch"})

    async def test_mutated_payment_id_fails(self, driver, repo, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)
        callback = driver.callback(created)
        callback["gateway_payment_id"] = callback["gateway_payment_id"] + "x"

        result = await driver.service.verify_and_finalize(**callback)

        assert result.error_code == ErrorKind.SIGNATURE_MISMATCH
        assert repo.orders[created.order_id].status == OrderStatus.PAYMENT_FAILED

    async def test_second_failure_is_a_no_op(self, driver, repo, mock_event_bus, frame, user_id):
        created = await driver.buy(user_id, frame.product_id, 1)
        callback = driver.callback(created)
        callback["signature"] = "0" * 64

        first = await driver.service.verify_and_finalize(**callback)
        second = await driver.service.verify_and_finalize(**callback)

        assert first.error_code == ErrorKind.SIGNATURE_MISMATCH
        assert second.error_code == ErrorKind.SIGNATURE_MISMATCH
        assert repo.get_call_count("transition_order") == 1
        assert len(mock_event_bus.get_published("order.payment_failed")) == 1

    async def test_signature_for_foreign_gateway_order_fails(self, driver, repo, frame, user_id):
        """A valid signature for some other gateway order cannot settle this one"""
        mine = await driver.buy(user_id, frame.product_id, 1)
        theirs = await driver.buy(make_user_id(), frame.product_id, 1)
        callback = driver.callback(theirs)
        callback["order_id"] = mine.order_id

        result = await driver.service.verify_and_finalize(**callback)

        assert result.error_code == ErrorKind.SIGNATURE_MISMATCH
        assert repo.orders[mine.order_id].status == OrderStatus.PAYMENT_FAILED
        assert repo.orders[theirs.order_id].status == OrderStatus.PENDING


class TestFinalizeRaces:
    """Stock and coupon contention at finalize time"""

    async def test_race_for_last_unit(self, driver, repo, mock_event_bus):
        product = repo.set_product(make_product(stock=1))
        alice, bob = make_user_id(), make_user_id()
        first = await driver.buy(alice, product.product_id, 1)
        second = await driver.buy(bob, product.product_id, 1)

        results = await asyncio.gather(driver.pay(first), driver.pay(second))

        statuses = sorted(r.status.value for r in results)
        assert statuses == ["PAYMENT_FAILED", "PROCESSING"]
        loser = next(r for r in results if not r.success)
        assert loser.error_code == ErrorKind.INSUFFICIENT_STOCK
        assert loser.refund_required is True
        assert loser.payment_status == PaymentStatus.PAID
        assert repo.stock_of(product.product_id) == 0

        lost_order = repo.orders[loser.order_id]
        assert lost_order.refund_required is True
        record = (await repo.get_payment_records(loser.order_id))[0]
        assert record.status == PaymentRecordStatus.VERIFIED
        mock_event_bus.assert_event_published("order.refund_required", {"order_id": loser.order_id})

    async def test_stock_failure_rolls_back_coupon_redemption(self, driver, repo):
        scarce = repo.set_product(make_product(product_id="prd_z", stock=1))
        plenty = repo.set_product(make_product(product_id="prd_a", stock=5))
        coupon = repo.set_coupon(make_coupon(code="SAVE10"))
        user = make_user_id()
        created = await driver.create(
            user,
            [make_cart_line(plenty.product_id, 2), make_cart_line(scarce.product_id, 1)],
            coupon_code="SAVE10",
        )
        repo.products[scarce.product_id].stock = 0

        result = await driver.pay(created)

        assert result.error_code == ErrorKind.INSUFFICIENT_STOCK
        assert repo.stock_of(plenty.product_id) == 5
        assert repo.redemptions_of(coupon.coupon_id) == 0

    async def test_global_coupon_cap_rechecked_at_finalize(self, driver, repo, frame):
        coupon = repo.set_coupon(make_coupon(code="ONE", usage_limit=1))
        first = await driver.buy(make_user_id(), frame.product_id, 1, coupon_code="ONE")
        second = await driver.buy(make_user_id(), frame.product_id, 1, coupon_code="ONE")

        results = await asyncio.gather(driver.pay(first), driver.pay(second))

        assert sum(1 for r in results if r.success) == 1
        loser = next(r for r in results if not r.success)
        assert loser.error_code == ErrorKind.COUPON_LIMIT_EXCEEDED
        assert loser.refund_required is True
        assert repo.redemptions_of(coupon.coupon_id) == 1
        assert repo.stock_of(frame.product_id) == 9
