"""
Coupon Evaluator

Advisory coupon validation at checkout-create time. Redemption limits
are re-checked atomically when the order is finalized.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from .models import Coupon, CouponEvaluation, DiscountType, quantize_money
from .protocols import (
    CouponExpiredError, CouponInvalidError, CouponLimitExceededError,
    CouponMinOrderNotMetError, CouponNotApplicableError, CouponStoreProtocol,
)

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(coupon: Coupon, order_value: Decimal) -> Decimal:
    """Discount for an order value; never negative and never above order_value"""
    order_value = max(Decimal("0"), Decimal(order_value))
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_value * coupon.discount_value / Decimal("100")
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
    else:
        discount = coupon.discount_value
    discount = min(max(discount, Decimal("0")), order_value)
    return quantize_money(discount)


def is_applicable(coupon: Coupon, product_ids: Iterable[str]) -> bool:
    """At least one ordered product must be eligible"""
    if coupon.is_for_all_products:
        return True
    eligible = set(coupon.applicable_product_ids)
    return any(product_id in eligible for product_id in product_ids)


class CouponEvaluator:
    """Validates a coupon code against an order"""

    def __init__(
        self,
        store: CouponStoreProtocol,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def evaluate(
        self,
        code: str,
        order_value: Decimal,
        product_ids: Iterable[str],
        user_id: str,
    ) -> CouponEvaluation:
        """
        Validate a coupon and compute its discount.

        Raises:
            CouponInvalidError: unknown, inactive or not yet valid
            CouponExpiredError: past validTo
            CouponMinOrderNotMetError: order value below the minimum
            CouponNotApplicableError: no ordered product is eligible
            CouponLimitExceededError: global or per-user limit reached
        """
        normalized = (code or "").strip().upper()
        coupon = await self.store.get_coupon_by_code(normalized) if normalized else None
        if coupon is None:
            raise CouponInvalidError("Coupon not found")
        if not coupon.is_active:
            raise CouponInvalidError("Coupon is inactive")

        now = _utc(self.clock())
        if coupon.valid_from is not None and now < _utc(coupon.valid_from):
            raise CouponInvalidError("Coupon is not yet valid")
        if coupon.valid_to is not None and now > _utc(coupon.valid_to):
            raise CouponExpiredError("Coupon has expired")

        if coupon.min_order_value is not None and order_value < coupon.min_order_value:
            raise CouponMinOrderNotMetError(
                f"Minimum order value of {quantize_money(coupon.min_order_value)} required"
            )

        if not is_applicable(coupon, list(product_ids)):
            raise CouponNotApplicableError("Coupon not applicable to selected items")

        if coupon.usage_limit is not None and coupon.times_redeemed >= coupon.usage_limit:
            raise CouponLimitExceededError("Coupon usage limit reached")

        if coupon.per_user_limit is not None:
            used = await self.store.count_user_redemptions(coupon.coupon_id, user_id)
            if used >= coupon.per_user_limit:
                raise CouponLimitExceededError("You have already used this coupon")

        discount = compute_discount(coupon, order_value)
        logger.info(f"Coupon {coupon.code} accepted for user {user_id}: discount {discount}")
        return CouponEvaluation(coupon=coupon, discount_amount=discount)
