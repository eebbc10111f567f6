"""
Checkout Service Events Module

Exports all event-related functionality for checkout service
"""

from .models import (
    OrderCreatedEvent,
    OrderPaidEvent,
    OrderPaymentFailedEvent,
    OrderRefundRequiredEvent,
    OrderStatusChangedEvent,
    OrderExpiredEvent,
)

from .publishers import (
    publish_order_created,
    publish_order_paid,
    publish_order_payment_failed,
    publish_order_refund_required,
    publish_order_status_changed,
    publish_order_expired,
)

__all__ = [
    # Event Models
    "OrderCreatedEvent",
    "OrderPaidEvent",
    "OrderPaymentFailedEvent",
    "OrderRefundRequiredEvent",
    "OrderStatusChangedEvent",
    "OrderExpiredEvent",
    # Publishers
    "publish_order_created",
    "publish_order_paid",
    "publish_order_payment_failed",
    "publish_order_refund_required",
    "publish_order_status_changed",
    "publish_order_expired",
]
