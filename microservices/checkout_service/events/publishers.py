"""
Checkout Service Event Publishers

Functions to publish events from checkout service. Publishing never
raises: settlement has already committed when these run.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from core.nats_client import Event, EventType, ServiceSource

from ..models import Order, OrderStatus
from .models import (
    OrderCreatedEvent,
    OrderExpiredEvent,
    OrderPaidEvent,
    OrderPaymentFailedEvent,
    OrderRefundRequiredEvent,
    OrderStatusChangedEvent,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: EventType, payload: BaseModel, order_id: str) -> bool:
    if not event_bus:
        logger.warning(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.CHECKOUT_SERVICE,
            data=payload.model_dump(mode="json"),
        )
        await event_bus.publish_event(event)
        logger.info(f"Published {event_type.value} event for order {order_id}")
        return True
    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} event for order {order_id}: {e}")
        return False


async def publish_order_created(event_bus, order: Order, gateway_order_id: str) -> bool:
    """Publish order.created event"""
    return await _publish(
        event_bus,
        EventType.ORDER_CREATED,
        OrderCreatedEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            final_amount=order.final_amount,
            currency=order.currency,
            gateway_order_id=gateway_order_id,
            coupon_code=order.coupon_code,
        ),
        order.order_id,
    )


async def publish_order_paid(
    event_bus,
    order: Order,
    gateway_order_id: str,
    gateway_payment_id: str,
) -> bool:
    """Publish order.paid event"""
    return await _publish(
        event_bus,
        EventType.ORDER_PAID,
        OrderPaidEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            final_amount=order.final_amount,
            currency=order.currency,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            items=[item.model_dump(mode="json") for item in order.items],
            coupon_code=order.coupon_code,
        ),
        order.order_id,
    )


async def publish_order_payment_failed(
    event_bus,
    order: Order,
    error_code: str,
    reason: Optional[str] = None,
) -> bool:
    """Publish order.payment_failed event"""
    return await _publish(
        event_bus,
        EventType.ORDER_PAYMENT_FAILED,
        OrderPaymentFailedEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            error_code=error_code,
            reason=reason,
        ),
        order.order_id,
    )


async def publish_order_refund_required(
    event_bus,
    order: Order,
    gateway_order_id: str,
    gateway_payment_id: str,
    amount: int,
    error_code: str,
    reason: Optional[str] = None,
) -> bool:
    """Publish order.refund_required event"""
    return await _publish(
        event_bus,
        EventType.ORDER_REFUND_REQUIRED,
        OrderRefundRequiredEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            amount=amount,
            currency=order.currency,
            error_code=error_code,
            reason=reason,
        ),
        order.order_id,
    )


async def publish_order_status_changed(
    event_bus,
    order: Order,
    old_status: OrderStatus,
    changed_by: Optional[str] = None,
) -> bool:
    """Publish order.status_changed event"""
    return await _publish(
        event_bus,
        EventType.ORDER_STATUS_CHANGED,
        OrderStatusChangedEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            old_status=old_status.value,
            new_status=order.status.value,
            changed_by=changed_by,
        ),
        order.order_id,
    )


async def publish_order_expired(event_bus, order: Order) -> bool:
    """Publish order.expired event"""
    return await _publish(
        event_bus,
        EventType.ORDER_EXPIRED,
        OrderExpiredEvent(
            order_id=order.order_id,
            user_id=order.user_id,
            created_at=order.created_at,
        ),
        order.order_id,
    )
