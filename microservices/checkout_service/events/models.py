"""
Checkout Service Event Models

Pydantic models for events published by checkout service
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderCreatedEvent(BaseModel):
    """Event published when a PENDING order and its gateway order exist"""
    order_id: str
    user_id: str
    final_amount: Decimal
    currency: str = "INR"
    gateway_order_id: str
    coupon_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OrderPaidEvent(BaseModel):
    """Event published when payment is verified and the order settled"""
    order_id: str
    user_id: str
    final_amount: Decimal
    currency: str = "INR"
    gateway_order_id: str
    gateway_payment_id: str
    items: List[Dict[str, Any]] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OrderPaymentFailedEvent(BaseModel):
    """Event published when an order moves to PAYMENT_FAILED"""
    order_id: str
    user_id: str
    error_code: str
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OrderRefundRequiredEvent(BaseModel):
    """Event published when a verified payment could not be settled"""
    order_id: str
    user_id: str
    gateway_order_id: str
    gateway_payment_id: str
    amount: int
    currency: str = "INR"
    error_code: str
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OrderStatusChangedEvent(BaseModel):
    """Event published on an operator status change"""
    order_id: str
    user_id: str
    old_status: str
    new_status: str
    changed_by: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OrderExpiredEvent(BaseModel):
    """Event published when the sweep fails a stale PENDING order"""
    order_id: str
    user_id: str
    created_at: datetime
    timestamp: datetime = Field(default_factory=_now)
