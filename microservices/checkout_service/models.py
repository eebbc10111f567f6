"""
Checkout Service Data Models

Pydantic models for pricing, coupons, orders, payment records and the
checkout HTTP contracts.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


CENTS = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round a money amount half-up to 2 decimal places"""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal) -> int:
    """Convert a major-unit amount to the gateway's integer minor unit"""
    return int((quantize_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "PENDING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


class PaymentStatus(str, Enum):
    """Order-level payment status"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentRecordStatus(str, Enum):
    """Gateway payment record status"""
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class DiscountType(str, Enum):
    """Coupon discount type"""
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class LensOptionKind(str, Enum):
    """Lens catalog entry kind"""
    LENS_TYPE = "LENS_TYPE"
    COATING = "COATING"


class ErrorKind(str, Enum):
    """Checkout error kinds"""
    LINE_UNAVAILABLE = "LineUnavailable"
    COUPON_INVALID = "CouponInvalid"
    COUPON_EXPIRED = "CouponExpired"
    COUPON_MIN_ORDER_NOT_MET = "CouponMinOrderNotMet"
    COUPON_LIMIT_EXCEEDED = "CouponLimitExceeded"
    COUPON_NOT_APPLICABLE = "CouponNotApplicable"
    ORDER_NOT_PENDING = "OrderNotPending"
    ORDER_NOT_FOUND = "OrderNotFound"
    SIGNATURE_MISMATCH = "SignatureMismatch"
    INSUFFICIENT_STOCK = "InsufficientStock"
    GATEWAY_UNREACHABLE = "GatewayUnreachable"
    INVALID_TRANSITION = "InvalidTransition"
    INVALID_REQUEST = "InvalidRequest"


# Cart configuration (tagged variant)

class Prescription(BaseModel):
    """Optical prescription captured with a lens selection"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)

    right_sphere: Optional[Decimal] = Field(None, ge=-20, le=20)
    right_cylinder: Optional[Decimal] = Field(None, ge=-10, le=10)
    right_axis: Optional[int] = Field(None, ge=0, le=180)
    left_sphere: Optional[Decimal] = Field(None, ge=-20, le=20)
    left_cylinder: Optional[Decimal] = Field(None, ge=-10, le=10)
    left_axis: Optional[int] = Field(None, ge=0, le=180)
    pupillary_distance: Optional[Decimal] = Field(None, gt=0, le=90)
    notes: Optional[str] = Field(None, max_length=500)


class NoConfiguration(BaseModel):
    """Frame sold without lenses"""
    model_config = ConfigDict(extra="forbid")

    kind: Literal["none"] = "none"


class LensSelection(BaseModel):
    """Lens type and optional coating, priced server-side by identifier"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)

    kind: Literal["lens"] = "lens"
    lens_type_id: str = Field(..., min_length=1)
    coating_id: Optional[str] = None
    prescription: Optional[Prescription] = None


Configuration = Annotated[Union[NoConfiguration, LensSelection], Field(discriminator="kind")]


class CartLine(BaseModel):
    """One line of a submitted cart snapshot. Client price fields are ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    configuration: Configuration = Field(default_factory=NoConfiguration)

    @field_validator("configuration", mode="before")
    @classmethod
    def default_configuration(cls, v):
        if v is None:
            return NoConfiguration()
        return v


# Catalog inputs (read-only)

class CatalogProduct(BaseModel):
    """Authoritative product price and stock"""
    product_id: str
    name: str = ""
    price: Decimal
    discount_price: Optional[Decimal] = None
    stock: int = 0
    is_active: bool = True
    is_deleted: bool = False

    @property
    def unit_price(self) -> Decimal:
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price


class LensOption(BaseModel):
    """Lens type or coating surcharge entry"""
    option_id: str
    name: str = ""
    kind: LensOptionKind
    price: Decimal = Decimal("0")
    is_active: bool = True


class Coupon(BaseModel):
    """Coupon definition with its redemption counter"""
    coupon_id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    times_redeemed: int = 0
    is_for_all_products: bool = True
    applicable_product_ids: List[str] = Field(default_factory=list)


# Pricing outputs

class PricedLine(BaseModel):
    """A cart line re-priced from catalog truth"""
    product_id: str
    quantity: int
    list_price: Decimal
    unit_price: Decimal
    line_discount: Decimal
    surcharge: Decimal
    line_total: Decimal
    configuration: Dict[str, Any] = Field(default_factory=lambda: {"kind": "none"})


class PricingResult(BaseModel):
    """Pricing Engine output"""
    lines: List[PricedLine]
    subtotal: Decimal
    line_discount_total: Decimal = Decimal("0.00")

    @property
    def product_ids(self) -> List[str]:
        return [line.product_id for line in self.lines]


class CouponEvaluation(BaseModel):
    """Coupon Evaluator output"""
    coupon: Coupon
    discount_amount: Decimal


# Persisted entities

class OrderItem(BaseModel):
    """Line item snapshot stored on the order"""
    product_id: str
    quantity: int
    list_price: Decimal
    unit_price: Decimal
    line_discount: Decimal = Decimal("0.00")
    surcharge: Decimal = Decimal("0.00")
    line_total: Decimal
    configuration: Dict[str, Any] = Field(default_factory=lambda: {"kind": "none"})

    @classmethod
    def from_priced_line(cls, line: PricedLine) -> "OrderItem":
        return cls(**line.model_dump())


class Order(BaseModel):
    """Core order model"""
    order_id: str
    user_id: str
    items: List[OrderItem]
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    shipping: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    final_amount: Decimal
    currency: str = "INR"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    address_id: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    refund_required: bool = False
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentRecord(BaseModel):
    """Gateway payment attempt linked to an order"""
    payment_record_id: str
    order_id: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    signature_digest: Optional[str] = None
    amount: int
    currency: str = "INR"
    status: PaymentRecordStatus = PaymentRecordStatus.PENDING
    created_at: datetime
    updated_at: datetime


class GatewayOrder(BaseModel):
    """Remote order created at the payment gateway"""
    gateway_order_id: str
    amount: int
    currency: str
    receipt: str


# Request Models

class CheckoutCreateRequest(BaseModel):
    """POST /checkout/create body"""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    items: List[CartLine] = Field(..., min_length=1)
    address_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    gst: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon_code(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


class CheckoutVerifyRequest(BaseModel):
    """POST /checkout/verify body"""
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId", min_length=1)
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class AdminOrderStatusUpdate(BaseModel):
    """PUT /admin/orders/{id} body"""
    status: OrderStatus


# Response Models

class RazorpayCheckoutInfo(BaseModel):
    """Client-side gateway parameters"""
    model_config = ConfigDict(populate_by_name=True)

    key_id: str
    order_id: str = Field(..., alias="orderId")
    amount: int
    currency: str
    receipt: str


class CheckoutCreateResponse(BaseModel):
    """Checkout creation result"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    order_id: Optional[str] = Field(None, alias="orderId")
    razorpay: Optional[RazorpayCheckoutInfo] = None
    message: Optional[str] = None
    error_code: Optional[ErrorKind] = None
    product_id: Optional[str] = None


class SettlementResult(BaseModel):
    """Outcome of a verification / finalize attempt"""
    success: bool
    order_id: str
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    replayed: bool = False
    refund_required: bool = False
    error_code: Optional[ErrorKind] = None
    message: Optional[str] = None


class CheckoutVerifyResponse(BaseModel):
    """POST /checkout/verify response"""
    success: bool
    message: Optional[str] = None


class WebhookResult(BaseModel):
    """Gateway webhook acknowledgement"""
    event: Optional[str] = None
    handled: bool = False
    order_id: Optional[str] = None
    settlement: Optional[SettlementResult] = None


class MaskedPayment(BaseModel):
    """Payment info safe to show to the customer"""
    payment_id: Optional[str] = None
    status: PaymentRecordStatus
    amount: int
    currency: str
    created_at: datetime


class CustomerOrderView(BaseModel):
    """GET /orders/{id} response body"""
    order_id: str
    items: List[OrderItem]
    subtotal: Decimal
    discount_amount: Decimal
    shipping: Decimal
    tax: Decimal
    final_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    coupon_code: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    payments: List[MaskedPayment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderResponse(BaseModel):
    """Single order response"""
    success: bool
    order: Optional[Order] = None
    message: str
    error_code: Optional[ErrorKind] = None


class OrderListResponse(BaseModel):
    """Order list response"""
    orders: List[Order]
    page: int
    page_size: int
    has_next: bool


class SweepResult(BaseModel):
    """Pending-order sweep outcome"""
    expired_order_ids: List[str]
    cutoff: datetime


class CheckoutServiceStatus(BaseModel):
    """Checkout service status response"""
    service: str = "checkout_service"
    status: str = "operational"
    version: str = "1.0.0"
    database_connected: bool
    timestamp: Optional[datetime] = None
