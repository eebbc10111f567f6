"""
Checkout Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from datetime import datetime
from decimal import Decimal
from typing import (
    Any, AsyncContextManager, Dict, List, Optional, Protocol, Sequence, runtime_checkable,
)

# Import only models (no I/O dependencies)
from .models import (
    CatalogProduct, Coupon, ErrorKind, GatewayOrder, LensOption, Order,
    OrderStatus, PaymentRecord, PaymentStatus,
)


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class CheckoutError(Exception):
    """Base exception for checkout errors"""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(
        self,
        message: str,
        *,
        order_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.order_id = order_id
        self.product_id = product_id


class InvalidCheckoutRequestError(CheckoutError):
    """Malformed or inconsistent checkout request"""
    kind = ErrorKind.INVALID_REQUEST


class LineUnavailableError(CheckoutError):
    """A cart line's product is inactive, deleted or out of stock"""
    kind = ErrorKind.LINE_UNAVAILABLE


class CouponError(CheckoutError):
    """Base exception for coupon rejections"""
    kind = ErrorKind.COUPON_INVALID


class CouponInvalidError(CouponError):
    """Coupon unknown, inactive, or not yet valid"""
    kind = ErrorKind.COUPON_INVALID


class CouponExpiredError(CouponError):
    """Coupon validity window has ended"""
    kind = ErrorKind.COUPON_EXPIRED


class CouponMinOrderNotMetError(CouponError):
    """Order value below the coupon minimum"""
    kind = ErrorKind.COUPON_MIN_ORDER_NOT_MET


class CouponLimitExceededError(CouponError):
    """Global or per-user redemption limit reached"""
    kind = ErrorKind.COUPON_LIMIT_EXCEEDED


class CouponNotApplicableError(CouponError):
    """No ordered product is eligible for the coupon"""
    kind = ErrorKind.COUPON_NOT_APPLICABLE


class OrderNotFoundError(CheckoutError):
    """Order not found"""
    kind = ErrorKind.ORDER_NOT_FOUND


class InvalidOrderStateError(CheckoutError):
    """Invalid order state transition"""
    kind = ErrorKind.INVALID_TRANSITION


class SignatureMismatchError(CheckoutError):
    """Gateway callback signature did not verify"""
    kind = ErrorKind.SIGNATURE_MISMATCH


class InsufficientStockError(CheckoutError):
    """Stock ran out between checkout and settlement"""
    kind = ErrorKind.INSUFFICIENT_STOCK


class GatewayUnreachableError(CheckoutError):
    """Payment gateway could not be reached or returned an unusable answer"""
    kind = ErrorKind.GATEWAY_UNREACHABLE


class GatewayRejectedError(GatewayUnreachableError):
    """Payment gateway refused the request (4xx); retrying will not help"""


# ============================================================================
# Catalog Protocol (read-only inputs)
# ============================================================================

@runtime_checkable
class CatalogProtocol(Protocol):
    """Product and lens price lookups"""

    async def get_products(self, product_ids: Sequence[str]) -> Dict[str, CatalogProduct]:
        """Fetch products by id; missing ids are absent from the result"""
        ...

    async def get_lens_options(self, option_ids: Sequence[str]) -> Dict[str, LensOption]:
        """Fetch lens types / coatings by id"""
        ...


@runtime_checkable
class CouponStoreProtocol(Protocol):
    """Coupon lookups"""

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        """Get coupon by code"""
        ...

    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        """Count a user's redemptions of a coupon"""
        ...


# ============================================================================
# Transaction Protocol
# ============================================================================

@runtime_checkable
class CheckoutTransactionProtocol(Protocol):
    """
    Operations that run inside one database transaction.

    Every method is a conditional write; a False / None result means the
    guard did not hold and the caller decides whether to abort.
    """

    async def claim_pending_order(self, order_id: str) -> Optional[Order]:
        """PENDING -> PROCESSING / PAID, or None if the order is not PENDING"""
        ...

    async def redeem_coupon(
        self,
        coupon_id: str,
        user_id: str,
        order_id: str,
        discount_amount: Decimal,
    ) -> bool:
        """Increment redemption counters if global and per-user limits allow"""
        ...

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock if at least quantity units remain"""
        ...

    async def verify_payment_record(
        self,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature_digest: Optional[str],
    ) -> bool:
        """PENDING -> VERIFIED for the matching payment record"""
        ...


# ============================================================================
# Repository Protocol
# ============================================================================

@runtime_checkable
class CheckoutRepositoryProtocol(CatalogProtocol, CouponStoreProtocol, Protocol):
    """
    Interface for Checkout Repository.

    Implementations must provide these methods.
    Used for dependency injection to enable testing.
    """

    async def get_address(self, address_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a user's address for snapshotting"""
        ...

    async def create_order(self, order: Order) -> Order:
        """Insert a new PENDING order"""
        ...

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by ID"""
        ...

    async def get_order_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        """Get order owning a gateway order id"""
        ...

    async def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        refund_required: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Order]:
        """List orders newest first"""
        ...

    async def transition_order(
        self,
        order_id: str,
        expected: Sequence[OrderStatus],
        new_status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
        failure_reason: Optional[str] = None,
        refund_required: Optional[bool] = None,
    ) -> Optional[Order]:
        """Compare-and-set the order status; None if current status not in expected"""
        ...

    async def flag_refund_required(self, order_id: str, reason: str) -> Optional[Order]:
        """Raise the manual-refund flag; None if already raised or order missing"""
        ...

    async def note_failed_attempt(self, order_id: str, reason: str) -> Optional[Order]:
        """Record a declined payment attempt on a PENDING order without moving it; None otherwise"""
        ...

    async def create_payment_record(self, record: PaymentRecord) -> PaymentRecord:
        """Insert a payment record"""
        ...

    async def get_payment_records(self, order_id: str) -> List[PaymentRecord]:
        """Payment records of an order, oldest first"""
        ...

    async def fail_payment_records(
        self,
        order_id: str,
        gateway_payment_id: Optional[str] = None,
        signature_digest: Optional[str] = None,
    ) -> int:
        """PENDING -> FAILED for the order's payment records"""
        ...

    async def expire_pending_orders(self, cutoff: datetime) -> List[Order]:
        """PENDING orders created before cutoff -> PAYMENT_FAILED"""
        ...

    def transaction(self) -> AsyncContextManager[CheckoutTransactionProtocol]:
        """Open a transaction scope"""
        ...

    async def health_check(self) -> bool:
        """Database connectivity"""
        ...


# ============================================================================
# Gateway Protocol
# ============================================================================

@runtime_checkable
class PaymentGatewayProtocol(Protocol):
    """Interface for the payment gateway adapter"""

    key_id: str

    async def create_remote_order(
        self,
        internal_order_id: str,
        amount: Decimal,
        currency: str,
    ) -> GatewayOrder:
        """Create the remote order; raises GatewayUnreachableError"""
        ...

    def verify(
        self,
        internal_order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> bool:
        """Check the callback signature"""
        ...

    def verify_webhook(self, payload: bytes, signature: str) -> bool:
        """Check a webhook body signature"""
        ...


# ============================================================================
# Event Bus Protocol
# ============================================================================

@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> None:
        """Publish an event"""
        ...


# ============================================================================
# Client Protocols
# ============================================================================

@runtime_checkable
class InvoiceClientProtocol(Protocol):
    """Interface for the invoice rendering service"""

    async def render_invoice(self, order: Order) -> bytes:
        """Render an invoice document for an order"""
        ...
