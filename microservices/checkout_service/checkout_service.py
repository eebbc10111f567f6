"""
Checkout Service - Business Logic Layer

Settlement coordinator: drives create -> pay -> verify -> finalize and
owns the order status state machine.

Per-order serialization relies on conditional updates in the repository,
never on in-process locks, so any number of service replicas may handle
callbacks for the same order.
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .coupon_evaluator import CouponEvaluator
from .events.publishers import (
    publish_order_created,
    publish_order_expired,
    publish_order_paid,
    publish_order_payment_failed,
    publish_order_refund_required,
    publish_order_status_changed,
)
from .inventory_reconciler import InventoryReconciler
from .models import (
    CheckoutCreateRequest, CheckoutCreateResponse, CouponEvaluation,
    CustomerOrderView, ErrorKind, MaskedPayment, Order, OrderItem,
    OrderListResponse, OrderStatus, PaymentRecord, PaymentRecordStatus,
    PaymentStatus, RazorpayCheckoutInfo, SettlementResult, SweepResult,
    WebhookResult, quantize_money,
)
from .order_state import assert_admin_transition
from .pricing_engine import PricingEngine
from .protocols import (
    CheckoutError,
    CheckoutRepositoryProtocol,
    CouponLimitExceededError,
    EventBusProtocol,
    GatewayRejectedError,
    GatewayUnreachableError,
    InsufficientStockError,
    InvalidCheckoutRequestError,
    InvalidOrderStateError,
    InvoiceClientProtocol,
    OrderNotFoundError,
    PaymentGatewayProtocol,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)


class _ClaimLost(Exception):
    """Order left PENDING between lookup and claim"""


def _signature_digest(signature: Optional[str]) -> Optional[str]:
    if not signature:
        return None
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()


def mask_payment_id(payment_id: Optional[str]) -> Optional[str]:
    """pay_ABCDEF1234 -> pay_****1234"""
    if not payment_id:
        return None
    return f"pay_****{payment_id[-4:]}"


class CheckoutService:
    """
    Checkout Service - Core business logic

    Handles:
    - Cart pricing and coupon evaluation at checkout create
    - PENDING order and gateway order creation
    - Signature verification and atomic finalize
    - Webhook settlement, pending-order sweep and operator status changes
    """

    def __init__(
        self,
        repository: CheckoutRepositoryProtocol,
        gateway: PaymentGatewayProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        invoice_client: Optional[InvoiceClientProtocol] = None,
        pricing_engine: Optional[PricingEngine] = None,
        coupon_evaluator: Optional[CouponEvaluator] = None,
        inventory: Optional[InventoryReconciler] = None,
        currency: str = "INR",
        pending_order_ttl_minutes: int = 30,
    ):
        """
        Initialize checkout service with dependencies.

        Args:
            repository: Checkout repository for orders, payments and catalog reads
            gateway: Payment gateway adapter
            event_bus: Event bus for publishing events (optional)
            invoice_client: Invoice renderer client (optional)
            pricing_engine: Defaults to a PricingEngine over the repository
            coupon_evaluator: Defaults to a CouponEvaluator over the repository
            inventory: Defaults to InventoryReconciler()
            currency: Checkout currency
            pending_order_ttl_minutes: Grace window before a PENDING order is swept
        """
        self.repository = repository
        self.gateway = gateway
        self.event_bus = event_bus
        self.invoice_client = invoice_client
        self.pricing_engine = pricing_engine or PricingEngine(repository)
        self.coupon_evaluator = coupon_evaluator or CouponEvaluator(repository)
        self.inventory = inventory or InventoryReconciler()
        self.currency = currency
        self.pending_order_ttl = timedelta(minutes=pending_order_ttl_minutes)

    # ====================
    # Checkout create
    # ====================

    async def create_checkout(self, request: CheckoutCreateRequest, user_id: str) -> CheckoutCreateResponse:
        """
        Price the cart, create a PENDING order and its gateway order.

        Pricing, coupon and address problems are returned as a failed
        response and no order is created.
        """
        try:
            pricing = await self.pricing_engine.price(request.items)

            evaluation: Optional[CouponEvaluation] = None
            if request.coupon_code:
                evaluation = await self.coupon_evaluator.evaluate(
                    request.coupon_code, pricing.subtotal, pricing.product_ids, user_id
                )

            shipping_address = None
            if request.address_id:
                shipping_address = await self.repository.get_address(request.address_id, user_id)
                if shipping_address is None:
                    raise InvalidCheckoutRequestError("Shipping address not found")

            subtotal = pricing.subtotal
            discount = evaluation.discount_amount if evaluation else Decimal("0.00")
            shipping = quantize_money(request.shipping)
            tax = quantize_money((subtotal - discount + shipping) * request.gst / Decimal("100"))
            final_amount = subtotal - discount + shipping + tax
            if final_amount <= 0:
                raise InvalidCheckoutRequestError("Order total must be greater than zero")

        except CheckoutError as e:
            logger.info(f"Checkout rejected for user {user_id}: {e.kind.value} - {e.message}")
            return CheckoutCreateResponse(
                success=False,
                message=e.message,
                error_code=e.kind,
                product_id=e.product_id,
            )

        now = datetime.now(timezone.utc)
        order = await self.repository.create_order(Order(
            order_id=f"ord_{uuid.uuid4().hex[:24]}",
            user_id=user_id,
            items=[OrderItem.from_priced_line(line) for line in pricing.lines],
            subtotal=subtotal,
            discount_amount=discount,
            shipping=shipping,
            tax=tax,
            final_amount=final_amount,
            currency=self.currency,
            coupon_id=evaluation.coupon.coupon_id if evaluation else None,
            coupon_code=evaluation.coupon.code if evaluation else None,
            address_id=request.address_id,
            shipping_address=shipping_address,
            created_at=now,
            updated_at=now,
        ))
        logger.info(f"Created PENDING order {order.order_id} for user {user_id}: {order.final_amount} {order.currency}")

        try:
            gateway_order = await self.gateway.create_remote_order(
                order.order_id, order.final_amount, order.currency
            )
        except GatewayUnreachableError as e:
            # Orders are never deleted; a dangling PENDING order is failed right away
            failed = await self.repository.transition_order(
                order.order_id,
                [OrderStatus.PENDING],
                OrderStatus.PAYMENT_FAILED,
                payment_status=PaymentStatus.FAILED,
                failure_reason=e.message,
            )
            if failed:
                await publish_order_payment_failed(self.event_bus, failed, e.kind.value, e.message)
            if isinstance(e, GatewayRejectedError):
                message = "Payment could not be started for this order, please contact support"
            else:
                message = "Payment gateway is unavailable, please try again"
            return CheckoutCreateResponse(
                success=False,
                order_id=order.order_id,
                message=message,
                error_code=e.kind,
            )

        await self.repository.create_payment_record(PaymentRecord(
            payment_record_id=f"payrec_{uuid.uuid4().hex[:20]}",
            order_id=order.order_id,
            gateway_order_id=gateway_order.gateway_order_id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            created_at=now,
            updated_at=now,
        ))
        await publish_order_created(self.event_bus, order, gateway_order.gateway_order_id)

        return CheckoutCreateResponse(
            success=True,
            order_id=order.order_id,
            razorpay=RazorpayCheckoutInfo(
                key_id=self.gateway.key_id,
                order_id=gateway_order.gateway_order_id,
                amount=gateway_order.amount,
                currency=gateway_order.currency,
                receipt=gateway_order.receipt,
            ),
            message="Order created",
        )

    # ====================
    # Verify and finalize
    # ====================

    async def verify_and_finalize(
        self,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        user_id: Optional[str] = None,
    ) -> SettlementResult:
        """
        Verify a checkout callback and settle the order.

        Safe to call repeatedly and concurrently for the same order: at most
        one call moves the order out of PENDING, replays of a settled
        payment return success without touching state.

        Args:
            order_id: Internal order id
            gateway_order_id: Razorpay order id from the callback
            gateway_payment_id: Razorpay payment id from the callback
            signature: Razorpay signature from the callback
            user_id: When given, the order must belong to this user
        """
        order = await self.repository.get_order(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            return SettlementResult(
                success=False,
                order_id=order_id,
                error_code=ErrorKind.ORDER_NOT_FOUND,
                message="Order not found",
            )

        record = await self._find_payment_record(order_id, gateway_order_id)
        # The gateway order must belong to this order, otherwise a valid
        # signature for some other order could settle this one.
        authentic = record is not None and self.gateway.verify(
            order_id, gateway_order_id, gateway_payment_id, signature
        )
        return await self._settle(
            order, record, gateway_order_id, gateway_payment_id, authentic, _signature_digest(signature)
        )

    async def _settle(
        self,
        order: Order,
        record: Optional[PaymentRecord],
        gateway_order_id: str,
        gateway_payment_id: str,
        authentic: bool,
        signature_digest: Optional[str],
    ) -> SettlementResult:
        if order.status != OrderStatus.PENDING:
            return await self._resolve_not_pending(order, record, gateway_payment_id, authentic)
        if not authentic:
            return await self._fail_verification(order, record, gateway_order_id, gateway_payment_id, signature_digest)
        return await self._finalize(order, record, gateway_payment_id, signature_digest)

    async def _finalize(
        self,
        order: Order,
        record: PaymentRecord,
        gateway_payment_id: str,
        signature_digest: Optional[str],
    ) -> SettlementResult:
        order_id = order.order_id
        try:
            async with self.repository.transaction() as tx:
                claimed = await tx.claim_pending_order(order_id)
                if claimed is None:
                    raise _ClaimLost()
                if claimed.coupon_id:
                    redeemed = await tx.redeem_coupon(
                        claimed.coupon_id, claimed.user_id, order_id, claimed.discount_amount
                    )
                    if not redeemed:
                        raise CouponLimitExceededError("Coupon usage limit reached", order_id=order_id)
                await self.inventory.commit(tx, order_id, claimed.items)
                verified = await tx.verify_payment_record(
                    order_id, record.gateway_order_id, gateway_payment_id, signature_digest
                )
                if not verified:
                    raise InvalidOrderStateError("Payment record is no longer pending", order_id=order_id)

        except _ClaimLost:
            logger.info(f"Order {order_id} left PENDING concurrently, resolving as replay")
            current = await self.repository.get_order(order_id)
            current_record = await self._find_payment_record(order_id, record.gateway_order_id)
            return await self._resolve_not_pending(current, current_record, gateway_payment_id, True)

        except (InsufficientStockError, CouponLimitExceededError) as e:
            return await self._fail_verified_payment(order, record, gateway_payment_id, signature_digest, e)

        except CheckoutError as e:
            logger.error(f"Finalize aborted for order {order_id}: {e.kind.value} - {e.message}")
            return SettlementResult(
                success=False,
                order_id=order_id,
                status=order.status,
                payment_status=order.payment_status,
                error_code=e.kind,
                message=e.message,
            )

        logger.info(f"Order {order_id} settled: PROCESSING / PAID (payment {mask_payment_id(gateway_payment_id)})")
        await publish_order_paid(self.event_bus, claimed, record.gateway_order_id, gateway_payment_id)
        return SettlementResult(
            success=True,
            order_id=order_id,
            status=claimed.status,
            payment_status=claimed.payment_status,
            message="Payment verified",
        )

    async def _fail_verification(
        self,
        order: Order,
        record: Optional[PaymentRecord],
        gateway_order_id: str,
        gateway_payment_id: str,
        signature_digest: Optional[str],
    ) -> SettlementResult:
        order_id = order.order_id
        logger.warning(
            f"Verification failed for order {order_id}: {ErrorKind.SIGNATURE_MISMATCH.value} "
            f"(gateway order {gateway_order_id}, known={record is not None})"
        )
        failed = await self.repository.transition_order(
            order_id,
            [OrderStatus.PENDING],
            OrderStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.FAILED,
            failure_reason="Payment signature verification failed",
        )
        if failed is None:
            current = await self.repository.get_order(order_id)
            return await self._resolve_not_pending(current, record, gateway_payment_id, False)

        await self.repository.fail_payment_records(order_id, gateway_payment_id, signature_digest)
        await publish_order_payment_failed(
            self.event_bus, failed, ErrorKind.SIGNATURE_MISMATCH.value, failed.failure_reason
        )
        return SettlementResult(
            success=False,
            order_id=order_id,
            status=failed.status,
            payment_status=failed.payment_status,
            error_code=ErrorKind.SIGNATURE_MISMATCH,
            message="Payment signature verification failed",
        )

    async def _fail_verified_payment(
        self,
        order: Order,
        record: PaymentRecord,
        gateway_payment_id: str,
        signature_digest: Optional[str],
        error: CheckoutError,
    ) -> SettlementResult:
        """Payment is genuine but the order cannot be fulfilled; flag for manual refund"""
        order_id = order.order_id
        logger.error(
            f"Verified payment {mask_payment_id(gateway_payment_id)} for order {order_id} "
            f"could not be settled: {error.kind.value} - {error.message}; manual refund required"
        )
        failed = await self.repository.transition_order(
            order_id,
            [OrderStatus.PENDING],
            OrderStatus.PAYMENT_FAILED,
            payment_status=PaymentStatus.PAID,
            failure_reason=error.message,
            refund_required=True,
        )
        if failed is None:
            current = await self.repository.get_order(order_id)
            current_record = await self._find_payment_record(order_id, record.gateway_order_id)
            return await self._resolve_not_pending(current, current_record, gateway_payment_id, True)

        async with self.repository.transaction() as tx:
            await tx.verify_payment_record(
                order_id, record.gateway_order_id, gateway_payment_id, signature_digest
            )

        await publish_order_payment_failed(self.event_bus, failed, error.kind.value, error.message)
        await publish_order_refund_required(
            self.event_bus, failed, record.gateway_order_id, gateway_payment_id,
            record.amount, error.kind.value, error.message,
        )
        return SettlementResult(
            success=False,
            order_id=order_id,
            status=failed.status,
            payment_status=failed.payment_status,
            refund_required=True,
            error_code=error.kind,
            message=error.message,
        )

    async def _resolve_not_pending(
        self,
        order: Order,
        record: Optional[PaymentRecord],
        gateway_payment_id: str,
        authentic: bool,
    ) -> SettlementResult:
        order_id = order.order_id
        matches = (
            record is not None
            and record.status == PaymentRecordStatus.VERIFIED
            and record.gateway_payment_id == gateway_payment_id
        )

        if authentic and matches and order.status != OrderStatus.PAYMENT_FAILED:
            logger.info(f"Replayed verification for settled order {order_id}")
            return SettlementResult(
                success=True,
                order_id=order_id,
                status=order.status,
                payment_status=order.payment_status,
                replayed=True,
                message="Payment already verified",
            )

        if not authentic and order.status == OrderStatus.PAYMENT_FAILED:
            return SettlementResult(
                success=False,
                order_id=order_id,
                status=order.status,
                payment_status=order.payment_status,
                refund_required=order.refund_required,
                error_code=ErrorKind.SIGNATURE_MISMATCH,
                message="Payment signature verification failed",
            )

        refund_required = order.refund_required
        if (
            authentic
            and order.payment_status != PaymentStatus.PAID
            and order.status in (OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED)
        ):
            # Money captured for an order that was already swept, failed or cancelled
            refund_required = True
            flagged = await self.repository.flag_refund_required(
                order_id, f"Payment captured after order became {order.status.value}"
            )
            if flagged is not None:
                logger.error(
                    f"Payment {mask_payment_id(gateway_payment_id)} captured for {order.status.value} "
                    f"order {order_id}; manual refund required"
                )
                await publish_order_refund_required(
                    self.event_bus, flagged,
                    record.gateway_order_id if record else "",
                    gateway_payment_id,
                    record.amount if record else 0,
                    ErrorKind.ORDER_NOT_PENDING.value,
                    flagged.failure_reason,
                )

        logger.warning(f"Verification for order {order_id} rejected: {ErrorKind.ORDER_NOT_PENDING.value} ({order.status.value})")
        return SettlementResult(
            success=False,
            order_id=order_id,
            status=order.status,
            payment_status=order.payment_status,
            refund_required=refund_required,
            error_code=ErrorKind.ORDER_NOT_PENDING,
            message=f"Order is {order.status.value}",
        )

    async def _find_payment_record(self, order_id: str, gateway_order_id: str) -> Optional[PaymentRecord]:
        records = await self.repository.get_payment_records(order_id)
        for record in records:
            if record.gateway_order_id == gateway_order_id:
                return record
        return None

    # ====================
    # Webhook
    # ====================

    async def handle_webhook(self, payload: bytes, signature: str) -> WebhookResult:
        """
        Handle a Razorpay webhook.

        payment.captured settles through the finalize path; payment.failed
        records the declined attempt on a PENDING order and leaves it open
        for a retry. Other events are acknowledged and ignored.

        Raises:
            SignatureMismatchError: body signature did not verify
            InvalidCheckoutRequestError: body is not a Razorpay event
        """
        if not self.gateway.verify_webhook(payload, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise SignatureMismatchError("Invalid webhook signature")

        try:
            body = json.loads(payload)
            event = body["event"]
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidCheckoutRequestError(f"Malformed webhook body: {e}")

        if event not in ("payment.captured", "payment.failed"):
            logger.info(f"Ignoring webhook event {event}")
            return WebhookResult(event=event, handled=False)

        try:
            entity: Dict[str, Any] = body["payload"]["payment"]["entity"]
            gateway_order_id = entity["order_id"]
            gateway_payment_id = entity["id"]
        except (KeyError, TypeError) as e:
            raise InvalidCheckoutRequestError(f"Malformed {event} webhook: {e}")

        order = await self.repository.get_order_by_gateway_order_id(gateway_order_id)
        if order is None:
            logger.warning(f"Webhook {event} for unknown gateway order {gateway_order_id}")
            return WebhookResult(event=event, handled=False)

        record = await self._find_payment_record(order.order_id, gateway_order_id)
        if record is None:
            logger.warning(f"Webhook {event} for order {order.order_id} has no payment record")
            return WebhookResult(event=event, handled=False, order_id=order.order_id)

        if event == "payment.captured":
            settlement = await self._settle(order, record, gateway_order_id, gateway_payment_id, True, None)
            return WebhookResult(event=event, handled=True, order_id=order.order_id, settlement=settlement)

        # A declined attempt does not end the order: the customer may retry on
        # the same gateway order. Signature failure or the pending sweep ends it.
        reason = entity.get("error_description") or "Payment failed at gateway"
        noted = await self.repository.note_failed_attempt(order.order_id, reason)
        if noted is None:
            logger.info(
                f"Ignoring payment.failed for order {order.order_id} in status {order.status.value}"
            )
        else:
            logger.warning(
                f"Payment attempt {mask_payment_id(gateway_payment_id)} declined for order "
                f"{order.order_id}: {reason}; order stays PENDING"
            )
        return WebhookResult(event=event, handled=noted is not None, order_id=order.order_id)

    # ====================
    # Pending sweep
    # ====================

    async def expire_stale_orders(self, now: Optional[datetime] = None) -> SweepResult:
        """Move PENDING orders older than the grace window to PAYMENT_FAILED"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.pending_order_ttl
        expired = await self.repository.expire_pending_orders(cutoff)
        for order in expired:
            await self.inventory.release(order.order_id)
            await publish_order_expired(self.event_bus, order)
        if expired:
            logger.info(f"Expired {len(expired)} stale PENDING orders created before {cutoff.isoformat()}")
        return SweepResult(expired_order_ids=[o.order_id for o in expired], cutoff=cutoff)

    # ====================
    # Queries
    # ====================

    async def get_customer_order(self, order_id: str, user_id: str) -> CustomerOrderView:
        """
        Order detail for its owner, with masked payment ids

        Raises:
            OrderNotFoundError: missing or owned by someone else
        """
        order = await self.repository.get_order(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError("Order not found", order_id=order_id)

        records = await self.repository.get_payment_records(order_id)
        return CustomerOrderView(
            order_id=order.order_id,
            items=order.items,
            subtotal=order.subtotal,
            discount_amount=order.discount_amount,
            shipping=order.shipping,
            tax=order.tax,
            final_amount=order.final_amount,
            currency=order.currency,
            status=order.status,
            payment_status=order.payment_status,
            coupon_code=order.coupon_code,
            shipping_address=order.shipping_address,
            payments=[
                MaskedPayment(
                    payment_id=mask_payment_id(r.gateway_payment_id),
                    status=r.status,
                    amount=r.amount,
                    currency=r.currency,
                    created_at=r.created_at,
                )
                for r in records
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    async def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        refund_required: Optional[bool] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderListResponse:
        """Orders newest first; user_id scopes to one customer"""
        page = max(1, page)
        page_size = max(1, min(page_size, 100))
        rows = await self.repository.list_orders(
            user_id=user_id,
            status=status,
            refund_required=refund_required,
            limit=page_size + 1,
            offset=(page - 1) * page_size,
        )
        return OrderListResponse(
            orders=rows[:page_size],
            page=page,
            page_size=page_size,
            has_next=len(rows) > page_size,
        )

    async def get_order(self, order_id: str) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=order_id)
        return order

    # ====================
    # Operator actions
    # ====================

    async def admin_update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        changed_by: Optional[str] = None,
    ) -> Order:
        """
        Operator status override.

        Only fulfilment transitions are allowed; PENDING -> PROCESSING and
        PENDING -> PAYMENT_FAILED stay with settlement.

        Raises:
            OrderNotFoundError: unknown order
            InvalidOrderStateError: transition not allowed or lost to a concurrent change
        """
        order = await self.get_order(order_id)
        if order.status == new_status:
            return order

        assert_admin_transition(order_id, order.status, new_status)
        updated = await self.repository.transition_order(order_id, [order.status], new_status)
        if updated is None:
            raise InvalidOrderStateError(
                "Order status changed concurrently, reload and retry", order_id=order_id
            )

        logger.info(f"Order {order_id}: {order.status.value} -> {new_status.value} by {changed_by or 'admin'}")
        await publish_order_status_changed(self.event_bus, updated, order.status, changed_by)
        return updated

    async def render_invoice(self, order_id: str) -> bytes:
        """Invoice document for a paid order, rendered by the invoice service"""
        order = await self.get_order(order_id)
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidOrderStateError("Invoice is available once payment is confirmed", order_id=order_id)
        if self.invoice_client is None:
            raise InvalidCheckoutRequestError("Invoice rendering is not configured", order_id=order_id)
        return await self.invoice_client.render_invoice(order)

    async def health_check(self) -> Dict[str, Any]:
        database_connected = await self.repository.health_check()
        return {
            "status": "healthy" if database_connected else "degraded",
            "database_connected": database_connected,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
