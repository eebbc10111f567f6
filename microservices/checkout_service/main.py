"""
Checkout Microservice

Responsibilities:
- Cart pricing and checkout order creation
- Razorpay order creation and payment verification
- Webhook settlement and pending-order sweep
- Customer order reads and admin status overrides
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Path, Query, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from core.auth_dependencies import require_admin, require_user
from core.config import get_settings
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .checkout_service import CheckoutService
from .clients.invoice_client import InvoiceRenderError
from .factory import create_checkout_service
from .models import (
    AdminOrderStatusUpdate, CheckoutCreateRequest, CheckoutServiceStatus,
    CheckoutVerifyRequest, CheckoutVerifyResponse, CustomerOrderView, ErrorKind,
    Order, OrderListResponse, OrderResponse, OrderStatus, SweepResult, WebhookResult,
)
from .protocols import CheckoutError
from .sweeper import PendingOrderSweeper

# Initialize configuration
config = get_settings()

# Setup loggers (use actual service name)
logger = setup_service_logger("checkout_service", config.logging)

VERIFY_FAILED_MESSAGE = "Payment could not be verified"

ERROR_STATUS_CODES = {
    ErrorKind.LINE_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.COUPON_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.COUPON_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.COUPON_MIN_ORDER_NOT_MET: status.HTTP_400_BAD_REQUEST,
    ErrorKind.COUPON_LIMIT_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.COUPON_NOT_APPLICABLE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SIGNATURE_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ORDER_NOT_PENDING: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    ErrorKind.GATEWAY_UNREACHABLE: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(kind: Optional[ErrorKind]) -> int:
    if kind is None:
        return status.HTTP_400_BAD_REQUEST
    return ERROR_STATUS_CODES.get(kind, status.HTTP_400_BAD_REQUEST)


def http_error(e: CheckoutError) -> HTTPException:
    return HTTPException(
        status_code=status_code_for(e.kind),
        detail={"error_code": e.kind.value, "message": e.message},
    )


def json_response(model: BaseModel, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


class CheckoutMicroservice:
    """Checkout microservice core class"""

    def __init__(self):
        self.checkout_service: Optional[CheckoutService] = None
        self.event_bus = None
        self.sweeper: Optional[PendingOrderSweeper] = None

    async def initialize(self, event_bus=None):
        """Initialize the microservice"""
        try:
            self.event_bus = event_bus
            self.checkout_service = await create_checkout_service(config, event_bus=event_bus)
            if config.pending_sweep_enabled:
                self.sweeper = PendingOrderSweeper(
                    self.checkout_service, config.pending_sweep_interval_seconds
                )
                self.sweeper.start()
            logger.info("Checkout microservice initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize checkout microservice: {e}")
            raise

    async def shutdown(self):
        """Shutdown the microservice"""
        try:
            if self.sweeper:
                await self.sweeper.stop()
            if self.checkout_service:
                gateway_close = getattr(self.checkout_service.gateway, "close", None)
                if gateway_close:
                    await gateway_close()
                invoice_close = getattr(self.checkout_service.invoice_client, "close", None)
                if invoice_close:
                    await invoice_close()
                repository_close = getattr(self.checkout_service.repository, "close", None)
                if repository_close:
                    await repository_close()
            if self.event_bus:
                await self.event_bus.close()
                logger.info("Event bus closed")
            logger.info("Checkout microservice shutdown completed")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")


# Global microservice instance
checkout_microservice = CheckoutMicroservice()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    event_bus = None
    if config.infrastructure.nats_enabled:
        try:
            event_bus = await get_event_bus("checkout_service", config.infrastructure)
            logger.info("Event bus initialized successfully")
        except Exception as e:
            logger.warning(f"Failed to initialize event bus: {e}. Continuing without event publishing.")
            event_bus = None

    await checkout_microservice.initialize(event_bus=event_bus)

    yield

    await checkout_microservice.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Checkout Service",
    description="Checkout, payment verification and order settlement microservice",
    version="1.0.0",
    lifespan=lifespan
)

# CORS handled by Gateway


# Dependency injection
def get_checkout_service() -> CheckoutService:
    """Get checkout service instance"""
    if not checkout_microservice.checkout_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Checkout service not initialized"
        )
    return checkout_microservice.checkout_service


# Health check endpoints
@app.get("/health")
async def health_check():
    """Service health check"""
    return {
        "status": "healthy",
        "service": config.service_name,
        "port": config.service_port,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health/detailed", response_model=CheckoutServiceStatus)
async def detailed_health_check(
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Detailed health check with database connectivity"""
    try:
        health_data = await checkout_service.health_check()
        return CheckoutServiceStatus(
            status="operational" if health_data["database_connected"] else "degraded",
            database_connected=health_data["database_connected"],
            timestamp=datetime.now(timezone.utc),
        )
    except Exception as e:
        logger.error(f"Detailed health check failed: {e}")
        return CheckoutServiceStatus(
            status="degraded",
            database_connected=False,
            timestamp=datetime.now(timezone.utc),
        )


# Checkout endpoints

@app.post("/checkout/create")
async def create_checkout(
    request: CheckoutCreateRequest,
    user_id: str = Depends(require_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Price the cart and create a PENDING order with its Razorpay order"""
    result = await checkout_service.create_checkout(request, user_id)
    if result.success:
        return json_response(result)
    return json_response(result, status_code_for(result.error_code))


@app.post("/checkout/verify")
async def verify_checkout(
    request: CheckoutVerifyRequest,
    user_id: str = Depends(require_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Verify the Razorpay callback and settle the order"""
    result = await checkout_service.verify_and_finalize(
        order_id=request.order_id,
        gateway_order_id=request.razorpay_order_id,
        gateway_payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
        user_id=user_id,
    )
    if result.success:
        return json_response(CheckoutVerifyResponse(success=True, message=result.message))

    # Detail stays in the logs; the customer only sees a generic message
    logger.warning(
        f"Verify failed for order {request.order_id}: "
        f"{result.error_code.value if result.error_code else 'unknown'} - {result.message}"
    )
    return json_response(
        CheckoutVerifyResponse(success=False, message=VERIFY_FAILED_MESSAGE),
        status_code_for(result.error_code),
    )


@app.post("/checkout/webhook", response_model=WebhookResult)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Razorpay webhook receiver (payment.captured / payment.failed)"""
    payload = await request.body()
    try:
        return await checkout_service.handle_webhook(payload, x_razorpay_signature or "")
    except CheckoutError as e:
        raise http_error(e)


# Customer order endpoints

@app.get("/orders", response_model=OrderListResponse)
async def list_my_orders(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    user_id: str = Depends(require_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """List the requesting user's orders, newest first"""
    return await checkout_service.list_orders(user_id=user_id, page=page, page_size=page_size)


@app.get("/orders/{order_id}", response_model=CustomerOrderView)
async def get_my_order(
    order_id: str = Path(..., description="Order ID"),
    user_id: str = Depends(require_user),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Get one of the requesting user's orders"""
    try:
        return await checkout_service.get_customer_order(order_id, user_id)
    except CheckoutError as e:
        raise http_error(e)


# Admin endpoints

@app.get("/admin/orders", response_model=OrderListResponse)
async def admin_list_orders(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    user_id: Optional[str] = Query(None, description="Filter by user ID"),
    order_status: Optional[OrderStatus] = Query(None, alias="status", description="Filter by status"),
    refund_required: Optional[bool] = Query(None, description="Only orders awaiting manual refund"),
    admin_id: str = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """List all orders with filtering and pagination"""
    return await checkout_service.list_orders(
        user_id=user_id,
        status=order_status,
        refund_required=refund_required,
        page=page,
        page_size=page_size,
    )


@app.post("/admin/orders/expire-pending", response_model=SweepResult)
async def admin_expire_pending(
    admin_id: str = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Run the pending-order sweep now"""
    return await checkout_service.expire_stale_orders()


@app.get("/admin/orders/{order_id}", response_model=Order)
async def admin_get_order(
    order_id: str = Path(..., description="Order ID"),
    admin_id: str = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Get full order details"""
    try:
        return await checkout_service.get_order(order_id)
    except CheckoutError as e:
        raise http_error(e)


@app.put("/admin/orders/{order_id}", response_model=OrderResponse)
async def admin_update_order_status(
    order_id: str = Path(..., description="Order ID"),
    request: AdminOrderStatusUpdate = Body(...),
    admin_id: str = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Operator status override (fulfilment transitions only)"""
    try:
        order = await checkout_service.admin_update_status(order_id, request.status, changed_by=admin_id)
    except CheckoutError as e:
        raise http_error(e)
    return OrderResponse(success=True, order=order, message=f"Order status is {order.status.value}")


@app.get("/admin/orders/{order_id}/invoice")
async def admin_get_invoice(
    order_id: str = Path(..., description="Order ID"),
    admin_id: str = Depends(require_admin),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Stream the rendered invoice for an order"""
    try:
        document = await checkout_service.render_invoice(order_id)
    except CheckoutError as e:
        raise http_error(e)
    except InvoiceRenderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{order_id}.pdf"'},
    )


if __name__ == "__main__":
    uvicorn.run(
        "microservices.checkout_service.main:app",
        host=config.service_host,
        port=config.service_port,
        reload=config.debug,
        log_level=config.logging.log_level.lower()
    )
