"""
Checkout Service Factory

Factory for creating CheckoutService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import CheckoutConfig

from .checkout_repository import CheckoutRepository
from .checkout_service import CheckoutService
from .razorpay_gateway import RazorpayGateway

logger = logging.getLogger(__name__)


async def create_checkout_service(
    config: Optional[CheckoutConfig] = None,
    event_bus=None,
    invoice_client=None,
) -> CheckoutService:
    """
    Create CheckoutService with all real dependencies

    Args:
        config: Optional checkout config (loaded from environment if not provided)
        event_bus: Optional event bus for event publishing
        invoice_client: Optional invoice client (creates default if not provided)

    Returns:
        Fully initialized CheckoutService instance
    """
    if config is None:
        config = CheckoutConfig.from_env()

    repository = CheckoutRepository(config=config.infrastructure)
    await repository.initialize()

    if not config.razorpay.key_id or not config.razorpay.key_secret:
        logger.warning("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set; gateway calls will be rejected")
    gateway = RazorpayGateway.from_config(config.razorpay)

    if invoice_client is None:
        try:
            from .clients.invoice_client import InvoiceClient

            invoice_client = InvoiceClient(base_url=config.invoice_service_url)
            logger.info("InvoiceClient initialized for checkout service")
        except Exception as e:
            logger.warning(f"Failed to initialize InvoiceClient: {e}")
            logger.warning("Checkout service will operate without invoice rendering")

    return CheckoutService(
        repository=repository,
        gateway=gateway,
        event_bus=event_bus,
        invoice_client=invoice_client,
        currency=config.currency,
        pending_order_ttl_minutes=config.pending_order_ttl_minutes,
    )


__all__ = ["create_checkout_service"]
