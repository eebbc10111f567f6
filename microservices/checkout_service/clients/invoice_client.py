"""
Invoice Service Client for Checkout Service

HTTP client for the external invoice renderer. The checkout core only
supplies order data; rendering lives elsewhere.
"""

import logging
from typing import Optional

import httpx

from ..models import Order

logger = logging.getLogger(__name__)


class InvoiceRenderError(Exception):
    """Invoice service failed or is unreachable"""


class InvoiceClient:
    """Client for invoice_service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Invoice Service client

        Args:
            base_url: Invoice service base URL
            timeout: Request timeout in seconds
            http_client: Optional preconfigured httpx client
        """
        self.base_url = base_url.rstrip('/')
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"InvoiceClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def render_invoice(self, order: Order) -> bytes:
        """
        Render an invoice document for an order

        Args:
            order: Settled order

        Returns:
            Rendered document bytes (PDF)

        Raises:
            InvoiceRenderError: on transport failure or non-2xx response
        """
        try:
            response = await self.client.post(
                f"{self.base_url}/api/v1/invoices/render",
                json={"order": order.model_dump(mode="json")},
            )
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Invoice render failed for order {order.order_id}: "
                f"{e.response.status_code} - {e.response.text}"
            )
            raise InvoiceRenderError(f"Invoice service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Invoice service unreachable for order {order.order_id}: {e}")
            raise InvoiceRenderError("Invoice service unreachable") from e
