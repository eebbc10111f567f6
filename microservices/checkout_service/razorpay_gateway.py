"""
Razorpay Payment Gateway Adapter

Creates remote gateway orders and verifies signed payment callbacks.
The key secret and webhook secret are passed in explicitly and never
leave this adapter.
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Optional

import httpx
from tenacity import (
    RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from core.config import RazorpayConfig

from .models import GatewayOrder, to_minor_units
from .protocols import GatewayRejectedError, GatewayUnreachableError

logger = logging.getLogger(__name__)


class _RetryableGatewayError(Exception):
    """Transport failure or 5xx from the gateway"""


def compute_payment_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Hex HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the merchant secret"""
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_webhook_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of a raw webhook body"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _constant_time_equals(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


class RazorpayGateway:
    """Razorpay orders API client and signature verifier"""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        api_url: str = "https://api.razorpay.com/v1",
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._client = http_client

    @classmethod
    def from_config(cls, config: RazorpayConfig) -> "RazorpayGateway":
        return cls(
            key_id=config.key_id,
            key_secret=config.key_secret,
            webhook_secret=config.webhook_secret,
            api_url=config.api_url,
            timeout_seconds=config.timeout_seconds,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def create_remote_order(
        self,
        internal_order_id: str,
        amount: Decimal,
        currency: str,
    ) -> GatewayOrder:
        """
        Create a Razorpay order for an internal order.

        Args:
            internal_order_id: Order id, sent as the receipt
            amount: Final amount in major units
            currency: ISO currency code

        Returns:
            GatewayOrder with the amount in minor units

        Raises:
            GatewayUnreachableError: after bounded retries, or on an unparseable answer
            GatewayRejectedError: on a 4xx rejection
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": internal_order_id,
            "notes": {"order_id": internal_order_id},
        }

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=10),
            retry=retry_if_exception_type(_RetryableGatewayError),
            reraise=True,
        )
        async def _post_order() -> httpx.Response:
            try:
                response = await self._get_client().post(
                    f"{self.api_url}/orders", json=payload, auth=(self.key_id, self._key_secret)
                )
            except httpx.HTTPError as e:
                logger.warning(f"Razorpay order create for {internal_order_id} failed: {e!r}")
                raise _RetryableGatewayError(str(e)) from e
            if response.status_code >= 500:
                logger.warning(
                    f"Razorpay order create for {internal_order_id} returned {response.status_code}"
                )
                raise _RetryableGatewayError(f"HTTP {response.status_code}")
            return response

        try:
            response = await _post_order()
        except (_RetryableGatewayError, RetryError) as e:
            logger.error(
                f"Razorpay unreachable for order {internal_order_id} after {self.max_attempts} attempts: {e}"
            )
            raise GatewayUnreachableError(
                "Payment gateway is unreachable", order_id=internal_order_id
            ) from e

        if response.status_code >= 400:
            logger.error(
                f"Razorpay rejected order {internal_order_id}: {response.status_code} {response.text}"
            )
            raise GatewayRejectedError(
                "Payment gateway rejected the order", order_id=internal_order_id
            )

        try:
            body = response.json()
            gateway_order = GatewayOrder(
                gateway_order_id=body["id"],
                amount=int(body.get("amount", payload["amount"])),
                currency=body.get("currency", currency),
                receipt=body.get("receipt") or internal_order_id,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(
                f"Razorpay returned an invalid order for {internal_order_id}: "
                f"{response.status_code} {response.text[:200]!r} ({e!r})"
            )
            raise GatewayUnreachableError(
                "Payment gateway returned an invalid order", order_id=internal_order_id
            ) from e

        logger.info(
            f"Created Razorpay order {gateway_order.gateway_order_id} for {internal_order_id} "
            f"({gateway_order.amount} {gateway_order.currency})"
        )
        return gateway_order

    def verify(
        self,
        internal_order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
    ) -> bool:
        """Constant-time check of the checkout callback signature"""
        if not gateway_order_id or not gateway_payment_id:
            return False
        expected = compute_payment_signature(self._key_secret, gateway_order_id, gateway_payment_id)
        valid = _constant_time_equals(expected, signature)
        if not valid:
            logger.warning(f"Signature mismatch for order {internal_order_id} ({gateway_order_id})")
        return valid

    def verify_webhook(self, payload: bytes, signature: str) -> bool:
        """Constant-time check of a webhook body signature"""
        if not self._webhook_secret:
            logger.error("Webhook received but RAZORPAY_WEBHOOK_SECRET is not configured")
            return False
        expected = compute_webhook_signature(self._webhook_secret, payload)
        return _constant_time_equals(expected, signature)
