#!/usr/bin/env python3
"""Checkout service main configuration

Combines infrastructure and logging sub-configs with the payment gateway
and settlement settings of the checkout service.
"""
import os
from dataclasses import dataclass, field

from .infra_config import InfraConfig
from .logging_config import LoggingConfig


def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class RazorpayConfig:
    """Payment gateway credentials and call policy"""
    key_id: str = ""
    key_secret: str = ""
    webhook_secret: str = ""
    api_url: str = "https://api.razorpay.com/v1"
    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5

    @classmethod
    def from_env(cls) -> 'RazorpayConfig':
        return cls(
            key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
            webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET") or os.getenv("WEBHOOK_SECRET", ""),
            api_url=os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1"),
            timeout_seconds=_float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "5"), 5.0),
            max_attempts=_int(os.getenv("GATEWAY_MAX_ATTEMPTS", "3"), 3),
            backoff_seconds=_float(os.getenv("GATEWAY_BACKOFF_SECONDS", "0.5"), 0.5),
        )


@dataclass
class CheckoutConfig:
    """Main configuration for the checkout service"""

    service_name: str = "checkout_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8240
    environment: str = "development"
    debug: bool = False

    currency: str = "INR"
    pending_order_ttl_minutes: int = 30
    pending_sweep_enabled: bool = True
    pending_sweep_interval_seconds: int = 60
    invoice_service_url: str = "http://localhost:8241"

    # Sub-configurations
    razorpay: RazorpayConfig = field(default_factory=RazorpayConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'CheckoutConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            service_name=os.getenv("SERVICE_NAME", "checkout_service"),
            service_host=os.getenv("SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("SERVICE_PORT", "8240"), 8240),
            environment=env,
            debug=_bool(os.getenv("DEBUG", "false")),
            currency=os.getenv("CHECKOUT_CURRENCY", "INR"),
            pending_order_ttl_minutes=_int(os.getenv("PENDING_ORDER_TTL_MINUTES", "30"), 30),
            pending_sweep_enabled=_bool(os.getenv("PENDING_SWEEP_ENABLED", "true")),
            pending_sweep_interval_seconds=_int(os.getenv("PENDING_SWEEP_INTERVAL_SECONDS", "60"), 60),
            invoice_service_url=os.getenv("INVOICE_SERVICE_URL", "http://localhost:8241"),
            razorpay=RazorpayConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )
