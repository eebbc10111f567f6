"""
Shared Test Fixtures

Centralized factories and generators used across all test layers.

Structure:
    - common.py: Base ID generators, timestamps
    - checkout_fixtures.py: Checkout service factories
"""

# Common utilities
from .common import (
    make_user_id,
    make_timestamp,
)

# Checkout service fixtures
from .checkout_fixtures import (
    TEST_KEY_ID,
    TEST_KEY_SECRET,
    TEST_WEBHOOK_SECRET,
    make_product_id,
    make_product,
    make_lens_type,
    make_coating,
    make_coupon,
    make_address,
    make_cart_line,
    make_checkout_request,
    make_payment_id,
    sign_payment,
)

__all__ = [
    "make_user_id",
    "make_timestamp",
    "TEST_KEY_ID",
    "TEST_KEY_SECRET",
    "TEST_WEBHOOK_SECRET",
    "make_product_id",
    "make_product",
    "make_lens_type",
    "make_coating",
    "make_coupon",
    "make_address",
    "make_cart_line",
    "make_checkout_request",
    "make_payment_id",
    "sign_payment",
]
