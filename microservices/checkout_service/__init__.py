"""
Checkout Service

Checkout and payment settlement service for the eyewear storefront.

Features:
- Server-side cart pricing with lens and coating surcharges
- Coupon evaluation with race-safe redemption at settlement
- Razorpay order creation and signature verification
- Idempotent, at-most-once order finalization
- Stock commit on verified payment, pending-order sweep
"""

__version__ = "1.0.0"
