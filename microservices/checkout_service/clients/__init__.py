"""
Checkout Service Clients Module

HTTP clients for synchronous communication with other services
"""

from .invoice_client import InvoiceClient, InvoiceRenderError

__all__ = [
    "InvoiceClient",
    "InvoiceRenderError",
]
