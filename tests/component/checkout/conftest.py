"""
Checkout component fixtures

Wires the real CheckoutService, PricingEngine, CouponEvaluator and
RazorpayGateway to the in-memory repository and a fake Razorpay API.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from microservices.checkout_service.checkout_service import CheckoutService
from microservices.checkout_service.models import CheckoutCreateRequest
from microservices.checkout_service.razorpay_gateway import RazorpayGateway
from tests.fixtures import (
    TEST_KEY_ID,
    TEST_KEY_SECRET,
    TEST_WEBHOOK_SECRET,
    make_address,
    make_cart_line,
    make_checkout_request,
    make_coupon,
    make_payment_id,
    make_product,
    make_user_id,
    sign_payment,
)

from .mocks import MockCheckoutRepository, MockInvoiceClient, MockRazorpayApi


@pytest.fixture
def user_id() -> str:
    return make_user_id()


@pytest.fixture
def repo() -> MockCheckoutRepository:
    return MockCheckoutRepository()


@pytest.fixture
def razorpay_api() -> MockRazorpayApi:
    return MockRazorpayApi()


@pytest.fixture
def invoice_client() -> MockInvoiceClient:
    return MockInvoiceClient()


@pytest_asyncio.fixture
async def gateway(razorpay_api):
    gateway = RazorpayGateway(
        key_id=TEST_KEY_ID,
        key_secret=TEST_KEY_SECRET,
        webhook_secret=TEST_WEBHOOK_SECRET,
        api_url="https://razorpay.test/v1",
        max_attempts=3,
        backoff_seconds=0,
        http_client=razorpay_api.client(),
    )
    yield gateway
    await gateway.close()


@pytest.fixture
def service(repo, gateway, mock_event_bus, invoice_client) -> CheckoutService:
    return CheckoutService(
        repository=repo,
        gateway=gateway,
        event_bus=mock_event_bus,
        invoice_client=invoice_client,
        pending_order_ttl_minutes=30,
    )


@pytest.fixture
def frame(repo):
    """Frame P1: 500.00, 10 in stock"""
    return repo.set_product(make_product(product_id="prd_p1", price=Decimal("500"), stock=10))


@pytest.fixture
def save10(repo):
    """10% off, minimum order 100"""
    return repo.set_coupon(make_coupon(code="SAVE10", coupon_id="cpn_save10"))


@pytest.fixture
def address(repo, user_id):
    return repo.set_address(make_address(user_id, address_id="addr_home"))


class CheckoutDriver:
    """Drives a customer through create and the gateway callback"""

    def __init__(self, service: CheckoutService):
        self.service = service

    async def create(self, user_id: str, items, **kwargs):
        request = CheckoutCreateRequest.model_validate(make_checkout_request(items, **kwargs))
        return await self.service.create_checkout(request, user_id)

    async def buy(self, user_id: str, product_id: str, quantity: int = 1, **kwargs):
        return await self.create(user_id, [make_cart_line(product_id, quantity)], **kwargs)

    @staticmethod
    def callback(created, payment_id=None, secret: str = TEST_KEY_SECRET):
        """Callback fields as the checkout widget would post them"""
        payment_id = payment_id or make_payment_id()
        gateway_order_id = created.razorpay.order_id
        return {
            "order_id": created.order_id,
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": payment_id,
            "signature": sign_payment(gateway_order_id, payment_id, secret),
        }

    async def pay(self, created, user_id=None, **kwargs):
        return await self.service.verify_and_finalize(**self.callback(created, **kwargs), user_id=user_id)


@pytest.fixture
def driver(service) -> CheckoutDriver:
    return CheckoutDriver(service)
