"""
Checkout API fixtures

Installs a CheckoutService backed by the in-memory repository and a fake
Razorpay API on the app's global microservice instance.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from microservices.checkout_service.checkout_service import CheckoutService
from microservices.checkout_service.razorpay_gateway import RazorpayGateway
from tests.api.conftest import APIClient
from tests.component.checkout.mocks import (
    MockCheckoutRepository, MockInvoiceClient, MockRazorpayApi,
)
from tests.component.mocks import MockEventBus
from tests.fixtures import (
    TEST_KEY_ID,
    TEST_KEY_SECRET,
    TEST_WEBHOOK_SECRET,
    make_coupon,
    make_product,
    make_user_id,
)


@pytest.fixture
def repo() -> MockCheckoutRepository:
    repo = MockCheckoutRepository()
    repo.set_product(make_product(product_id="prd_p1", price=Decimal("500"), stock=10))
    repo.set_coupon(make_coupon(code="SAVE10", coupon_id="cpn_save10"))
    return repo


@pytest.fixture
def razorpay_api() -> MockRazorpayApi:
    return MockRazorpayApi()


@pytest_asyncio.fixture
async def checkout_service(repo, razorpay_api):
    from microservices.checkout_service.main import checkout_microservice

    gateway = RazorpayGateway(
        key_id=TEST_KEY_ID,
        key_secret=TEST_KEY_SECRET,
        webhook_secret=TEST_WEBHOOK_SECRET,
        backoff_seconds=0,
        http_client=razorpay_api.client(),
    )
    service = CheckoutService(
        repository=repo,
        gateway=gateway,
        event_bus=MockEventBus(),
        invoice_client=MockInvoiceClient(),
    )
    checkout_microservice.checkout_service = service
    yield service
    checkout_microservice.checkout_service = None
    await gateway.close()


@pytest.fixture
def user_id() -> str:
    return make_user_id()


@pytest.fixture
def customer(http_client, checkout_service, user_id) -> APIClient:
    return APIClient(http_client, {"X-User-Id": user_id})


@pytest.fixture
def admin(http_client, checkout_service) -> APIClient:
    return APIClient(http_client, {"X-User-Id": "ops_admin", "X-User-Role": "admin"})


@pytest.fixture
def anonymous(http_client, checkout_service) -> APIClient:
    return APIClient(http_client)
