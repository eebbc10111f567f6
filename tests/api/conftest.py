"""
API Test Layer Configuration

HTTP contract tests against the FastAPI app, served in-process through
httpx.ASGITransport with storage and gateway replaced by in-memory fakes.

Usage:
    pytest tests/api -v                    # Run all API tests
    pytest tests/api -v -k "verify"        # Run verify API tests
    pytest tests/api -v --tb=short         # Short traceback
"""

import os
from typing import AsyncGenerator, Dict, Optional

import httpx
import pytest
import pytest_asyncio

os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("PENDING_SWEEP_ENABLED", "false")


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client bound to the checkout app"""
    from microservices.checkout_service.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://checkout.test") as client:
        yield client


class APIClient:
    """HTTP client acting as one caller identity"""

    def __init__(self, http_client: httpx.AsyncClient, headers: Optional[Dict[str, str]] = None):
        self.client = http_client
        self.headers = headers or {}

    def _merge(self, kwargs) -> dict:
        kwargs["headers"] = {**self.headers, **kwargs.get("headers", {})}
        return kwargs

    async def get(self, path: str, **kwargs) -> httpx.Response:
        return await self.client.get(path, **self._merge(kwargs))

    async def post(self, path: str, **kwargs) -> httpx.Response:
        return await self.client.post(path, **self._merge(kwargs))

    async def put(self, path: str, **kwargs) -> httpx.Response:
        return await self.client.put(path, **self._merge(kwargs))


# =============================================================================
# Assertion Helpers
# =============================================================================


class APIAssertions:
    """API-specific assertion helpers"""

    @staticmethod
    def assert_success(response: httpx.Response, expected_status: int = 200):
        """Assert response is successful"""
        assert response.status_code == expected_status, (
            f"Expected {expected_status}, got {response.status_code}: {response.text}"
        )

    @staticmethod
    def assert_not_found(response: httpx.Response):
        """Assert resource not found"""
        assert response.status_code == 404, f"Expected 404, got {response.status_code}"

    @staticmethod
    def assert_validation_error(response: httpx.Response):
        """Assert validation error"""
        assert response.status_code == 422, f"Expected 422, got {response.status_code}"

    @staticmethod
    def assert_unauthorized(response: httpx.Response):
        """Assert unauthorized"""
        assert response.status_code == 401, f"Expected 401, got {response.status_code}"

    @staticmethod
    def assert_has_fields(data: dict, fields: list):
        """Assert response has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"


@pytest.fixture
def api_assert() -> APIAssertions:
    """Provide API assertion helpers"""
    return APIAssertions()
