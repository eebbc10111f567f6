"""
Checkout Integration Test Fixtures

Runs CheckoutRepository against a real PostgreSQL database. The schema
migration is applied once per test and every checkout table is truncated
before the test body runs.

Enable with CHECKOUT_TEST_DB=1 and the usual POSTGRES_* variables.
"""
from decimal import Decimal
from pathlib import Path

import pytest_asyncio

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper
from microservices.checkout_service.checkout_repository import CheckoutRepository

MIGRATION = (
    Path(__file__).resolve().parents[3]
    / "microservices" / "checkout_service" / "migrations" / "001_checkout_schema.sql"
)

TABLES = (
    "coupon_redemptions", "payments", "orders", "coupon_products",
    "coupons", "addresses", "lens_options", "products",
)


@pytest_asyncio.fixture
async def db():
    client = PostgresClientWrapper("checkout_service_test", InfraConfig.from_env())
    async with client.transaction() as conn:
        await conn.execute(MIGRATION.read_text())
        await conn.execute(
            "TRUNCATE " + ", ".join(f"checkout.{t}" for t in TABLES) + " CASCADE"
        )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def repository(db) -> CheckoutRepository:
    repository = CheckoutRepository(db=db)
    await repository.initialize()
    return repository


async def insert_product(db, product_id: str, price: Decimal = Decimal("500"), stock: int = 10):
    await db.execute(
        "INSERT INTO checkout.products (product_id, name, price, stock) VALUES ($1, $2, $3, $4)",
        [product_id, f"Frame {product_id}", price, stock],
    )


async def insert_coupon(db, coupon_id: str, code: str, usage_limit=None, per_user_limit=None):
    await db.execute(
        '''
            INSERT INTO checkout.coupons (
                coupon_id, code, discount_type, discount_value, min_order_value,
                valid_from, valid_to, usage_limit, per_user_limit
            ) VALUES ($1, $2, 'PERCENTAGE', 10, 100, NOW() - INTERVAL '1 day',
                      NOW() + INTERVAL '7 days', $3, $4)
        ''',
        [coupon_id, code, usage_limit, per_user_limit],
    )
