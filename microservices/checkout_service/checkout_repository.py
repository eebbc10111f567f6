"""
Checkout Service Data Repository

Data access layer - PostgreSQL (asyncpg)
Implements CheckoutRepositoryProtocol from protocols.py

Every write that races with another request is a conditional UPDATE
(compare-and-set on status, stock or redemption counters). Locks inside a
finalize transaction are taken in a fixed order: order row, coupon row,
then product rows by ascending id.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import asyncpg

from core.config import InfraConfig
from core.postgres_client import PostgresClientWrapper, get_postgres_client

from .models import (
    CatalogProduct, Coupon, LensOption, Order, OrderItem, OrderStatus,
    PaymentRecord, PaymentRecordStatus, PaymentStatus,
)

logger = logging.getLogger(__name__)

SCHEMA = "checkout"


def _loads(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_order(row: Dict[str, Any]) -> Order:
    data = dict(row)
    data["items"] = [OrderItem(**item) for item in (_loads(data.get("items")) or [])]
    data["shipping_address"] = _loads(data.get("shipping_address"))
    return Order(**data)


def _row_to_payment(row: Dict[str, Any]) -> PaymentRecord:
    return PaymentRecord(**dict(row))


def _rows_updated(status: str) -> int:
    # asyncpg returns e.g. "UPDATE 3"
    try:
        return int(status.split()[-1])
    except (AttributeError, ValueError, IndexError):
        return 0


class PostgresCheckoutTransaction:
    """Conditional writes bound to one asyncpg connection inside a transaction"""

    def __init__(self, conn: asyncpg.Connection, schema: str = SCHEMA):
        self.conn = conn
        self.schema = schema

    async def claim_pending_order(self, order_id: str) -> Optional[Order]:
        row = await self.conn.fetchrow(
            f'''
                UPDATE {self.schema}.orders
                SET status = $2, payment_status = $3, failure_reason = NULL, updated_at = NOW()
                WHERE order_id = $1 AND status = $4
                RETURNING *
            ''',
            order_id,
            OrderStatus.PROCESSING.value,
            PaymentStatus.PAID.value,
            OrderStatus.PENDING.value,
        )
        return _row_to_order(row) if row else None

    async def redeem_coupon(self, coupon_id: str, user_id: str, order_id: str, discount_amount) -> bool:
        coupon = await self.conn.fetchrow(
            f'''
                SELECT usage_limit, per_user_limit, times_redeemed
                FROM {self.schema}.coupons
                WHERE coupon_id = $1
                FOR UPDATE
            ''',
            coupon_id,
        )
        if coupon is None:
            return False

        # Per-user count is stable while the coupon row is locked
        if coupon["per_user_limit"] is not None:
            used = await self.conn.fetchval(
                f'''
                    SELECT COUNT(*) FROM {self.schema}.coupon_redemptions
                    WHERE coupon_id = $1 AND user_id = $2
                ''',
                coupon_id, user_id,
            )
            if used >= coupon["per_user_limit"]:
                return False

        redeemed = await self.conn.fetchval(
            f'''
                UPDATE {self.schema}.coupons
                SET times_redeemed = times_redeemed + 1
                WHERE coupon_id = $1
                  AND (usage_limit IS NULL OR times_redeemed < usage_limit)
                RETURNING times_redeemed
            ''',
            coupon_id,
        )
        if redeemed is None:
            return False

        await self.conn.execute(
            f'''
                INSERT INTO {self.schema}.coupon_redemptions (
                    redemption_id, coupon_id, user_id, order_id, discount_amount, redeemed_at
                ) VALUES ($1, $2, $3, $4, $5, NOW())
            ''',
            f"red_{uuid.uuid4().hex[:24]}", coupon_id, user_id, order_id, discount_amount,
        )
        return True

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        remaining = await self.conn.fetchval(
            f'''
                UPDATE {self.schema}.products
                SET stock = stock - $2, updated_at = NOW()
                WHERE product_id = $1 AND stock >= $2
                RETURNING stock
            ''',
            product_id, quantity,
        )
        return remaining is not None

    async def verify_payment_record(
        self,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature_digest: Optional[str],
    ) -> bool:
        record_id = await self.conn.fetchval(
            f'''
                UPDATE {self.schema}.payments
                SET status = $5, gateway_payment_id = $3, signature_digest = $4, updated_at = NOW()
                WHERE order_id = $1 AND gateway_order_id = $2 AND status = $6
                RETURNING payment_record_id
            ''',
            order_id, gateway_order_id, gateway_payment_id, signature_digest,
            PaymentRecordStatus.VERIFIED.value, PaymentRecordStatus.PENDING.value,
        )
        return record_id is not None


class CheckoutRepository:
    """Checkout service data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        db: Optional[PostgresClientWrapper] = None,
        config: Optional[InfraConfig] = None,
    ):
        self.db = db
        self.config = config
        self.schema = SCHEMA

    async def initialize(self):
        """Initialize database connection"""
        if self.db is None:
            self.db = await get_postgres_client("checkout_service", self.config)
        logger.info("Checkout repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        if self.db is not None:
            await self.db.close()
        logger.info("Checkout repository database connection closed")

    async def health_check(self) -> bool:
        if self.db is None:
            return False
        return await self.db.health_check()

    # ====================
    # Catalog (read-only)
    # ====================

    async def get_products(self, product_ids: Sequence[str]) -> Dict[str, CatalogProduct]:
        if not product_ids:
            return {}
        rows = await self.db.query(
            f'''
                SELECT product_id, name, price, discount_price, stock, is_active, is_deleted
                FROM {self.schema}.products
                WHERE product_id = ANY($1::text[])
            ''',
            [list(product_ids)],
        )
        return {row["product_id"]: CatalogProduct(**row) for row in rows}

    async def get_lens_options(self, option_ids: Sequence[str]) -> Dict[str, LensOption]:
        if not option_ids:
            return {}
        rows = await self.db.query(
            f'''
                SELECT option_id, name, kind, price, is_active
                FROM {self.schema}.lens_options
                WHERE option_id = ANY($1::text[])
            ''',
            [list(option_ids)],
        )
        return {row["option_id"]: LensOption(**row) for row in rows}

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        row = await self.db.query_row(
            f'''
                SELECT c.*,
                       COALESCE(
                           array_agg(cp.product_id) FILTER (WHERE cp.product_id IS NOT NULL),
                           '{{}}'
                       ) AS applicable_product_ids
                FROM {self.schema}.coupons c
                LEFT JOIN {self.schema}.coupon_products cp ON cp.coupon_id = c.coupon_id
                WHERE UPPER(c.code) = UPPER($1)
                GROUP BY c.coupon_id
            ''',
            [code],
        )
        if not row:
            return None
        row["applicable_product_ids"] = list(row.get("applicable_product_ids") or [])
        return Coupon(**row)

    async def count_user_redemptions(self, coupon_id: str, user_id: str) -> int:
        row = await self.db.query_row(
            f'''
                SELECT COUNT(*) AS used FROM {self.schema}.coupon_redemptions
                WHERE coupon_id = $1 AND user_id = $2
            ''',
            [coupon_id, user_id],
        )
        return int(row["used"]) if row else 0

    async def get_address(self, address_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self.db.query_row(
            f'''
                SELECT address_id, full_name, phone, line1, line2, city, state, postal_code, country
                FROM {self.schema}.addresses
                WHERE address_id = $1 AND user_id = $2
            ''',
            [address_id, user_id],
        )
        return row

    # ====================
    # Orders
    # ====================

    async def create_order(self, order: Order) -> Order:
        """Insert a PENDING order with its line item snapshot"""
        try:
            row = await self.db.query_row(
                f'''
                    INSERT INTO {self.schema}.orders (
                        order_id, user_id, items, subtotal, discount_amount, shipping, tax,
                        final_amount, currency, status, payment_status, coupon_id, coupon_code,
                        address_id, shipping_address, refund_required, failure_reason,
                        created_at, updated_at
                    ) VALUES (
                        $1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
                        $14, $15::jsonb, $16, $17, $18, $19
                    )
                    RETURNING *
                ''',
                [
                    order.order_id,
                    order.user_id,
                    json.dumps([item.model_dump(mode="json") for item in order.items]),
                    order.subtotal,
                    order.discount_amount,
                    order.shipping,
                    order.tax,
                    order.final_amount,
                    order.currency,
                    order.status.value,
                    order.payment_status.value,
                    order.coupon_id,
                    order.coupon_code,
                    order.address_id,
                    json.dumps(order.shipping_address) if order.shipping_address is not None else None,
                    order.refund_required,
                    order.failure_reason,
                    order.created_at,
                    order.updated_at,
                ],
            )
        except Exception as e:
            logger.error(f"Error creating order {order.order_id}: {e}", exc_info=True)
            raise
        return _row_to_order(row)

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.orders WHERE order_id = $1", [order_id]
        )
        return _row_to_order(row) if row else None

    async def get_order_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        row = await self.db.query_row(
            f'''
                SELECT o.* FROM {self.schema}.orders o
                JOIN {self.schema}.payments p ON p.order_id = o.order_id
                WHERE p.gateway_order_id = $1
            ''',
            [gateway_order_id],
        )
        return _row_to_order(row) if row else None

    async def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        refund_required: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Order]:
        conditions: List[str] = []
        params: List[Any] = []

        if user_id:
            params.append(user_id)
            conditions.append(f"user_id = ${len(params)}")
        if status:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")
        if refund_required is not None:
            params.append(refund_required)
            conditions.append(f"refund_required = ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.orders
                {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) - 1} OFFSET ${len(params)}
            ''',
            params,
        )
        return [_row_to_order(row) for row in rows]

    async def transition_order(
        self,
        order_id: str,
        expected: Sequence[OrderStatus],
        new_status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
        failure_reason: Optional[str] = None,
        refund_required: Optional[bool] = None,
    ) -> Optional[Order]:
        row = await self.db.query_row(
            f'''
                UPDATE {self.schema}.orders
                SET status = $2,
                    payment_status = COALESCE($3, payment_status),
                    failure_reason = COALESCE($4, failure_reason),
                    refund_required = COALESCE($5, refund_required),
                    updated_at = NOW()
                WHERE order_id = $1 AND status = ANY($6::text[])
                RETURNING *
            ''',
            [
                order_id,
                new_status.value,
                payment_status.value if payment_status else None,
                failure_reason,
                refund_required,
                [s.value for s in expected],
            ],
        )
        if row is None:
            logger.info(f"Order {order_id} not moved to {new_status.value}: status changed concurrently")
            return None
        return _row_to_order(row)

    async def flag_refund_required(self, order_id: str, reason: str) -> Optional[Order]:
        row = await self.db.query_row(
            f'''
                UPDATE {self.schema}.orders
                SET refund_required = TRUE, failure_reason = $2, updated_at = NOW()
                WHERE order_id = $1 AND NOT refund_required
                RETURNING *
            ''',
            [order_id, reason],
        )
        return _row_to_order(row) if row else None

    async def note_failed_attempt(self, order_id: str, reason: str) -> Optional[Order]:
        row = await self.db.query_row(
            f'''
                UPDATE {self.schema}.orders
                SET failure_reason = $2, updated_at = NOW()
                WHERE order_id = $1 AND status = $3
                RETURNING *
            ''',
            [order_id, reason, OrderStatus.PENDING.value],
        )
        return _row_to_order(row) if row else None

    async def expire_pending_orders(self, cutoff: datetime) -> List[Order]:
        async with self.db.transaction() as conn:
            rows = await conn.fetch(
                f'''
                    UPDATE {self.schema}.orders
                    SET status = $2, payment_status = $3, failure_reason = $4, updated_at = NOW()
                    WHERE status = $5 AND created_at < $1
                    RETURNING *
                ''',
                cutoff,
                OrderStatus.PAYMENT_FAILED.value,
                PaymentStatus.FAILED.value,
                "Payment window expired",
                OrderStatus.PENDING.value,
            )
            order_ids = [row["order_id"] for row in rows]
            if order_ids:
                await conn.execute(
                    f'''
                        UPDATE {self.schema}.payments
                        SET status = $2, updated_at = NOW()
                        WHERE order_id = ANY($1::text[]) AND status = $3
                    ''',
                    order_ids,
                    PaymentRecordStatus.FAILED.value,
                    PaymentRecordStatus.PENDING.value,
                )
        return [_row_to_order(dict(row)) for row in rows]

    # ====================
    # Payment records
    # ====================

    async def create_payment_record(self, record: PaymentRecord) -> PaymentRecord:
        row = await self.db.query_row(
            f'''
                INSERT INTO {self.schema}.payments (
                    payment_record_id, order_id, gateway_order_id, gateway_payment_id,
                    signature_digest, amount, currency, status, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
            ''',
            [
                record.payment_record_id,
                record.order_id,
                record.gateway_order_id,
                record.gateway_payment_id,
                record.signature_digest,
                record.amount,
                record.currency,
                record.status.value,
                record.created_at,
                record.updated_at,
            ],
        )
        return _row_to_payment(row)

    async def get_payment_records(self, order_id: str) -> List[PaymentRecord]:
        rows = await self.db.query(
            f'''
                SELECT * FROM {self.schema}.payments
                WHERE order_id = $1
                ORDER BY created_at ASC
            ''',
            [order_id],
        )
        return [_row_to_payment(row) for row in rows]

    async def fail_payment_records(
        self,
        order_id: str,
        gateway_payment_id: Optional[str] = None,
        signature_digest: Optional[str] = None,
    ) -> int:
        status = await self.db.execute(
            f'''
                UPDATE {self.schema}.payments
                SET status = $2,
                    gateway_payment_id = COALESCE($3, gateway_payment_id),
                    signature_digest = COALESCE($4, signature_digest),
                    updated_at = NOW()
                WHERE order_id = $1 AND status = $5
            ''',
            [
                order_id,
                PaymentRecordStatus.FAILED.value,
                gateway_payment_id,
                signature_digest,
                PaymentRecordStatus.PENDING.value,
            ],
        )
        return _rows_updated(status)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresCheckoutTransaction]:
        async with self.db.transaction() as conn:
            yield PostgresCheckoutTransaction(conn, self.schema)

