"""
Inventory Reconciler

Stock is only checked at checkout-create time and committed at finalize
time; nothing is reserved while an order is PENDING.
"""

import logging
from typing import Dict, Iterable

from .models import OrderItem
from .protocols import CheckoutTransactionProtocol, InsufficientStockError

logger = logging.getLogger(__name__)


class InventoryReconciler:
    """Commits stock for a settled order"""

    @staticmethod
    def quantities_by_product(lines: Iterable[OrderItem]) -> Dict[str, int]:
        """Total quantity per product, in ascending product id order"""
        totals: Dict[str, int] = {}
        for line in lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return {product_id: totals[product_id] for product_id in sorted(totals)}

    async def commit(
        self,
        tx: CheckoutTransactionProtocol,
        order_id: str,
        lines: Iterable[OrderItem],
    ) -> None:
        """
        Decrement stock for every line inside the caller's transaction.

        Products are locked in ascending id order so concurrent finalizes
        cannot deadlock. Any shortfall raises and the caller's transaction
        rolls every earlier decrement back.

        Raises:
            InsufficientStockError: a product has fewer units than ordered
        """
        for product_id, quantity in self.quantities_by_product(lines).items():
            if not await tx.decrement_stock(product_id, quantity):
                logger.warning(
                    f"Insufficient stock for product {product_id} while settling order {order_id}"
                )
                raise InsufficientStockError(
                    f"Insufficient stock for product {product_id}",
                    order_id=order_id,
                    product_id=product_id,
                )
        logger.info(f"Committed stock for order {order_id}")

    async def release(self, order_id: str) -> None:
        """No stock is held for PENDING orders, so there is nothing to release"""
        logger.debug(f"Nothing to release for order {order_id}")
