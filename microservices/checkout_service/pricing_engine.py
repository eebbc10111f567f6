"""
Pricing Engine

Re-prices a cart snapshot from the catalog. Client-supplied prices are
never read; lens and coating surcharges are looked up by identifier.
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .models import (
    CartLine, CatalogProduct, LensOption, LensOptionKind, LensSelection,
    PricedLine, PricingResult, quantize_money,
)
from .protocols import CatalogProtocol, InvalidCheckoutRequestError, LineUnavailableError

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class PricingEngine:
    """Computes authoritative line totals and subtotal"""

    def __init__(self, catalog: CatalogProtocol):
        self.catalog = catalog

    async def price(self, lines: Sequence[CartLine]) -> PricingResult:
        """
        Price every line or fail the whole call.

        Raises:
            LineUnavailableError: a product is missing, inactive, deleted,
                out of stock, or a lens option is unknown
            InvalidCheckoutRequestError: empty cart
        """
        if not lines:
            raise InvalidCheckoutRequestError("Cart is empty")

        requested = self._aggregate_quantities(lines)
        products = await self.catalog.get_products(list(requested.keys()))

        for product_id, quantity in requested.items():
            self._check_available(products.get(product_id), product_id, quantity)

        option_ids = self._lens_option_ids(lines)
        options = await self.catalog.get_lens_options(option_ids) if option_ids else {}

        priced: List[PricedLine] = []
        for line in lines:
            product = products[line.product_id]
            surcharge = self._surcharge(line, options)
            unit_price = quantize_money(product.unit_price)
            list_price = quantize_money(product.price)
            priced.append(PricedLine(
                product_id=line.product_id,
                quantity=line.quantity,
                list_price=list_price,
                unit_price=unit_price,
                line_discount=quantize_money((list_price - unit_price) * line.quantity),
                surcharge=surcharge,
                line_total=quantize_money((unit_price + surcharge) * line.quantity),
                configuration=line.configuration.model_dump(mode="json", exclude_none=True),
            ))

        subtotal = quantize_money(sum((p.line_total for p in priced), ZERO))
        line_discount_total = quantize_money(sum((p.line_discount for p in priced), ZERO))
        logger.debug(f"Priced {len(priced)} lines, subtotal {subtotal}")
        return PricingResult(lines=priced, subtotal=subtotal, line_discount_total=line_discount_total)

    @staticmethod
    def _aggregate_quantities(lines: Sequence[CartLine]) -> Dict[str, int]:
        # Same product on several lines (different lenses) shares one stock count
        totals: Dict[str, int] = OrderedDict()
        for line in lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals

    @staticmethod
    def _check_available(product: Optional[CatalogProduct], product_id: str, quantity: int) -> None:
        if product is None or product.is_deleted:
            raise LineUnavailableError(
                f"Product {product_id} is not available", product_id=product_id
            )
        if not product.is_active:
            raise LineUnavailableError(
                f"Product {product.name or product_id} is inactive", product_id=product_id
            )
        if product.stock <= 0:
            raise LineUnavailableError(
                f"Product {product.name or product_id} is out of stock", product_id=product_id
            )
        if quantity > product.stock:
            raise LineUnavailableError(
                f"Only {product.stock} units of {product.name or product_id} in stock",
                product_id=product_id,
            )

    @staticmethod
    def _lens_option_ids(lines: Sequence[CartLine]) -> List[str]:
        ids: List[str] = []
        for line in lines:
            config = line.configuration
            if isinstance(config, LensSelection):
                for option_id in (config.lens_type_id, config.coating_id):
                    if option_id and option_id not in ids:
                        ids.append(option_id)
        return ids

    @staticmethod
    def _surcharge(line: CartLine, options: Dict[str, LensOption]) -> Decimal:
        config = line.configuration
        if not isinstance(config, LensSelection):
            return ZERO

        wanted = [(config.lens_type_id, LensOptionKind.LENS_TYPE)]
        if config.coating_id:
            wanted.append((config.coating_id, LensOptionKind.COATING))

        surcharge = ZERO
        for option_id, kind in wanted:
            option = options.get(option_id)
            if option is None or not option.is_active or option.kind != kind:
                raise LineUnavailableError(
                    f"Lens option {option_id} is not available for product {line.product_id}",
                    product_id=line.product_id,
                )
            surcharge += option.price
        return quantize_money(surcharge)
