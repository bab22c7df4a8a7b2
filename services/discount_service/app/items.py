"""Item read path and catalog-manager discount edits."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, NotFoundError
from .models import DiscountSource, Product, ProductVariant
from .pricing import NO_DISCOUNT, DiscountTerms, PriceQuote, as_utc, quote_item, refresh_prices, utcnow
from .repository import DiscountRepository
from .snapshot import edit_standalone, restore

logger = logging.getLogger(__name__)


def find_variant(product: Product, variant_id: int) -> ProductVariant:
    for variant in product.variants:
        if variant.id == variant_id:
            return variant
    raise NotFoundError(f"Variant {variant_id} not found on product {product.id}")


class ItemDiscountService:
    """Price quotes, standalone discount edits and overlay repair for one product."""

    def __init__(
        self,
        repository: DiscountRepository,
        *,
        price_places: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.price_places = price_places
        self.clock = clock

    async def get_product(self, product_id: int) -> Product:
        product = await self.repository.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    async def quote(
        self,
        product_id: int,
        *,
        variant_id: int | None = None,
        at: datetime | None = None,
    ) -> tuple[Product, ProductVariant | None, PriceQuote]:
        product = await self.get_product(product_id)
        variant = find_variant(product, variant_id) if variant_id is not None else None
        now = as_utc(at) if at is not None else self.clock()
        return product, variant, quote_item(product, variant, now, self.price_places)

    async def _save(self, product: Product) -> Product:
        refresh_prices(product, self.clock(), self.price_places)
        try:
            await self.repository.session.flush()
        except StaleDataError as exc:
            raise ConflictError(f"Product {product.id} was modified concurrently") from exc
        return product

    async def edit_product_discount(
        self,
        product_id: int,
        terms: DiscountTerms,
        *,
        expected_version: int | None = None,
    ) -> Product:
        product = await self.get_product(product_id)
        if expected_version is not None and product.version != expected_version:
            raise ConflictError(
                f"Product {product_id} is at version {product.version}, expected {expected_version}"
            )
        edit_standalone(product, terms)
        logger.info(
            "Standalone discount of product %s edited%s",
            product_id,
            " during campaign overlay" if product.campaign_discount_active else "",
        )
        return await self._save(product)

    async def edit_variant_discount(
        self,
        product_id: int,
        variant_id: int,
        terms: DiscountTerms,
        *,
        clear: bool = False,
        expected_version: int | None = None,
    ) -> Product:
        """Edit one variant's own discount; ``clear`` hands it back to the product's discount."""

        product = await self.get_product(product_id)
        variant = find_variant(product, variant_id)
        if expected_version is not None and variant.version != expected_version:
            raise ConflictError(
                f"Variant {variant_id} is at version {variant.version}, expected {expected_version}"
            )
        if clear:
            edit_standalone(variant, NO_DISCOUNT, DiscountSource.NONE)
        else:
            edit_standalone(variant, terms)
        return await self._save(product)

    async def clear_overlay(self, product_id: int) -> Product:
        """Restore every item of the product that is still carrying a campaign overlay."""

        product = await self.get_product(product_id)
        restored = 0
        for item in (product, *product.variants):
            if item.campaign_discount_active:
                restore(item)
                restored += 1
        logger.info("Cleared campaign overlay on product %s (%d items restored)", product_id, restored)
        return await self._save(product)
