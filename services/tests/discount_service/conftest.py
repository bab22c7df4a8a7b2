from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import create_engine, create_schema, dispose_engines, get_session_factory
from services.discount_service.app.models import Base, DiscountSource, DiscountType, Product
from services.discount_service.app.pricing import DiscountTerms, refresh_prices
from services.discount_service.app.repository import DiscountRepository
from services.discount_service.app.snapshot import edit_standalone

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class CatalogSeeder:
    """Creates categories and products with an optional standalone discount."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def category(self, name: str, parent_id: int | None = None) -> int:
        async with self.session_factory() as session:
            category = await DiscountRepository(session).create_category(name=name, parent_id=parent_id)
            await session.commit()
            return category.id

    async def product(
        self,
        title: str,
        base_price: str,
        *,
        percentage: str | None = None,
        amount: str | None = None,
        parent_category_id: int | None = None,
        sub_category_id: int | None = None,
        variants: Sequence[dict[str, Any]] = (),
    ) -> int:
        async with self.session_factory() as session:
            product = await DiscountRepository(session).create_product(
                title=title,
                base_price=Decimal(base_price),
                parent_category_id=parent_category_id,
                sub_category_id=sub_category_id,
                variants=[
                    {**entry, "base_price": Decimal(entry["base_price"]) if entry.get("base_price") else None}
                    for entry in variants
                ],
            )
            if percentage is not None:
                edit_standalone(product, DiscountTerms(DiscountType.PERCENTAGE, percentage=Decimal(percentage)))
            elif amount is not None:
                edit_standalone(product, DiscountTerms(DiscountType.FIXED, amount=Decimal(amount)))
            refresh_prices(product, NOW)
            await session.commit()
            return product.id

    async def variant_discount(
        self,
        product_id: int,
        variant_code: str,
        terms: DiscountTerms,
        source: DiscountSource | None = None,
    ) -> None:
        async with self.session_factory() as session:
            product = await DiscountRepository(session).get_product(product_id)
            assert product is not None
            variant = next(v for v in product.variants if v.variant_code == variant_code)
            edit_standalone(variant, terms, source)
            refresh_prices(product, NOW)
            await session.commit()

    async def load(self, product_id: int) -> Product:
        async with self.session_factory() as session:
            product = await DiscountRepository(session).get_product(product_id)
            assert product is not None
            return product


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'discount.db'}"
    await create_schema(create_engine(database_url), Base.metadata)
    try:
        yield get_session_factory(database_url)
    finally:
        await dispose_engines()


@pytest.fixture
def catalog(session_factory) -> CatalogSeeder:
    return CatalogSeeder(session_factory)
