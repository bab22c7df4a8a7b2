"""Data access helpers for the discount engine."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy import Select, and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Campaign,
    CampaignTarget,
    CampaignType,
    Category,
    DiscountSource,
    DiscountType,
    Product,
    ProductVariant,
)

SortField = Literal["startDate", "endDate", "createdAt"]

_SORT_COLUMNS = {
    "startDate": Campaign.start_date,
    "endDate": Campaign.end_date,
    "createdAt": Campaign.created_at,
}


def unique_ids(ids: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for value in ids:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class DiscountRepository:
    """Persistence helpers for categories, products, variants and campaigns."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Catalog -----------------------------------------------------------------------------

    async def create_category(self, *, name: str, parent_id: int | None = None) -> Category:
        category = Category(name=name, parent_id=parent_id)
        self.session.add(category)
        await self.session.flush()
        return category

    async def create_product(
        self,
        *,
        title: str,
        base_price: Decimal,
        parent_category_id: int | None = None,
        sub_category_id: int | None = None,
        currency: str = "BDT",
        variants: Sequence[dict[str, Any]] = (),
    ) -> Product:
        product_variants = [
            ProductVariant(
                variant_code=entry["variant_code"],
                color_name=entry.get("color_name"),
                size=entry.get("size"),
                base_price=entry.get("base_price"),
                price=entry["base_price"] if entry.get("base_price") is not None else base_price,
                discount_source=DiscountSource.NONE,
            )
            for entry in variants
        ]
        # An empty list still marks the collection as loaded.
        product = Product(
            title=title,
            base_price=base_price,
            price=base_price,
            currency=currency,
            parent_category_id=parent_category_id,
            sub_category_id=sub_category_id,
            variants=product_variants,
        )
        self.session.add(product)
        await self.session.flush()
        return product

    async def get_product(self, product_id: int) -> Product | None:
        """Load a product and its variants, overwriting whatever the session already holds."""

        result = await self.session.execute(
            select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def existing_product_ids(self, product_ids: Sequence[int]) -> set[int]:
        if not product_ids:
            return set()
        result = await self.session.execute(select(Product.id).where(Product.id.in_(list(product_ids))))
        return set(result.scalars())

    async def existing_category_ids(self, category_ids: Sequence[int]) -> set[int]:
        if not category_ids:
            return set()
        result = await self.session.execute(select(Category.id).where(Category.id.in_(list(category_ids))))
        return set(result.scalars())

    async def product_ids_for_categories(self, category_ids: Sequence[int]) -> list[int]:
        """Products whose parent category or sub-category is one of ``category_ids``.

        Products are grouped by category in the order given and de-duplicated.
        """

        resolved: list[int] = []
        for category_id in category_ids:
            result = await self.session.execute(
                select(Product.id)
                .where(
                    or_(
                        Product.parent_category_id == category_id,
                        Product.sub_category_id == category_id,
                    )
                )
                .order_by(Product.id.asc())
            )
            resolved.extend(result.scalars())
        return unique_ids(resolved)

    async def product_ids_for_sweep(self, *, include_fixed: bool) -> list[int]:
        """Products carrying a standalone discount value on themselves or on a variant."""

        product_filters = [Product.discount_percentage > 0]
        variant_filters = [ProductVariant.discount_percentage > 0]
        if include_fixed:
            product_filters.append(Product.discount_amount > 0)
            variant_filters.append(ProductVariant.discount_amount > 0)
        variant_match = exists().where(
            ProductVariant.product_id == Product.id,
            or_(*variant_filters),
        )
        result = await self.session.execute(
            select(Product.id).where(or_(*product_filters, variant_match)).order_by(Product.id.asc())
        )
        return list(result.scalars())

    # Campaigns ---------------------------------------------------------------------------

    async def create_campaign(
        self,
        *,
        title: str,
        campaign_type: CampaignType,
        target_ids: Sequence[int],
        discount_type: DiscountType,
        discount_value: Decimal,
        start_date: datetime,
        end_date: datetime,
        coupon_code: str | None,
        is_active: bool,
    ) -> Campaign:
        campaign = Campaign(
            title=title,
            type=campaign_type,
            discount_type=discount_type,
            discount_value=discount_value,
            start_date=start_date,
            end_date=end_date,
            coupon_code=coupon_code,
            is_active=is_active,
        )
        campaign.targets = [
            CampaignTarget(position=position, target_id=target_id)
            for position, target_id in enumerate(unique_ids(target_ids))
        ]
        self.session.add(campaign)
        await self.session.flush()
        return campaign

    async def get_campaign(self, campaign_id: int) -> Campaign | None:
        result = await self.session.execute(
            select(Campaign).where(Campaign.id == campaign_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def replace_targets(self, campaign: Campaign, target_ids: Sequence[int]) -> None:
        # Old rows are flushed away first so re-used target ids do not trip the unique constraint.
        campaign.targets.clear()
        await self.session.flush()
        campaign.targets.extend(
            CampaignTarget(position=position, target_id=target_id)
            for position, target_id in enumerate(unique_ids(target_ids))
        )
        await self.session.flush()

    async def list_campaigns(
        self,
        *,
        limit: int,
        offset: int,
        is_active: bool | None = None,
        campaign_type: CampaignType | None = None,
        starts_before: datetime | None = None,
        ends_after: datetime | None = None,
        sort_by: SortField = "createdAt",
        sort_order: Literal["asc", "desc"] = "desc",
    ) -> tuple[list[Campaign], int]:
        base: Select[tuple[Campaign]] = select(Campaign)
        count: Select[tuple[int]] = select(func.count(Campaign.id))

        filters = []
        if is_active is not None:
            filters.append(Campaign.is_active.is_(is_active))
        if campaign_type is not None:
            filters.append(Campaign.type == campaign_type)
        if starts_before is not None:
            filters.append(Campaign.start_date <= starts_before)
        if ends_after is not None:
            filters.append(Campaign.end_date >= ends_after)

        if filters:
            base = base.where(and_(*filters))
            count = count.where(and_(*filters))

        column = _SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        base = base.order_by(ordering, Campaign.id.asc())

        total_result = await self.session.execute(count)
        total = total_result.scalar_one()

        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def list_active_campaigns(self, now: datetime) -> list[Campaign]:
        """Campaigns flagged active whose window contains ``now``."""

        result = await self.session.execute(
            select(Campaign)
            .where(
                Campaign.is_active.is_(True),
                Campaign.start_date <= now,
                Campaign.end_date >= now,
            )
            .order_by(Campaign.start_date.asc(), Campaign.id.asc())
        )
        return list(result.scalars().unique())

    async def campaigns_to_expire(self, now: datetime) -> list[Campaign]:
        result = await self.session.execute(
            select(Campaign)
            .where(Campaign.is_active.is_(True), Campaign.end_date < now)
            .order_by(Campaign.end_date.asc(), Campaign.id.asc())
        )
        return list(result.scalars().unique())

    async def find_product_campaign_conflicts(
        self,
        product_ids: Sequence[int],
        now: datetime,
        *,
        exclude_campaign_id: int | None = None,
    ) -> dict[int, list[int]]:
        """Map each blocking product campaign id to the requested product ids it targets.

        Unexpired product campaigns block regardless of their ``is_active`` flag.
        """

        if not product_ids:
            return {}
        query = (
            select(CampaignTarget.campaign_id, CampaignTarget.target_id)
            .join(Campaign, Campaign.id == CampaignTarget.campaign_id)
            .where(
                Campaign.type == CampaignType.PRODUCT,
                Campaign.end_date > now,
                CampaignTarget.target_id.in_(list(product_ids)),
            )
            .order_by(CampaignTarget.campaign_id.asc(), CampaignTarget.position.asc())
        )
        if exclude_campaign_id is not None:
            query = query.where(Campaign.id != exclude_campaign_id)
        result = await self.session.execute(query)
        conflicts: dict[int, list[int]] = {}
        for campaign_id, target_id in result.all():
            conflicts.setdefault(campaign_id, []).append(target_id)
        return conflicts

    async def unexpired_category_campaigns(
        self,
        now: datetime,
        *,
        exclude_campaign_id: int | None = None,
    ) -> list[Campaign]:
        query = select(Campaign).where(
            Campaign.type == CampaignType.CATEGORY,
            Campaign.end_date > now,
        )
        if exclude_campaign_id is not None:
            query = query.where(Campaign.id != exclude_campaign_id)
        result = await self.session.execute(query.order_by(Campaign.id.asc()))
        return list(result.scalars().unique())

    async def delete_campaign(self, campaign: Campaign) -> None:
        await self.session.delete(campaign)
        await self.session.flush()
