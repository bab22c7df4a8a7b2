"""Campaign application, removal and lifecycle.

Applying a campaign walks its resolved products in target order. Every product
(and each of its variants) gets its standalone discount snapshotted, the campaign
overlay written over the live fields and its price recomputed. Removal restores
the snapshot. Each product is committed on its own, so one failed write never
rolls back the products already done.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy.exc import SQLAlchemyError

from .conflicts import CampaignConflictChecker, resolve_product_ids
from .errors import CampaignValidationError, ConflictError, NotFoundError, PersistenceError
from .events import CampaignEventPublisher
from .metrics import (
    DISCOUNT_CAMPAIGN_CONFLICTS_TOTAL,
    DISCOUNT_CAMPAIGN_ITEM_FAILURES_TOTAL,
    DISCOUNT_CAMPAIGN_ITEMS_TOTAL,
)
from .models import Campaign, CampaignType, DiscountType, Product
from .pricing import HUNDRED, ZERO, DiscountTerms, as_utc, refresh_prices, utcnow
from .repository import DiscountRepository, unique_ids
from .snapshot import apply_overlay, restore, snapshot

logger = logging.getLogger(__name__)

Operation = Literal["apply", "remove"]


@dataclass(slots=True)
class ApplicationReport:
    """Outcome of one apply or remove pass.

    ``skipped`` lists targets that could not be resolved (missing products, or
    missing categories for category campaigns); ``failed`` lists products whose
    write was rejected.
    """

    campaign_id: int
    operation: Operation
    updated: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        return {
            "campaignId": self.campaign_id,
            "operation": self.operation,
            "updated": list(self.updated),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


@dataclass(frozen=True, slots=True)
class CampaignPlan:
    """Plain copy of what an apply/remove pass needs from a campaign.

    A rollback after a failed item expires every ORM instance in the session, so
    the pass never goes back to the campaign row once it has started.
    """

    campaign_id: int
    campaign_type: CampaignType
    target_ids: tuple[int, ...]
    terms: DiscountTerms


def campaign_terms(campaign: Campaign) -> DiscountTerms:
    value = Decimal(campaign.discount_value)
    start, end = as_utc(campaign.start_date), as_utc(campaign.end_date)
    if campaign.discount_type == DiscountType.FIXED:
        return DiscountTerms(DiscountType.FIXED, ZERO, value, start, end)
    return DiscountTerms(DiscountType.PERCENTAGE, value, ZERO, start, end)


def plan_for(campaign: Campaign) -> CampaignPlan:
    return CampaignPlan(campaign.id, campaign.type, tuple(campaign.target_ids), campaign_terms(campaign))


def in_window(campaign: Campaign, now: datetime) -> bool:
    now = as_utc(now)
    return as_utc(campaign.start_date) <= now <= as_utc(campaign.end_date)


def validate_campaign(
    *,
    discount_type: DiscountType,
    discount_value: Decimal,
    start_date: datetime,
    end_date: datetime,
    target_ids: Sequence[int],
) -> None:
    if not target_ids:
        raise CampaignValidationError("Campaign needs at least one target")
    if as_utc(end_date) <= as_utc(start_date):
        raise CampaignValidationError("Campaign end date must be after start date")
    if discount_value <= ZERO:
        raise CampaignValidationError("Discount value must be greater than zero")
    if discount_type == DiscountType.PERCENTAGE and discount_value > HUNDRED:
        raise CampaignValidationError("Percentage discount cannot exceed 100")


def overlay_product(product: Product, terms: DiscountTerms) -> None:
    for item in (product, *product.variants):
        snapshot(item)
        apply_overlay(item, terms)


def restore_product(product: Product) -> None:
    for item in (product, *product.variants):
        restore(item)


class _CampaignPass:
    operation: Operation

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

    async def _resolve(self, plan: CampaignPlan, report: ApplicationReport) -> list[int]:
        if plan.campaign_type == CampaignType.CATEGORY:
            existing = await self.repository.existing_category_ids(plan.target_ids)
            for category_id in plan.target_ids:
                if category_id not in existing:
                    logger.warning(
                        "Campaign %s: category %s no longer exists, skipping", plan.campaign_id, category_id
                    )
                    report.skipped.append(category_id)
        return await resolve_product_ids(self.repository, plan.campaign_type, plan.target_ids)

    async def _write(self, product_id: int, mutate: Callable[[Product], None], now: datetime) -> bool:
        session = self.repository.session
        try:
            product = await self.repository.get_product(product_id)
            if product is None:
                return False
            mutate(product)
            refresh_prices(product, now, self.price_places)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Could not save product {product_id}: {exc}", product_id=product_id) from exc
        return True

    async def _run(self, plan: CampaignPlan, mutate: Callable[[Product], None]) -> ApplicationReport:
        report = ApplicationReport(plan.campaign_id, self.operation)
        product_ids = await self._resolve(plan, report)
        now = self.clock()
        for product_id in product_ids:
            try:
                written = await self._write(product_id, mutate, now)
            except PersistenceError as exc:
                logger.warning("Campaign %s: %s failed for product %s: %s", plan.campaign_id, self.operation, product_id, exc)
                DISCOUNT_CAMPAIGN_ITEM_FAILURES_TOTAL.labels(operation=self.operation).inc()
                DISCOUNT_CAMPAIGN_ITEMS_TOTAL.labels(operation=self.operation, outcome="failed").inc()
                report.failed.append(product_id)
                continue
            if not written:
                logger.warning("Campaign %s: product %s not found, skipping", plan.campaign_id, product_id)
                DISCOUNT_CAMPAIGN_ITEMS_TOTAL.labels(operation=self.operation, outcome="skipped").inc()
                report.skipped.append(product_id)
                continue
            DISCOUNT_CAMPAIGN_ITEMS_TOTAL.labels(operation=self.operation, outcome="updated").inc()
            report.updated.append(product_id)
        logger.info(
            "Campaign %s %s: %d updated, %d skipped, %d failed",
            plan.campaign_id,
            self.operation,
            len(report.updated),
            len(report.skipped),
            len(report.failed),
        )
        return report


class CampaignApplier(_CampaignPass):
    """Snapshots and overlays a campaign onto every product it resolves to."""

    operation: Operation = "apply"

    async def apply(self, campaign: Campaign | CampaignPlan) -> ApplicationReport:
        plan = campaign if isinstance(campaign, CampaignPlan) else plan_for(campaign)
        return await self._run(plan, lambda product: overlay_product(product, plan.terms))


class CampaignRemover(_CampaignPass):
    """Restores the pre-campaign discount of every product a campaign resolves to."""

    operation: Operation = "remove"

    async def remove(self, campaign: Campaign | CampaignPlan) -> ApplicationReport:
        plan = campaign if isinstance(campaign, CampaignPlan) else plan_for(campaign)
        return await self._run(plan, restore_product)


class CampaignService:
    """Campaign lifecycle used by the HTTP layer."""

    def __init__(
        self,
        repository: DiscountRepository,
        *,
        price_places: int = 0,
        check_category_overlap: bool = False,
        event_publisher: CampaignEventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.event_publisher = event_publisher
        self.clock = clock
        self.conflicts = CampaignConflictChecker(repository, check_category_overlap=check_category_overlap)
        self.applier = CampaignApplier(repository, price_places=price_places, clock=clock)
        self.remover = CampaignRemover(repository, price_places=price_places, clock=clock)

    async def get_campaign(self, campaign_id: int) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def _ensure_targets_exist(self, campaign_type: CampaignType, target_ids: Sequence[int]) -> None:
        if campaign_type == CampaignType.CATEGORY:
            existing = await self.repository.existing_category_ids(target_ids)
            kind = "Categories"
        else:
            existing = await self.repository.existing_product_ids(target_ids)
            kind = "Products"
        missing = [target_id for target_id in target_ids if target_id not in existing]
        if missing:
            raise NotFoundError(f"{kind} not found: {missing}")

    async def _check_conflicts(
        self,
        campaign_type: CampaignType,
        target_ids: Sequence[int],
        now: datetime,
        *,
        exclude_campaign_id: int | None = None,
    ) -> None:
        try:
            await self.conflicts.check(campaign_type, target_ids, now, exclude_campaign_id=exclude_campaign_id)
        except ConflictError:
            DISCOUNT_CAMPAIGN_CONFLICTS_TOTAL.inc()
            raise

    async def _sync(self, campaign: Campaign, now: datetime) -> tuple[Campaign, ApplicationReport]:
        """Apply a campaign that is active and in its window, remove it otherwise."""

        campaign_id = campaign.id
        if campaign.is_active and in_window(campaign, now):
            report = await self.applier.apply(campaign)
            campaign = await self.get_campaign(campaign_id)
            if self.event_publisher is not None:
                await self.event_publisher.campaign_applied(campaign, report)
        else:
            report = await self.remover.remove(campaign)
            campaign = await self.get_campaign(campaign_id)
            if self.event_publisher is not None:
                await self.event_publisher.campaign_removed(campaign, report)
        return campaign, report

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
        coupon_code: str | None = None,
        is_active: bool = True,
    ) -> tuple[Campaign, ApplicationReport | None]:
        now = self.clock()
        targets = unique_ids(target_ids)
        validate_campaign(
            discount_type=discount_type,
            discount_value=discount_value,
            start_date=start_date,
            end_date=end_date,
            target_ids=targets,
        )
        await self._ensure_targets_exist(campaign_type, targets)
        await self._check_conflicts(campaign_type, targets, now)

        campaign = await self.repository.create_campaign(
            title=title,
            campaign_type=campaign_type,
            target_ids=targets,
            discount_type=discount_type,
            discount_value=discount_value,
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            coupon_code=coupon_code.strip().upper() if coupon_code else None,
            is_active=is_active,
        )
        # The campaign row must survive a rollback of any single product below.
        await self.repository.session.commit()
        logger.info("Created %s campaign %s targeting %s", campaign_type.value, campaign.id, targets)
        if self.event_publisher is not None:
            await self.event_publisher.campaign_created(campaign)

        if not (campaign.is_active and in_window(campaign, now)):
            return campaign, None
        report = await self.applier.apply(campaign)
        campaign = await self.get_campaign(campaign.id)
        if self.event_publisher is not None:
            await self.event_publisher.campaign_applied(campaign, report)
        return campaign, report

    async def update_campaign(
        self,
        campaign_id: int,
        *,
        title: str | None = None,
        campaign_type: CampaignType | None = None,
        target_ids: Sequence[int] | None = None,
        discount_type: DiscountType | None = None,
        discount_value: Decimal | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        coupon_code: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[Campaign, ApplicationReport]:
        now = self.clock()
        campaign = await self.get_campaign(campaign_id)
        previous = plan_for(campaign)

        new_type = campaign_type or campaign.type
        new_targets = unique_ids(target_ids) if target_ids is not None else list(previous.target_ids)
        new_discount_type = discount_type or campaign.discount_type
        new_value = discount_value if discount_value is not None else Decimal(campaign.discount_value)
        new_start = as_utc(start_date) if start_date is not None else as_utc(campaign.start_date)
        new_end = as_utc(end_date) if end_date is not None else as_utc(campaign.end_date)
        validate_campaign(
            discount_type=new_discount_type,
            discount_value=new_value,
            start_date=new_start,
            end_date=new_end,
            target_ids=new_targets,
        )

        targets_changed = new_type != previous.campaign_type or tuple(new_targets) != previous.target_ids
        if targets_changed:
            await self._ensure_targets_exist(new_type, new_targets)
        # An unexpired campaign reserves its products, so an extended or revived one is checked too.
        if targets_changed or new_end > as_utc(now):
            await self._check_conflicts(new_type, new_targets, now, exclude_campaign_id=campaign_id)
        if targets_changed:
            # Products that drop out of the campaign get their own discount back.
            await self.remover.remove(previous)
            campaign = await self.get_campaign(campaign_id)

        if title is not None:
            campaign.title = title
        campaign.type = new_type
        campaign.discount_type = new_discount_type
        campaign.discount_value = new_value
        campaign.start_date = new_start
        campaign.end_date = new_end
        if coupon_code is not None:
            campaign.coupon_code = coupon_code.strip().upper() or None
        if is_active is not None:
            campaign.is_active = is_active
        if targets_changed:
            await self.repository.replace_targets(campaign, new_targets)
        await self.repository.session.commit()
        logger.info("Updated campaign %s", campaign_id)

        return await self._sync(campaign, now)

    async def delete_campaign(self, campaign_id: int) -> ApplicationReport:
        campaign = await self.get_campaign(campaign_id)
        report = await self.remover.remove(campaign)
        campaign = await self.get_campaign(campaign_id)
        title = campaign.title
        await self.repository.delete_campaign(campaign)
        await self.repository.session.commit()
        logger.info("Deleted campaign %s", campaign_id)
        if self.event_publisher is not None:
            await self.event_publisher.campaign_deleted(campaign_id=campaign_id, title=title)
        return report

    async def apply_now(self, campaign_id: int) -> tuple[Campaign, ApplicationReport]:
        """Apply regardless of the campaign window; prices still follow the window."""

        campaign = await self.get_campaign(campaign_id)
        report = await self.applier.apply(campaign)
        campaign = await self.get_campaign(campaign_id)
        if self.event_publisher is not None:
            await self.event_publisher.campaign_applied(campaign, report)
        return campaign, report

    async def remove_now(self, campaign_id: int) -> tuple[Campaign, ApplicationReport]:
        campaign = await self.get_campaign(campaign_id)
        report = await self.remover.remove(campaign)
        campaign = await self.get_campaign(campaign_id)
        if self.event_publisher is not None:
            await self.event_publisher.campaign_removed(campaign, report)
        return campaign, report
