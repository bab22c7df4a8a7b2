"""Periodic reconciliation of campaign state and materialised prices.

Each run, in order:

1. expires active campaigns whose end date has passed (restore, then
   ``is_active = False``);
2. re-applies every active campaign whose window contains now, which repairs
   items that missed an overlay and refreshes drifted overlay values;
3. sweeps products with a standalone percentage discount (fixed amounts too when
   configured) and rewrites prices that disagree with the computed one.

Runs are serialised across processes through a lease; a run that cannot take
the lease does nothing and reports itself as skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Literal
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import get_tracer

from .campaigns import CampaignApplier, CampaignRemover, in_window, plan_for
from .errors import DiscountEngineError
from .events import CampaignEventPublisher
from .leases import LeaseStore
from .metrics import (
    DISCOUNT_RECONCILIATION_DURATION_SECONDS,
    DISCOUNT_RECONCILIATION_FAILURES_TOTAL,
    DISCOUNT_RECONCILIATION_PRICES_CORRECTED_TOTAL,
    DISCOUNT_RECONCILIATION_RUNS_TOTAL,
)
from .models import Campaign
from .pricing import as_utc, refresh_prices, utcnow
from .repository import DiscountRepository

logger = logging.getLogger(__name__)

LEASE_NAME = "discount:reconciliation"
JOB_ID = "discount-reconciliation"

Phase = Literal["pending", "active", "expired"]


def campaign_phase(campaign: Campaign, now: datetime) -> Phase:
    now = as_utc(now)
    if as_utc(campaign.end_date) < now:
        return "expired"
    if as_utc(campaign.start_date) > now:
        return "pending"
    return "active"


def should_be_active(campaign: Campaign, now: datetime) -> bool:
    return campaign.is_active and in_window(campaign, now)


@dataclass(slots=True)
class ReconciliationReport:
    started_at: datetime
    expired: list[int] = field(default_factory=list)
    activated: list[int] = field(default_factory=list)
    items_checked: int = 0
    prices_corrected: int = 0
    failures: int = 0
    skipped: bool = False

    def as_payload(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "expired": list(self.expired),
            "activated": list(self.activated),
            "itemsChecked": self.items_checked,
            "pricesCorrected": self.prices_corrected,
            "failures": self.failures,
            "skipped": self.skipped,
        }


class ReconciliationJob:
    """One reconciliation pass over campaigns and discounted items."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        leases: LeaseStore,
        lease_seconds: int = 300,
        price_places: int = 0,
        sweep_fixed_discounts: bool = False,
        event_publisher: CampaignEventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._leases = leases
        self._lease_seconds = lease_seconds
        self._price_places = price_places
        self._sweep_fixed = sweep_fixed_discounts
        self._event_publisher = event_publisher
        self._clock = clock

    async def run(self) -> ReconciliationReport:
        now = self._clock()
        report = ReconciliationReport(started_at=now)
        owner = uuid4().hex
        if not await self._leases.acquire(LEASE_NAME, owner, self._lease_seconds):
            logger.info("Reconciliation skipped: another run holds the lease")
            DISCOUNT_RECONCILIATION_RUNS_TOTAL.labels(result="skipped").inc()
            report.skipped = True
            return report

        start = perf_counter()
        try:
            with get_tracer().start_as_current_span("discount.reconciliation") as span:
                async with self._session_factory() as session:
                    repository = DiscountRepository(session)
                    await self._expire(repository, report, now)
                    await self._activate(repository, report, now)
                    await self._sweep(repository, report, now)
                span.set_attribute("discount.campaigns_expired", len(report.expired))
                span.set_attribute("discount.campaigns_activated", len(report.activated))
                span.set_attribute("discount.prices_corrected", report.prices_corrected)
                span.set_attribute("discount.failures", report.failures)
        finally:
            await self._leases.release(LEASE_NAME, owner)
            DISCOUNT_RECONCILIATION_DURATION_SECONDS.observe(perf_counter() - start)

        DISCOUNT_RECONCILIATION_RUNS_TOTAL.labels(result="completed").inc()
        logger.info(
            "Reconciliation finished: %d expired, %d activated, %d items checked, %d prices corrected, %d failures",
            len(report.expired),
            len(report.activated),
            report.items_checked,
            report.prices_corrected,
            report.failures,
        )
        if self._event_publisher is not None:
            await self._event_publisher.reconciliation_completed(report)
        return report

    async def run_scheduled(self) -> None:
        """Scheduler entry point: a failed run is logged and the schedule keeps going."""

        try:
            await self.run()
        except Exception:
            logger.exception("Reconciliation run failed")
            DISCOUNT_RECONCILIATION_RUNS_TOTAL.labels(result="error").inc()

    def _record_failure(self, stage: str, report: ReconciliationReport, count: int = 1) -> None:
        if count <= 0:
            return
        report.failures += count
        DISCOUNT_RECONCILIATION_FAILURES_TOTAL.labels(stage=stage).inc(count)

    async def _expire(self, repository: DiscountRepository, report: ReconciliationReport, now: datetime) -> None:
        remover = CampaignRemover(repository, price_places=self._price_places, clock=lambda: now)
        plans = [plan_for(campaign) for campaign in await repository.campaigns_to_expire(now)]
        for plan in plans:
            try:
                removal = await remover.remove(plan)
                if removal.failed:
                    # Left active so the next run retries the products that kept their overlay.
                    logger.warning(
                        "Campaign %s expired but %d products could not be restored",
                        plan.campaign_id,
                        len(removal.failed),
                    )
                    self._record_failure("expire", report, len(removal.failed))
                    continue
                campaign = await repository.get_campaign(plan.campaign_id)
                if campaign is None:
                    continue
                campaign.is_active = False
                await repository.session.commit()
            except (SQLAlchemyError, DiscountEngineError):
                await repository.session.rollback()
                logger.exception("Failed to expire campaign %s", plan.campaign_id)
                self._record_failure("expire", report)
                continue
            report.expired.append(plan.campaign_id)
            logger.info("Campaign %s expired", plan.campaign_id)
            if self._event_publisher is not None:
                await self._event_publisher.campaign_expired(campaign, removal)

    async def _activate(self, repository: DiscountRepository, report: ReconciliationReport, now: datetime) -> None:
        applier = CampaignApplier(repository, price_places=self._price_places, clock=lambda: now)
        plans = [plan_for(campaign) for campaign in await repository.list_active_campaigns(now)]
        for plan in plans:
            try:
                application = await applier.apply(plan)
            except (SQLAlchemyError, DiscountEngineError):
                await repository.session.rollback()
                logger.exception("Failed to apply campaign %s", plan.campaign_id)
                self._record_failure("activate", report)
                continue
            self._record_failure("activate", report, len(application.failed))
            report.activated.append(plan.campaign_id)

    async def _sweep(self, repository: DiscountRepository, report: ReconciliationReport, now: datetime) -> None:
        session = repository.session
        product_ids = await repository.product_ids_for_sweep(include_fixed=self._sweep_fixed)
        for product_id in product_ids:
            try:
                product = await repository.get_product(product_id)
                if product is None:
                    continue
                report.items_checked += 1
                corrected = refresh_prices(product, now, self._price_places)
                if corrected:
                    await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.warning("Price sweep failed for product %s", product_id, exc_info=True)
                self._record_failure("sweep", report)
                continue
            if corrected:
                report.prices_corrected += corrected
                DISCOUNT_RECONCILIATION_PRICES_CORRECTED_TOTAL.inc(corrected)
                logger.info("Corrected %d prices on product %s", corrected, product_id)


def build_scheduler(job: ReconciliationJob, *, interval_seconds: int) -> AsyncIOScheduler:
    """Interval scheduler that never runs two reconciliation passes in one process at once."""

    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    scheduler.add_job(
        job.run_scheduled,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=JOB_ID,
        name="Discount reconciliation",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler
