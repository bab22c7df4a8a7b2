from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import update

from services.discount_service.app import reconciliation
from services.discount_service.app.campaigns import CampaignService
from services.discount_service.app.leases import LeaseStore
from services.discount_service.app.models import Campaign, CampaignType, DiscountType, Product
from services.discount_service.app.reconciliation import (
    JOB_ID,
    LEASE_NAME,
    ReconciliationJob,
    build_scheduler,
    campaign_phase,
    should_be_active,
)
from services.discount_service.app.repository import DiscountRepository

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
START, END = NOW - timedelta(days=1), NOW + timedelta(days=1)
AFTER_END = END + timedelta(hours=1)


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


class _BrokenLeases(LeaseStore):
    async def acquire(self, name: str, owner: str, ttl_seconds: int) -> bool:
        raise RuntimeError("lease backend unavailable")


def _job(session_factory, at: datetime, **kwargs) -> ReconciliationJob:
    kwargs.setdefault("leases", LeaseStore())
    return ReconciliationJob(session_factory, clock=lambda: at, **kwargs)


async def _create_campaign(session_factory, target_ids: list[int], **overrides) -> int:
    params = {
        "title": "Pohela Boishakh",
        "campaign_type": CampaignType.PRODUCT,
        "target_ids": target_ids,
        "discount_type": DiscountType.FIXED,
        "discount_value": Decimal("100"),
        "start_date": START,
        "end_date": END,
    }
    params.update(overrides)
    async with session_factory() as session:
        service = CampaignService(DiscountRepository(session), clock=lambda: NOW)
        campaign, _ = await service.create_campaign(**params)
        return campaign.id


async def _load_campaign(session_factory, campaign_id: int) -> Campaign:
    async with session_factory() as session:
        campaign = await DiscountRepository(session).get_campaign(campaign_id)
        assert campaign is not None
        return campaign


async def _force_price(session_factory, product_id: int, price: str) -> None:
    async with session_factory() as session:
        await session.execute(update(Product).where(Product.id == product_id).values(price=Decimal(price)))
        await session.commit()


def test_campaign_phase_follows_window() -> None:
    campaign = Campaign(title="Window", start_date=START, end_date=END, is_active=True)

    assert campaign_phase(campaign, START - timedelta(seconds=1)) == "pending"
    assert campaign_phase(campaign, START) == "active"
    assert campaign_phase(campaign, END) == "active"
    assert campaign_phase(campaign, AFTER_END) == "expired"
    assert should_be_active(campaign, NOW)
    campaign.is_active = False
    assert not should_be_active(campaign, NOW)


@pytest.mark.asyncio
async def test_expired_campaign_is_restored_and_deactivated(session_factory, catalog) -> None:
    product_id = await catalog.product("Fatua", "1000", percentage="10")
    campaign_id = await _create_campaign(session_factory, [product_id], discount_value=Decimal("300"))
    assert (await catalog.load(product_id)).price == Decimal("700")

    report = await _job(session_factory, AFTER_END).run()

    assert report.expired == [campaign_id]
    assert report.failures == 0
    assert not (await _load_campaign(session_factory, campaign_id)).is_active
    product = await catalog.load(product_id)
    assert not product.campaign_discount_active
    assert product.discount_type == DiscountType.PERCENTAGE
    assert product.price == Decimal("900")


@pytest.mark.asyncio
async def test_expired_campaign_is_never_reapplied(session_factory, catalog) -> None:
    product_id = await catalog.product("Lungi", "600")
    campaign_id = await _create_campaign(session_factory, [product_id])

    await _job(session_factory, AFTER_END).run()
    second = await _job(session_factory, AFTER_END + timedelta(minutes=1)).run()

    assert second.expired == []
    assert second.activated == []
    assert not (await _load_campaign(session_factory, campaign_id)).is_active
    product = await catalog.load(product_id)
    assert not product.campaign_discount_active
    assert product.price == Decimal("600")


@pytest.mark.asyncio
async def test_campaign_entering_its_window_is_applied(session_factory, catalog) -> None:
    product_id = await catalog.product("Kameez", "2000")
    campaign_id = await _create_campaign(
        session_factory,
        [product_id],
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("25"),
        start_date=NOW + timedelta(hours=2),
        end_date=NOW + timedelta(days=2),
    )
    assert not (await catalog.load(product_id)).campaign_discount_active

    report = await _job(session_factory, NOW + timedelta(hours=3)).run()

    assert report.activated == [campaign_id]
    product = await catalog.load(product_id)
    assert product.campaign_discount_active
    assert product.price == Decimal("1500")


@pytest.mark.asyncio
async def test_item_that_missed_the_overlay_is_repaired(session_factory, catalog) -> None:
    first = await catalog.product("Dupatta", "400")
    campaign_id = await _create_campaign(session_factory, [first])
    late = await catalog.product("Late arrival", "800", percentage="5")
    async with session_factory() as session:
        campaign = await DiscountRepository(session).get_campaign(campaign_id)
        await DiscountRepository(session).replace_targets(campaign, [first, late])
        await session.commit()

    report = await _job(session_factory, NOW).run()

    assert campaign_id in report.activated
    repaired = await catalog.load(late)
    assert repaired.campaign_discount_active
    assert repaired.original_discount_percentage == Decimal("5")
    assert repaired.price == Decimal("700")


@pytest.mark.asyncio
async def test_sweep_corrects_percentage_items_only_by_default(session_factory, catalog) -> None:
    percent_id = await catalog.product("Tupi", "200", percentage="50")
    fixed_id = await catalog.product("Gamchha", "300", amount="50")
    await _force_price(session_factory, percent_id, "200")
    await _force_price(session_factory, fixed_id, "300")

    report = await _job(session_factory, NOW).run()

    assert report.items_checked == 1
    assert report.prices_corrected == 1
    assert (await catalog.load(percent_id)).price == Decimal("100")
    assert (await catalog.load(fixed_id)).price == Decimal("300")

    widened = await _job(session_factory, NOW, sweep_fixed_discounts=True).run()

    assert widened.items_checked == 2
    assert widened.prices_corrected == 1
    assert (await catalog.load(fixed_id)).price == Decimal("250")


@pytest.mark.asyncio
async def test_sweep_returns_expired_standalone_discount_to_base(session_factory, catalog) -> None:
    product_id = await catalog.product("Shawl", "1000", percentage="20")
    async with session_factory() as session:
        await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(discount_end_time=NOW + timedelta(hours=1))
        )
        await session.commit()
    tracker = _MetricTracker("discount_reconciliation_prices_corrected_total")

    report = await _job(session_factory, NOW + timedelta(hours=2)).run()

    assert report.prices_corrected == 1
    assert tracker.delta() == 1
    assert (await catalog.load(product_id)).price == Decimal("1000")


@pytest.mark.asyncio
async def test_run_is_skipped_while_lease_is_held(session_factory, catalog) -> None:
    product_id = await catalog.product("Pagri", "500", percentage="10")
    await _force_price(session_factory, product_id, "500")
    leases = LeaseStore()
    assert await leases.acquire(LEASE_NAME, "other-replica", 60)
    tracker = _MetricTracker("discount_reconciliation_runs_total", {"result": "skipped"})

    report = await _job(session_factory, NOW, leases=leases).run()

    assert report.skipped
    assert report.items_checked == 0
    assert tracker.delta() == 1
    assert (await catalog.load(product_id)).price == Decimal("500")
    assert await leases.holder(LEASE_NAME) == "other-replica"


@pytest.mark.asyncio
async def test_lease_is_released_after_run(session_factory) -> None:
    leases = LeaseStore()

    await _job(session_factory, NOW, leases=leases).run()

    assert await leases.holder(LEASE_NAME) is None


@pytest.mark.asyncio
async def test_failed_restore_keeps_campaign_active_until_next_run(
    session_factory, catalog, monkeypatch: pytest.MonkeyPatch
) -> None:
    contested = await catalog.product("Contested", "1000")
    calm = await catalog.product("Quiet", "1000")
    campaign_id = await _create_campaign(session_factory, [contested, calm])
    racing_ids = {contested}

    class RacingRepository(DiscountRepository):
        async def get_product(self, product_id: int):
            product = await super().get_product(product_id)
            if product_id in racing_ids:
                racing_ids.discard(product_id)
                async with session_factory() as other:
                    await other.execute(
                        update(Product).where(Product.id == product_id).values(version=Product.version + 1)
                    )
                    await other.commit()
            return product

    monkeypatch.setattr(reconciliation, "DiscountRepository", RacingRepository)

    first = await _job(session_factory, AFTER_END).run()

    assert first.expired == []
    assert first.failures == 1
    assert (await _load_campaign(session_factory, campaign_id)).is_active
    assert (await catalog.load(contested)).campaign_discount_active
    assert not (await catalog.load(calm)).campaign_discount_active

    second = await _job(session_factory, AFTER_END + timedelta(minutes=1)).run()

    assert second.expired == [campaign_id]
    assert second.failures == 0
    assert not (await catalog.load(contested)).campaign_discount_active
    assert (await catalog.load(contested)).price == Decimal("1000")


@pytest.mark.asyncio
async def test_scheduled_run_logs_and_counts_errors(session_factory) -> None:
    tracker = _MetricTracker("discount_reconciliation_runs_total", {"result": "error"})

    await _job(session_factory, NOW, leases=_BrokenLeases()).run_scheduled()

    assert tracker.delta() == 1


def test_scheduler_registers_single_instance_interval_job() -> None:
    scheduler = build_scheduler(_job(None, NOW), interval_seconds=30)

    job = scheduler.get_job(JOB_ID)

    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce
    assert job.trigger.interval == timedelta(seconds=30)
