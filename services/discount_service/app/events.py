"""Event publishing helpers for the discount engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from services.common.kafka import KafkaProducerStub

from .models import Campaign

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .campaigns import ApplicationReport
    from .reconciliation import ReconciliationReport


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat()


class CampaignEventPublisher:
    """Publishes campaign lifecycle and reconciliation events."""

    def __init__(self, producer: KafkaProducerStub | None) -> None:
        self._producer = producer

    async def _emit(self, topic: str, payload: dict[str, Any]) -> None:
        if self._producer is None:
            return
        envelope = {
            "eventType": topic,
            "occurredAt": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        await self._producer.send(topic, envelope)

    async def campaign_created(self, campaign: Campaign) -> None:
        await self._emit("pricing.campaign.created.v1", {"campaign": self._serialize_campaign(campaign)})

    async def campaign_applied(self, campaign: Campaign, report: ApplicationReport) -> None:
        await self._emit(
            "pricing.campaign.applied.v1",
            {"campaign": self._serialize_campaign(campaign), "report": report.as_payload()},
        )

    async def campaign_removed(self, campaign: Campaign, report: ApplicationReport) -> None:
        await self._emit(
            "pricing.campaign.removed.v1",
            {"campaign": self._serialize_campaign(campaign), "report": report.as_payload()},
        )

    async def campaign_expired(self, campaign: Campaign, report: ApplicationReport) -> None:
        await self._emit(
            "pricing.campaign.expired.v1",
            {"campaign": self._serialize_campaign(campaign), "report": report.as_payload()},
        )

    async def campaign_deleted(self, *, campaign_id: int, title: str) -> None:
        await self._emit("pricing.campaign.deleted.v1", {"campaignId": campaign_id, "title": title})

    async def reconciliation_completed(self, report: ReconciliationReport) -> None:
        await self._emit("pricing.reconciliation.completed.v1", {"report": report.as_payload()})

    def _serialize_campaign(self, campaign: Campaign) -> dict[str, Any]:
        return {
            "id": campaign.id,
            "title": campaign.title,
            "type": campaign.type.value,
            "targetIds": campaign.target_ids,
            "discountType": campaign.discount_type.value,
            "discountValue": str(campaign.discount_value),
            "startDate": _iso(campaign.start_date),
            "endDate": _iso(campaign.end_date),
            "isActive": campaign.is_active,
        }
