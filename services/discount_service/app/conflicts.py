"""Detection of campaigns whose targets overlap an unexpired campaign."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from .errors import ConflictError
from .models import CampaignType
from .repository import DiscountRepository, unique_ids

logger = logging.getLogger(__name__)


async def resolve_product_ids(
    repository: DiscountRepository,
    campaign_type: CampaignType,
    target_ids: Sequence[int],
) -> list[int]:
    """Turn campaign targets into product ids, keeping target order and dropping repeats."""

    if campaign_type == CampaignType.CATEGORY:
        return await repository.product_ids_for_categories(target_ids)
    return unique_ids(target_ids)


class CampaignConflictChecker:
    """Rejects campaigns that would claim products another campaign already holds.

    Any unexpired product campaign blocks its products, whether or not it is
    flagged active. Category campaigns only block each other when
    ``check_category_overlap`` is switched on.
    """

    def __init__(self, repository: DiscountRepository, *, check_category_overlap: bool = False) -> None:
        self.repository = repository
        self.check_category_overlap = check_category_overlap

    async def check(
        self,
        campaign_type: CampaignType,
        target_ids: Sequence[int],
        now: datetime,
        *,
        exclude_campaign_id: int | None = None,
    ) -> None:
        product_ids = await resolve_product_ids(self.repository, campaign_type, target_ids)
        if not product_ids:
            return

        conflicts = await self.repository.find_product_campaign_conflicts(
            product_ids, now, exclude_campaign_id=exclude_campaign_id
        )
        if self.check_category_overlap:
            requested = set(product_ids)
            for campaign in await self.repository.unexpired_category_campaigns(
                now, exclude_campaign_id=exclude_campaign_id
            ):
                claimed = await self.repository.product_ids_for_categories(campaign.target_ids)
                overlap = [product_id for product_id in claimed if product_id in requested]
                if overlap:
                    conflicts.setdefault(campaign.id, []).extend(overlap)

        if not conflicts:
            return

        blocked = sorted({product_id for ids in conflicts.values() for product_id in ids})
        logger.info(
            "Rejecting %s campaign: products %s already claimed by campaigns %s",
            campaign_type.value,
            blocked,
            sorted(conflicts),
        )
        raise ConflictError(
            f"Products {blocked} already belong to campaigns {sorted(conflicts)}",
            conflicting_ids=blocked,
        )
