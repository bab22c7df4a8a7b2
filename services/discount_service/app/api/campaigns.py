"""API routes for campaign lifecycle."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status

from ..campaigns import ApplicationReport, CampaignService
from ..dependencies import get_campaign_service, get_repository
from ..errors import DiscountEngineError, to_http_exception
from ..models import Campaign, CampaignType
from ..pricing import utcnow
from ..reconciliation import campaign_phase, should_be_active
from ..repository import DiscountRepository
from ..schemas import (
    CampaignCreate,
    CampaignListResponse,
    CampaignOperationResponse,
    CampaignResponse,
    CampaignStatusResponse,
    CampaignUpdate,
)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


def _serialize(campaign: Campaign) -> dict[str, object]:
    return {
        "id": campaign.id,
        "title": campaign.title,
        "type": campaign.type,
        "targetIds": campaign.target_ids,
        "discountType": campaign.discount_type,
        "discountValue": Decimal(campaign.discount_value).quantize(Decimal("0.01")),
        "startDate": campaign.start_date,
        "endDate": campaign.end_date,
        "couponCode": campaign.coupon_code,
        "isActive": campaign.is_active,
        "createdAt": campaign.created_at,
        "updatedAt": campaign.updated_at,
    }


def _operation(campaign: Campaign, report: ApplicationReport | None) -> CampaignOperationResponse:
    return CampaignOperationResponse.model_validate(
        {
            "campaign": _serialize(campaign),
            "report": report.as_payload() if report is not None else None,
        }
    )


@router.post("", response_model=CampaignOperationResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignOperationResponse:
    try:
        campaign, report = await service.create_campaign(
            title=payload.title,
            campaign_type=payload.type,
            target_ids=payload.target_ids,
            discount_type=payload.discount_type,
            discount_value=payload.discount_value,
            start_date=payload.start_date,
            end_date=payload.end_date,
            coupon_code=payload.coupon_code,
            is_active=payload.is_active,
        )
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return _operation(campaign, report)


@router.get("", response_model=CampaignListResponse)
async def list_campaigns(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    is_active: bool | None = Query(default=None, alias="isActive"),
    campaign_type: CampaignType | None = Query(default=None, alias="type"),
    starts_before: datetime | None = Query(default=None, alias="startsBefore"),
    ends_after: datetime | None = Query(default=None, alias="endsAfter"),
    sort_by: Literal["startDate", "endDate", "createdAt"] = Query(default="createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    repository: DiscountRepository = Depends(get_repository),
) -> CampaignListResponse:
    campaigns, total = await repository.list_campaigns(
        limit=limit,
        offset=offset,
        is_active=is_active,
        campaign_type=campaign_type,
        starts_before=starts_before,
        ends_after=ends_after,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    items = [CampaignResponse.model_validate(_serialize(campaign)) for campaign in campaigns]
    return CampaignListResponse(items=items, total=total)


@router.get("/active", response_model=list[CampaignResponse])
async def list_active_campaigns(
    repository: DiscountRepository = Depends(get_repository),
) -> list[CampaignResponse]:
    campaigns = await repository.list_active_campaigns(utcnow())
    return [CampaignResponse.model_validate(_serialize(campaign)) for campaign in campaigns]


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: int,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    try:
        campaign = await service.get_campaign(campaign_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return CampaignResponse.model_validate(_serialize(campaign))


@router.get("/{campaign_id}/status", response_model=CampaignStatusResponse)
async def get_campaign_status(
    campaign_id: int,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignStatusResponse:
    try:
        campaign = await service.get_campaign(campaign_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    now = utcnow()
    return CampaignStatusResponse(
        campaign_id=campaign.id,
        phase=campaign_phase(campaign, now),
        is_active=campaign.is_active,
        should_be_active=should_be_active(campaign, now),
        checked_at=now,
    )


@router.patch("/{campaign_id}", response_model=CampaignOperationResponse)
async def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignOperationResponse:
    try:
        campaign, report = await service.update_campaign(
            campaign_id,
            title=payload.title,
            campaign_type=payload.type,
            target_ids=payload.target_ids,
            discount_type=payload.discount_type,
            discount_value=payload.discount_value,
            start_date=payload.start_date,
            end_date=payload.end_date,
            coupon_code=payload.coupon_code,
            is_active=payload.is_active,
        )
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return _operation(campaign, report)


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: int,
    service: CampaignService = Depends(get_campaign_service),
) -> Response:
    try:
        await service.delete_campaign(campaign_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{campaign_id}/apply", response_model=CampaignOperationResponse)
async def apply_campaign_now(
    campaign_id: int,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignOperationResponse:
    try:
        campaign, report = await service.apply_now(campaign_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return _operation(campaign, report)


@router.post("/{campaign_id}/remove", response_model=CampaignOperationResponse)
async def remove_campaign_now(
    campaign_id: int,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignOperationResponse:
    try:
        campaign, report = await service.remove_now(campaign_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return _operation(campaign, report)
