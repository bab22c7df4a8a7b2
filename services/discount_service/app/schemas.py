"""Pydantic schemas for the discount engine API."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

from .models import CampaignType, DiscountSource, DiscountType


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CampaignBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    type: CampaignType
    target_ids: list[PositiveInt] = Field(min_length=1, alias="targetIds")
    discount_type: DiscountType = Field(alias="discountType")
    discount_value: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2, alias="discountValue")
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    coupon_code: str | None = Field(default=None, max_length=64, alias="couponCode")
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("title")
    @classmethod
    def _clean_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "title must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return _utc(value)


class CampaignCreate(CampaignBase):
    @model_validator(mode="after")
    def _check_window(self) -> CampaignCreate:
        if self.end_date <= self.start_date:
            msg = "endDate must be after startDate"
            raise ValueError(msg)
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > Decimal("100"):
            msg = "percentage discounts cannot exceed 100"
            raise ValueError(msg)
        return self


class CampaignUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    type: CampaignType | None = None
    target_ids: list[PositiveInt] | None = Field(default=None, min_length=1, alias="targetIds")
    discount_type: DiscountType | None = Field(default=None, alias="discountType")
    discount_value: Decimal | None = Field(
        default=None, gt=Decimal("0"), max_digits=12, decimal_places=2, alias="discountValue"
    )
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    coupon_code: str | None = Field(default=None, max_length=64, alias="couponCode")
    is_active: bool | None = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _utc(value)


class CampaignResponse(CampaignBase):
    id: PositiveInt
    discount_value: Decimal = Field(alias="discountValue")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CampaignListResponse(BaseModel):
    items: list[CampaignResponse]
    total: int


class ApplicationReportResponse(BaseModel):
    campaign_id: int = Field(alias="campaignId")
    operation: Literal["apply", "remove"]
    updated: list[int]
    skipped: list[int]
    failed: list[int]

    model_config = ConfigDict(populate_by_name=True)


class CampaignOperationResponse(BaseModel):
    campaign: CampaignResponse
    report: ApplicationReportResponse | None = None


class CampaignStatusResponse(BaseModel):
    campaign_id: int = Field(alias="campaignId")
    phase: Literal["pending", "active", "expired"]
    is_active: bool = Field(alias="isActive")
    should_be_active: bool = Field(alias="shouldBeActive")
    checked_at: datetime = Field(alias="checkedAt")

    model_config = ConfigDict(populate_by_name=True)


class DiscountEdit(BaseModel):
    """A catalog-manager edit of an item's standalone discount."""

    discount_type: DiscountType = Field(default=DiscountType.PERCENTAGE, alias="discountType")
    discount_percentage: Decimal = Field(
        default=Decimal("0"), ge=Decimal("0"), le=Decimal("100"), alias="discountPercentage"
    )
    discount_amount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), alias="discountAmount")
    discount_start_time: datetime | None = Field(default=None, alias="discountStartTime")
    discount_end_time: datetime | None = Field(default=None, alias="discountEndTime")
    expected_version: PositiveInt | None = Field(default=None, alias="expectedVersion")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("discount_start_time", "discount_end_time")
    @classmethod
    def _normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _utc(value)


class VariantDiscountEdit(DiscountEdit):
    clear: bool = Field(default=False, description="Drop the variant's own discount and inherit the product's.")


class DiscountFields(BaseModel):
    discount_type: DiscountType | None = Field(alias="discountType")
    discount_percentage: Decimal | None = Field(alias="discountPercentage")
    discount_amount: Decimal | None = Field(alias="discountAmount")
    discount_start_time: datetime | None = Field(alias="discountStartTime")
    discount_end_time: datetime | None = Field(alias="discountEndTime")

    model_config = ConfigDict(populate_by_name=True)


class ItemDiscountState(BaseModel):
    id: int
    version: int
    base_price: Decimal = Field(alias="basePrice")
    stored_price: Decimal = Field(alias="storedPrice")
    expected_price: Decimal = Field(alias="expectedPrice")
    price_matches: bool = Field(alias="priceMatches")
    is_discount_active: bool = Field(alias="isDiscountActive")
    price_source: Literal["variant", "product", "none"] = Field(alias="priceSource")
    discount: DiscountFields
    campaign_discount_active: bool = Field(alias="campaignDiscountActive")
    campaign_discount: DiscountFields | None = Field(alias="campaignDiscount")
    original_discount: DiscountFields | None = Field(alias="originalDiscount")

    model_config = ConfigDict(populate_by_name=True)


class VariantDiscountState(ItemDiscountState):
    variant_code: str = Field(alias="variantCode")
    discount_source: DiscountSource = Field(alias="discountSource")
    original_discount_source: DiscountSource | None = Field(alias="originalDiscountSource")


class ProductDiscountState(ItemDiscountState):
    title: str
    variants: list[VariantDiscountState]
    checked_at: datetime = Field(alias="checkedAt")


class PriceResponse(BaseModel):
    product_id: int = Field(alias="productId")
    variant_id: int | None = Field(default=None, alias="variantId")
    currency: str
    base_price: Decimal = Field(alias="basePrice")
    current_price: Decimal = Field(alias="currentPrice")
    stored_price: Decimal = Field(alias="storedPrice")
    is_discount_active: bool = Field(alias="isDiscountActive")
    source: Literal["variant", "product", "none"]
    at: datetime

    model_config = ConfigDict(populate_by_name=True)


class ReconciliationReportResponse(BaseModel):
    started_at: datetime = Field(alias="startedAt")
    expired: list[int]
    activated: list[int]
    items_checked: int = Field(alias="itemsChecked")
    prices_corrected: int = Field(alias="pricesCorrected")
    failures: int
    skipped: bool

    model_config = ConfigDict(populate_by_name=True)
