"""API routes for item prices and standalone discount edits."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_item_service
from ..errors import DiscountEngineError, to_http_exception
from ..items import ItemDiscountService
from ..models import DiscountType, Product, ProductVariant
from ..pricing import (
    DiscountTerms,
    PriceQuote,
    live_terms,
    overlay_terms,
    quote_product,
    quote_variant,
    snapshot_terms,
)
from ..schemas import DiscountEdit, PriceResponse, ProductDiscountState, VariantDiscountEdit

router = APIRouter(prefix="/items", tags=["items"])

_CENTS = Decimal("0.01")


def _money(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value).quantize(_CENTS)


def _terms_payload(terms: DiscountTerms | None) -> dict[str, object] | None:
    if terms is None:
        return None
    return {
        "discountType": terms.discount_type,
        "discountPercentage": terms.percentage,
        "discountAmount": _money(terms.amount),
        "discountStartTime": terms.start,
        "discountEndTime": terms.end,
    }


def _item_state(item: Product | ProductVariant, quote: PriceQuote) -> dict[str, object]:
    stored = _money(item.price)
    return {
        "id": item.id,
        "version": item.version,
        "basePrice": _money(quote.base_price),
        "storedPrice": stored,
        "expectedPrice": _money(quote.price),
        "priceMatches": stored == _money(quote.price),
        "isDiscountActive": quote.discount_active,
        "priceSource": quote.source,
        "discount": _terms_payload(live_terms(item)),
        "campaignDiscountActive": item.campaign_discount_active,
        "campaignDiscount": _terms_payload(overlay_terms(item)),
        "originalDiscount": _terms_payload(snapshot_terms(item)),
    }


def _serialize_state(product: Product, now: datetime, places: int) -> dict[str, object]:
    state = _item_state(product, quote_product(product, now, places))
    state["title"] = product.title
    state["checkedAt"] = now
    state["variants"] = [
        {
            **_item_state(variant, quote_variant(product, variant, now, places)),
            "variantCode": variant.variant_code,
            "discountSource": variant.discount_source,
            "originalDiscountSource": variant.original_discount_source,
        }
        for variant in product.variants
    ]
    return state


def _edit_terms(payload: DiscountEdit) -> DiscountTerms:
    if payload.discount_type == DiscountType.FIXED:
        amount, percentage = payload.discount_amount, Decimal("0")
    else:
        amount, percentage = Decimal("0"), payload.discount_percentage
    return DiscountTerms(
        discount_type=payload.discount_type,
        percentage=percentage,
        amount=amount,
        start=payload.discount_start_time,
        end=payload.discount_end_time,
    )


@router.get("/{product_id}/price", response_model=PriceResponse)
async def get_item_price(
    product_id: int,
    variant_id: int | None = Query(default=None, alias="variantId"),
    at: datetime | None = Query(default=None),
    service: ItemDiscountService = Depends(get_item_service),
) -> PriceResponse:
    try:
        product, variant, quote = await service.quote(product_id, variant_id=variant_id, at=at)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    stored = variant.price if variant is not None else product.price
    return PriceResponse.model_validate(
        {
            "productId": product.id,
            "variantId": variant.id if variant is not None else None,
            "currency": product.currency,
            "basePrice": _money(quote.base_price),
            "currentPrice": _money(quote.price),
            "storedPrice": _money(stored),
            "isDiscountActive": quote.discount_active,
            "source": quote.source,
            "at": at or service.clock(),
        }
    )


@router.get("/{product_id}/discount-state", response_model=ProductDiscountState)
async def get_discount_state(
    product_id: int,
    service: ItemDiscountService = Depends(get_item_service),
) -> ProductDiscountState:
    try:
        product = await service.get_product(product_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return ProductDiscountState.model_validate(_serialize_state(product, service.clock(), service.price_places))


@router.put("/{product_id}/discount", response_model=ProductDiscountState)
async def edit_product_discount(
    product_id: int,
    payload: DiscountEdit,
    service: ItemDiscountService = Depends(get_item_service),
) -> ProductDiscountState:
    try:
        product = await service.edit_product_discount(
            product_id,
            _edit_terms(payload),
            expected_version=payload.expected_version,
        )
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return ProductDiscountState.model_validate(_serialize_state(product, service.clock(), service.price_places))


@router.put("/{product_id}/variants/{variant_id}/discount", response_model=ProductDiscountState)
async def edit_variant_discount(
    product_id: int,
    variant_id: int,
    payload: VariantDiscountEdit,
    service: ItemDiscountService = Depends(get_item_service),
) -> ProductDiscountState:
    try:
        product = await service.edit_variant_discount(
            product_id,
            variant_id,
            _edit_terms(payload),
            clear=payload.clear,
            expected_version=payload.expected_version,
        )
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return ProductDiscountState.model_validate(_serialize_state(product, service.clock(), service.price_places))


@router.post("/{product_id}/overlay/clear", response_model=ProductDiscountState)
async def clear_overlay(
    product_id: int,
    service: ItemDiscountService = Depends(get_item_service),
) -> ProductDiscountState:
    try:
        product = await service.clear_overlay(product_id)
    except DiscountEngineError as exc:
        raise to_http_exception(exc) from exc
    return ProductDiscountState.model_validate(_serialize_state(product, service.clock(), service.price_places))
