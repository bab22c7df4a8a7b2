"""Snapshot, overlay and restore of an item's discount fields.

An item's live ``discount_*`` fields are what prices are computed from. While a
campaign overlay is active those fields are borrowed by the campaign and the
standalone discount waits in the ``original_*`` snapshot until it is restored.
"""

from __future__ import annotations

from .errors import DiscountValidationError
from .models import DiscountSource, Product, ProductVariant
from .pricing import (
    HUNDRED,
    NO_DISCOUNT,
    ZERO,
    DiscountTerms,
    live_terms,
    overlay_terms,
    snapshot_terms,
)

Item = Product | ProductVariant


def source_for(terms: DiscountTerms) -> DiscountSource:
    return DiscountSource.EXPLICIT_VALUE if terms.has_value else DiscountSource.EXPLICIT_ZERO


def validate_terms(terms: DiscountTerms) -> None:
    if terms.percentage < ZERO or terms.percentage > HUNDRED:
        raise DiscountValidationError("Discount percentage must be between 0 and 100")
    if terms.amount < ZERO:
        raise DiscountValidationError("Discount amount cannot be negative")
    if terms.start is not None and terms.end is not None and terms.end <= terms.start:
        raise DiscountValidationError("Discount end time must be after start time")


def _write_live(item: Item, terms: DiscountTerms) -> None:
    item.discount_type = terms.discount_type
    item.discount_percentage = terms.percentage
    item.discount_amount = terms.amount
    item.discount_start_time = terms.start
    item.discount_end_time = terms.end


def _write_snapshot(item: Item, terms: DiscountTerms, source: DiscountSource | None) -> None:
    item.original_discount_type = terms.discount_type
    item.original_discount_percentage = terms.percentage
    item.original_discount_amount = terms.amount
    item.original_discount_start_time = terms.start
    item.original_discount_end_time = terms.end
    if isinstance(item, ProductVariant):
        item.original_discount_source = source


def _clear_overlay(item: Item) -> None:
    item.campaign_discount_active = False
    item.campaign_discount_type = None
    item.campaign_discount_percentage = ZERO
    item.campaign_discount_amount = ZERO
    item.campaign_discount_start_time = None
    item.campaign_discount_end_time = None


def derive_standalone(item: Item) -> DiscountTerms | None:
    """Work out what the standalone discount is, ignoring the overlay.

    While the live fields still equal the overlay, the standalone discount is the
    one held in the snapshot. Live fields that differ from the overlay were edited
    out-of-band after the overlay began, and that edit is the standalone discount.
    """

    live = live_terms(item).normalized()
    if not item.campaign_discount_active:
        return live
    overlay = overlay_terms(item)
    if overlay is not None and live == overlay.normalized():
        return snapshot_terms(item)
    return live


def snapshot(item: Item) -> bool:
    """Save the standalone discount into ``original_*``; returns True when written."""

    if not item.campaign_discount_active:
        source = item.discount_source if isinstance(item, ProductVariant) else None
        _write_snapshot(item, live_terms(item).normalized(), source)
        return True

    standalone = derive_standalone(item)
    if standalone is None or standalone == snapshot_terms(item):
        return False
    _write_snapshot(item, standalone, source_for(standalone))
    return True


def apply_overlay(item: Item, terms: DiscountTerms) -> None:
    """Set the campaign overlay and mirror it into the live fields."""

    terms = terms.normalized()
    item.campaign_discount_active = True
    item.campaign_discount_type = terms.discount_type
    item.campaign_discount_percentage = terms.percentage
    item.campaign_discount_amount = terms.amount
    item.campaign_discount_start_time = terms.start
    item.campaign_discount_end_time = terms.end
    _write_live(item, terms)
    if isinstance(item, ProductVariant):
        item.discount_source = DiscountSource.EXPLICIT_VALUE


def restore(item: Item) -> None:
    """Put the snapshot back into the live fields and drop the overlay.

    Items without a snapshot fall back to an empty percentage discount.
    """

    saved = snapshot_terms(item)
    if saved is not None:
        _write_live(item, saved.normalized())
        if isinstance(item, ProductVariant):
            item.discount_source = item.original_discount_source or source_for(saved)
    else:
        _write_live(item, NO_DISCOUNT)
        if isinstance(item, ProductVariant):
            item.discount_source = DiscountSource.NONE
    _clear_overlay(item)


def edit_standalone(item: Item, terms: DiscountTerms, source: DiscountSource | None = None) -> None:
    """Catalog-manager edit of the standalone discount.

    During an overlay only the snapshot changes, so the edit is what comes back
    when the campaign ends.
    """

    terms = terms.normalized()
    validate_terms(terms)
    if isinstance(item, ProductVariant) and source is None:
        source = source_for(terms)
    if not item.campaign_discount_active:
        _write_live(item, terms)
        if isinstance(item, ProductVariant):
            item.discount_source = source
    _write_snapshot(item, terms, source)
