from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from services.discount_service.app.errors import DiscountValidationError
from services.discount_service.app.models import DiscountSource, DiscountType, Product, ProductVariant
from services.discount_service.app.pricing import DiscountTerms, live_terms, snapshot_terms
from services.discount_service.app.snapshot import (
    apply_overlay,
    derive_standalone,
    edit_standalone,
    restore,
    snapshot,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
CAMPAIGN = DiscountTerms(
    DiscountType.FIXED,
    Decimal("0"),
    Decimal("200"),
    NOW - timedelta(days=1),
    NOW + timedelta(days=1),
)


def _product(percentage: str = "0", amount: str = "0", discount_type: DiscountType = DiscountType.PERCENTAGE) -> Product:
    return Product(
        title="Saree",
        base_price=Decimal("1000"),
        price=Decimal("1000"),
        discount_type=discount_type,
        discount_percentage=Decimal(percentage),
        discount_amount=Decimal(amount),
        campaign_discount_active=False,
        campaign_discount_percentage=Decimal("0"),
        campaign_discount_amount=Decimal("0"),
    )


def _variant(source: DiscountSource = DiscountSource.NONE, percentage: str = "0") -> ProductVariant:
    return ProductVariant(
        variant_code="L-BLUE",
        price=Decimal("1000"),
        discount_type=DiscountType.PERCENTAGE,
        discount_percentage=Decimal(percentage),
        discount_amount=Decimal("0"),
        campaign_discount_active=False,
        campaign_discount_percentage=Decimal("0"),
        campaign_discount_amount=Decimal("0"),
        discount_source=source,
    )


def test_snapshot_copies_type_matching_value_only() -> None:
    product = _product(percentage="10", amount="55")

    assert snapshot(product)

    assert product.original_discount_type == DiscountType.PERCENTAGE
    assert product.original_discount_percentage == Decimal("10")
    assert product.original_discount_amount == Decimal("0")


def test_overlay_mirrors_campaign_into_live_fields() -> None:
    product = _product(percentage="10")
    snapshot(product)
    apply_overlay(product, CAMPAIGN)

    assert product.campaign_discount_active
    assert live_terms(product) == CAMPAIGN
    assert snapshot_terms(product).percentage == Decimal("10")


def test_snapshot_is_noop_while_overlay_untouched() -> None:
    product = _product(percentage="10")
    snapshot(product)
    apply_overlay(product, CAMPAIGN)

    assert not snapshot(product)
    assert snapshot_terms(product).percentage == Decimal("10")


def test_out_of_band_edit_during_overlay_becomes_new_snapshot() -> None:
    product = _product(percentage="10")
    snapshot(product)
    apply_overlay(product, CAMPAIGN)

    # Someone wrote the live fields directly while the campaign was on.
    product.discount_type = DiscountType.PERCENTAGE
    product.discount_percentage = Decimal("25")
    product.discount_amount = Decimal("0")
    product.discount_start_time = None
    product.discount_end_time = None

    assert derive_standalone(product).percentage == Decimal("25")
    assert snapshot(product)
    assert snapshot_terms(product).percentage == Decimal("25")


def test_restore_puts_snapshot_back_and_clears_overlay() -> None:
    product = _product(percentage="10")
    snapshot(product)
    apply_overlay(product, CAMPAIGN)

    restore(product)

    assert not product.campaign_discount_active
    assert product.campaign_discount_type is None
    assert product.campaign_discount_amount == Decimal("0")
    assert product.discount_type == DiscountType.PERCENTAGE
    assert product.discount_percentage == Decimal("10")
    assert product.discount_amount == Decimal("0")


def test_restore_without_snapshot_resets_to_empty_percentage() -> None:
    product = _product(amount="300", discount_type=DiscountType.FIXED)
    apply_overlay(product, CAMPAIGN)

    restore(product)

    assert product.discount_type == DiscountType.PERCENTAGE
    assert product.discount_percentage == Decimal("0")
    assert product.discount_amount == Decimal("0")
    assert product.discount_start_time is None


def test_variant_source_survives_overlay_round_trip() -> None:
    variant = _variant(DiscountSource.EXPLICIT_ZERO)
    snapshot(variant)
    apply_overlay(variant, CAMPAIGN)
    assert variant.discount_source == DiscountSource.EXPLICIT_VALUE

    restore(variant)

    assert variant.discount_source == DiscountSource.EXPLICIT_ZERO
    assert variant.discount_percentage == Decimal("0")


def test_variant_without_snapshot_restores_to_none_source() -> None:
    variant = _variant(DiscountSource.EXPLICIT_VALUE, percentage="5")
    apply_overlay(variant, CAMPAIGN)

    restore(variant)

    assert variant.discount_source == DiscountSource.NONE


def test_standalone_edit_during_overlay_only_touches_snapshot() -> None:
    product = _product(percentage="10")
    snapshot(product)
    apply_overlay(product, CAMPAIGN)

    edit_standalone(product, DiscountTerms(DiscountType.PERCENTAGE, Decimal("15")))

    assert live_terms(product) == CAMPAIGN
    assert snapshot_terms(product).percentage == Decimal("15")
    restore(product)
    assert product.discount_percentage == Decimal("15")


def test_standalone_edit_without_overlay_writes_live_and_snapshot() -> None:
    variant = _variant()

    edit_standalone(variant, DiscountTerms(DiscountType.FIXED, Decimal("40"), Decimal("70")))

    assert variant.discount_type == DiscountType.FIXED
    assert variant.discount_amount == Decimal("70")
    assert variant.discount_percentage == Decimal("0")
    assert variant.discount_source == DiscountSource.EXPLICIT_VALUE
    assert variant.original_discount_source == DiscountSource.EXPLICIT_VALUE


@pytest.mark.parametrize(
    "terms",
    [
        DiscountTerms(DiscountType.PERCENTAGE, Decimal("120")),
        DiscountTerms(DiscountType.FIXED, Decimal("0"), Decimal("-5")),
        DiscountTerms(DiscountType.PERCENTAGE, Decimal("10"), Decimal("0"), NOW, NOW - timedelta(hours=1)),
    ],
)
def test_standalone_edit_rejects_invalid_terms(terms: DiscountTerms) -> None:
    product = _product(percentage="10")

    with pytest.raises(DiscountValidationError):
        edit_standalone(product, terms)

    assert product.discount_percentage == Decimal("10")
