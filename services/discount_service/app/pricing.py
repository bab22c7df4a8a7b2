"""Pure price computation for products and variants.

Nothing in this module touches the database. Every function takes the clock as an
argument so the same code serves request handlers, the reconciliation sweep and
tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from .models import DiscountSource, DiscountType, Product, ProductVariant

ZERO = Decimal("0")
HUNDRED = Decimal("100")

PriceSource = Literal["variant", "product", "none"]


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a timestamp to an aware UTC datetime (SQLite hands back naive values)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True, slots=True)
class DiscountTerms:
    """One discount definition: the live, overlay or snapshot fields of an item."""

    discount_type: DiscountType = DiscountType.PERCENTAGE
    percentage: Decimal = ZERO
    amount: Decimal = ZERO
    start: datetime | None = None
    end: datetime | None = None

    @property
    def has_value(self) -> bool:
        return self.percentage > 0 or self.amount > 0

    def normalized(self) -> DiscountTerms:
        """Force the value that does not match ``discount_type`` to zero."""

        if self.discount_type == DiscountType.FIXED:
            return DiscountTerms(DiscountType.FIXED, ZERO, self.amount, self.start, self.end)
        return DiscountTerms(DiscountType.PERCENTAGE, self.percentage, ZERO, self.start, self.end)


NO_DISCOUNT = DiscountTerms()


def live_terms(item: Product | ProductVariant) -> DiscountTerms:
    return DiscountTerms(
        discount_type=item.discount_type or DiscountType.PERCENTAGE,
        percentage=_decimal(item.discount_percentage),
        amount=_decimal(item.discount_amount),
        start=as_utc(item.discount_start_time),
        end=as_utc(item.discount_end_time),
    )


def overlay_terms(item: Product | ProductVariant) -> DiscountTerms | None:
    if item.campaign_discount_type is None:
        return None
    return DiscountTerms(
        discount_type=item.campaign_discount_type,
        percentage=_decimal(item.campaign_discount_percentage),
        amount=_decimal(item.campaign_discount_amount),
        start=as_utc(item.campaign_discount_start_time),
        end=as_utc(item.campaign_discount_end_time),
    )


def snapshot_terms(item: Product | ProductVariant) -> DiscountTerms | None:
    if item.original_discount_type is None:
        return None
    return DiscountTerms(
        discount_type=item.original_discount_type,
        percentage=_decimal(item.original_discount_percentage),
        amount=_decimal(item.original_discount_amount),
        start=as_utc(item.original_discount_start_time),
        end=as_utc(item.original_discount_end_time),
    )


def quantize_price(value: Decimal, places: int = 0) -> Decimal:
    """Round half-up to ``places`` decimal digits."""

    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def is_discount_active(terms: DiscountTerms, now: datetime) -> bool:
    """A discount is active when it has a positive value and ``now`` is inside its window.

    A missing bound leaves that side of the window open, so a discount without any
    timestamps is always active.
    """

    if not terms.has_value:
        return False
    now = as_utc(now)
    if terms.start is not None and now < terms.start:
        return False
    if terms.end is not None and now > terms.end:
        return False
    return True


def discounted_price(base_price: Decimal, terms: DiscountTerms, places: int = 0) -> Decimal:
    """Apply ``terms`` to ``base_price`` without looking at the window."""

    base = _decimal(base_price)
    if terms.discount_type == DiscountType.PERCENTAGE:
        if terms.percentage <= 0:
            return base
        result = quantize_price(base - base * terms.percentage / HUNDRED, places)
    else:
        if terms.amount <= 0:
            return base
        result = quantize_price(max(ZERO, base - terms.amount), places)
    return min(max(result, ZERO), base)


def current_price(base_price: Decimal, terms: DiscountTerms, now: datetime, places: int = 0) -> Decimal:
    if not is_discount_active(terms, now):
        return _decimal(base_price)
    return discounted_price(base_price, terms, places)


@dataclass(frozen=True, slots=True)
class PriceQuote:
    base_price: Decimal
    price: Decimal
    discount_active: bool
    source: PriceSource


def effective_base_price(product: Product, variant: ProductVariant | None = None) -> Decimal:
    if variant is not None and variant.base_price is not None:
        return _decimal(variant.base_price)
    return _decimal(product.base_price)


def quote_product(product: Product, now: datetime, places: int = 0) -> PriceQuote:
    terms = live_terms(product)
    base = effective_base_price(product)
    if is_discount_active(terms, now):
        return PriceQuote(base, discounted_price(base, terms, places), True, "product")
    return PriceQuote(base, base, False, "none")


def quote_variant(product: Product, variant: ProductVariant, now: datetime, places: int = 0) -> PriceQuote:
    """Resolve a variant price: own discount, then the product's discount, then base price.

    The product-level discount is applied to the variant's own base price.
    """

    base = effective_base_price(product, variant)
    own = live_terms(variant)
    if variant.discount_source == DiscountSource.EXPLICIT_VALUE and is_discount_active(own, now):
        return PriceQuote(base, discounted_price(base, own, places), True, "variant")
    inherited = live_terms(product)
    if is_discount_active(inherited, now):
        return PriceQuote(base, discounted_price(base, inherited, places), True, "product")
    return PriceQuote(base, base, False, "none")


def quote_item(
    product: Product,
    variant: ProductVariant | None,
    now: datetime,
    places: int = 0,
) -> PriceQuote:
    if variant is None:
        return quote_product(product, now, places)
    return quote_variant(product, variant, now, places)


def refresh_prices(product: Product, now: datetime, places: int = 0) -> int:
    """Materialise ``price`` on the product and its variants.

    Only rows whose price actually changes are touched, so an unchanged item does
    not bump its version. Returns the number of rows updated.
    """

    changed = 0
    product_price = quote_product(product, now, places).price
    if product.price is None or _decimal(product.price) != product_price:
        product.price = product_price
        changed += 1
    for variant in product.variants:
        variant_price = quote_variant(product, variant, now, places).price
        if variant.price is None or _decimal(variant.price) != variant_price:
            variant.price = variant_price
            changed += 1
    return changed


def resolve_variant_price(product: Product, variant: ProductVariant, now: datetime, places: int = 0) -> Decimal:
    return quote_variant(product, variant, now, places).price


def variant_discount_active(product: Product, variant: ProductVariant, now: datetime) -> bool:
    return quote_variant(product, variant, now).discount_active
