"""SQLAlchemy models for the discount engine."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    TypeDecorator,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

MONEY = Numeric(12, 2)
PERCENT = Numeric(5, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamps stored as UTC and always loaded back as aware datetimes.

    SQLite drops the offset on write, so naive values coming back are tagged UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for discount engine ORM models."""


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CampaignType(str, enum.Enum):
    PRODUCT = "product"
    CATEGORY = "category"


class DiscountSource(str, enum.Enum):
    """Whether a variant carries a discount of its own.

    ``none`` and ``explicit_zero`` both let the variant inherit the product-level
    discount when prices are read; only ``explicit_value`` overrides it.
    """

    NONE = "none"
    EXPLICIT_ZERO = "explicit_zero"
    EXPLICIT_VALUE = "explicit_value"


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class DiscountFieldsMixin:
    """Standalone, overlay and snapshot discount columns shared by products and variants."""

    discount_type: Mapped[DiscountType] = mapped_column(
        _enum(DiscountType, "discount_type"), nullable=False, default=DiscountType.PERCENTAGE
    )
    discount_percentage: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    discount_start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    discount_end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    campaign_discount_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="0"
    )
    campaign_discount_type: Mapped[DiscountType | None] = mapped_column(
        _enum(DiscountType, "campaign_discount_type"), nullable=True
    )
    campaign_discount_percentage: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("0"))
    campaign_discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    campaign_discount_start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    campaign_discount_end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    original_discount_type: Mapped[DiscountType | None] = mapped_column(
        _enum(DiscountType, "original_discount_type"), nullable=True
    )
    original_discount_percentage: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)
    original_discount_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    original_discount_start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    original_discount_end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id"), nullable=True)


class Product(DiscountFieldsMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BDT")
    parent_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id"), nullable=True, index=True
    )
    sub_category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id"), nullable=True, index=True)
    base_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow, server_default=func.now()
    )

    variants: Mapped[list[ProductVariant]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id",
    )

    __mapper_args__ = {"version_id_col": version}


class ProductVariant(DiscountFieldsMixin, Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        UniqueConstraint("product_id", "variant_code", name="uq_product_variant_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_code: Mapped[str] = mapped_column(String(64), nullable=False)
    color_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    base_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    discount_source: Mapped[DiscountSource] = mapped_column(
        _enum(DiscountSource, "discount_source"), nullable=False, default=DiscountSource.NONE
    )
    original_discount_source: Mapped[DiscountSource | None] = mapped_column(
        _enum(DiscountSource, "original_discount_source"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    product: Mapped[Product] = relationship(back_populates="variants")

    __mapper_args__ = {"version_id_col": version}


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[CampaignType] = mapped_column(_enum(CampaignType, "campaign_type"), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(_enum(DiscountType, "campaign_value_type"), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow, server_default=func.now()
    )

    targets: Mapped[list[CampaignTarget]] = relationship(
        back_populates="campaign",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CampaignTarget.position",
    )

    @property
    def target_ids(self) -> list[int]:
        return [target.target_id for target in self.targets]


class CampaignTarget(Base):
    __tablename__ = "campaign_targets"
    __table_args__ = (
        UniqueConstraint("campaign_id", "target_id", name="uq_campaign_target"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    campaign: Mapped[Campaign] = relationship(back_populates="targets")
