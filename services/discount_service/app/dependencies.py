"""Dependency wiring for the discount engine."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import ServiceSettings, lifespan_session

from .campaigns import CampaignService
from .items import ItemDiscountService
from .repository import DiscountRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> DiscountRepository:
    return DiscountRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_event_publisher(request: Request) -> Any:
    return getattr(request.app.state, "event_publisher", None)


def get_reconciliation_job(request: Request) -> Any:
    return getattr(request.app.state, "reconciliation_job", None)


def get_campaign_service(
    repository: DiscountRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
    event_publisher: Any = Depends(get_event_publisher),
) -> CampaignService:
    return CampaignService(
        repository,
        price_places=settings.price_decimal_places,
        check_category_overlap=settings.check_category_overlap,
        event_publisher=event_publisher,
    )


def get_item_service(
    repository: DiscountRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> ItemDiscountService:
    return ItemDiscountService(repository, price_places=settings.price_decimal_places)
