from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_engine,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)
from services.common.kafka import KafkaProducerStub

from .api.campaigns import router as campaigns_router
from .api.health import router as health_router
from .api.items import router as items_router
from .api.reconciliation import router as reconciliation_router
from .events import CampaignEventPublisher
from .leases import LeaseStore
from .models import Base
from .reconciliation import ReconciliationJob, build_scheduler

SERVICE_NAME = "Discount Engine"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./discount_service.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Discount Engine FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    redis_client = resolve_redis(resolved_settings)
    leases = LeaseStore(redis_client, key_prefix="discount_lease")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        kafka_producer: KafkaProducerStub | None = None
        scheduler: AsyncIOScheduler | None = None
        app.state.session_factory = session_factory
        app.state.leases = leases
        try:
            if resolved_settings.auto_create_schema:
                await create_schema(create_engine(database_url), Base.metadata)
            kafka_producer = KafkaProducerStub(bootstrap_servers=resolved_settings.kafka_bootstrap_servers)
            await kafka_producer.connect()
            event_publisher = CampaignEventPublisher(kafka_producer)
            reconciliation_job = ReconciliationJob(
                session_factory,
                leases=leases,
                lease_seconds=resolved_settings.reconciliation_lease_seconds,
                price_places=resolved_settings.price_decimal_places,
                sweep_fixed_discounts=resolved_settings.sweep_fixed_discounts,
                event_publisher=event_publisher,
            )
            app.state.kafka_producer = kafka_producer
            app.state.event_publisher = event_publisher
            app.state.reconciliation_job = reconciliation_job
            if resolved_settings.reconciliation_enabled:
                scheduler = build_scheduler(
                    reconciliation_job,
                    interval_seconds=resolved_settings.reconciliation_interval_seconds,
                )
                scheduler.start()
            app.state.scheduler = scheduler
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            app.state.scheduler = None
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.leases = None
            app.state.event_publisher = None
            app.state.reconciliation_job = None
            app.state.kafka_producer = None
            if kafka_producer is not None:
                await kafka_producer.close()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(campaigns_router)
    app.include_router(items_router)
    app.include_router(reconciliation_router)
    return app


app = create_app()
