from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines
from services.discount_service.app.main import create_app


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("reconciliation_enabled", "expected"),
    [(False, "disabled"), (True, "scheduled")],
)
async def test_health_endpoint_returns_ok(tmp_path, reconciliation_enabled: bool, expected: str) -> None:
    settings = ServiceSettings(
        enable_metrics=False,
        enable_tracing=False,
        reconciliation_enabled=reconciliation_enabled,
        reconciliation_interval_seconds=3600,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'health.db'}",
    )
    app = create_app(settings)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "reconciliation": expected}
    await dispose_engines()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
