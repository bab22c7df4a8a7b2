#!/usr/bin/env python3
"""Run one discount reconciliation pass against a database and print the report.

Useful after an outage of the service's scheduler, or to repair prices by hand
after a bulk catalog import.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os

from services.common import (
    close_redis_connections,
    configure_logging,
    create_engine,
    create_schema,
    dispose_engines,
    get_session_factory,
    get_settings,
    resolve_redis,
)
from services.discount_service.app.leases import LeaseStore
from services.discount_service.app.models import Base
from services.discount_service.app.reconciliation import ReconciliationJob

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./discount_service.db"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one discount reconciliation pass")
    parser.add_argument(
        "--database-url",
        default=os.getenv("SERVICE_DATABASE_URL", DEFAULT_DATABASE_URL),
        help="SQLAlchemy async database URL (default: %(default)s or SERVICE_DATABASE_URL)",
    )
    parser.add_argument(
        "--redis-url",
        default=os.getenv("SERVICE_REDIS_URL"),
        help="Redis URL for the reconciliation lease; in-process lease when omitted",
    )
    parser.add_argument(
        "--decimal-places",
        type=int,
        default=None,
        help="Price rounding precision (default: SERVICE_PRICE_DECIMAL_PLACES or 0)",
    )
    parser.add_argument(
        "--sweep-fixed",
        action="store_true",
        help="Also re-check items that only carry a fixed-amount discount",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before running",
    )
    return parser.parse_args()


async def main_async() -> int:
    args = parse_args()
    overrides: dict[str, object] = {"database_url": args.database_url, "redis_url": args.redis_url}
    if args.decimal_places is not None:
        overrides["price_decimal_places"] = args.decimal_places
    if args.sweep_fixed:
        overrides["sweep_fixed_discounts"] = True
    settings = get_settings().model_copy(update=overrides)
    configure_logging(settings)

    redis_client = resolve_redis(settings)
    try:
        if args.create_schema:
            await create_schema(create_engine(args.database_url), Base.metadata)
        job = ReconciliationJob(
            get_session_factory(args.database_url),
            leases=LeaseStore(redis_client, key_prefix="discount_lease"),
            lease_seconds=settings.reconciliation_lease_seconds,
            price_places=settings.price_decimal_places,
            sweep_fixed_discounts=settings.sweep_fixed_discounts,
        )
        report = await job.run()
    finally:
        await dispose_engines()
        if redis_client is not None:
            await close_redis_connections()

    print(json.dumps(report.as_payload(), indent=2, sort_keys=True))
    return 2 if report.skipped else 0


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
