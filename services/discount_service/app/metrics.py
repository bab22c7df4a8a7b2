"""Prometheus metrics for the discount engine."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

# Campaign application ----------------------------------------------------------------------
DISCOUNT_CAMPAIGN_ITEMS_TOTAL: Final = Counter(
    "discount_campaign_items_total",
    "Products processed by campaign apply/remove passes, by outcome.",
    labelnames=("operation", "outcome"),
)

DISCOUNT_CAMPAIGN_ITEM_FAILURES_TOTAL: Final = Counter(
    "discount_campaign_item_failures_total",
    "Products whose campaign apply/remove write failed.",
    labelnames=("operation",),
)

DISCOUNT_CAMPAIGN_CONFLICTS_TOTAL: Final = Counter(
    "discount_campaign_conflicts_total",
    "Campaign create/update requests rejected because targets overlap another campaign.",
)

# Reconciliation ----------------------------------------------------------------------------
DISCOUNT_RECONCILIATION_RUNS_TOTAL: Final = Counter(
    "discount_reconciliation_runs_total",
    "Reconciliation runs, by result.",
    labelnames=("result",),
)

DISCOUNT_RECONCILIATION_FAILURES_TOTAL: Final = Counter(
    "discount_reconciliation_failures_total",
    "Campaign transitions or item corrections that failed during reconciliation.",
    labelnames=("stage",),
)

DISCOUNT_RECONCILIATION_PRICES_CORRECTED_TOTAL: Final = Counter(
    "discount_reconciliation_prices_corrected_total",
    "Item prices rewritten by the reconciliation sweep.",
)

DISCOUNT_RECONCILIATION_DURATION_SECONDS: Final = Histogram(
    "discount_reconciliation_duration_seconds",
    "Wall-clock time of one reconciliation run.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)
