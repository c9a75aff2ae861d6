import math
from typing import Sequence

import structlog

from usagecost.models import SharedCostView, UsageRow, is_real_key_ref

logger = structlog.get_logger()

# pricing sources that describe one account-level invoice rather than
# independently billed requests
_SHARED_SOURCE_PREFIXES: "tuple[str, ...]" = (
    "manual_package_",
    "scheduled_package_",
    "provider_budget_api",
)
_SHARED_SOURCES: "frozenset[str]" = frozenset({"token_rate", "provider_token_rate"})


def is_shared_account_source(source: "str | None") -> "bool":
    norm = (source or "").strip().lower()
    if not norm or norm == "none":
        return False
    return norm in _SHARED_SOURCES or norm.startswith(_SHARED_SOURCE_PREFIXES)


def _finite(value: "float | None") -> "float | None":
    if value is None or not math.isfinite(value):
        return None
    return float(value)


def _keeper_order(row: "UsageRow") -> "tuple[int, str, str]":
    return (-(row.requests or 0), (row.api_key_ref or "").strip(), row.provider)


def dedupe_shared_costs(rows: "Sequence[UsageRow]") -> "SharedCostView":
    """
    keeps one row's cost per shared billed account.

    Rows with a shared-account pricing source are bucketed by api key
    ref. In every bucket of more than one row the row with the most
    requests keeps its cost (ties: api key ref, then provider name) and
    the others are zeroed. Request and token counts are never touched.
    Every other row passes its cost through, with non-finite values
    turned into None.
    """
    buckets: "dict[str, list[UsageRow]]" = {}
    for row in rows:
        if not is_shared_account_source(row.pricing_source):
            continue
        if not is_real_key_ref(row.api_key_ref):
            continue
        buckets.setdefault((row.api_key_ref or "").strip(), []).append(row)

    zeroed: "set[tuple[str, str]]" = set()
    for api_key_ref, bucket in buckets.items():
        if len(bucket) <= 1:
            continue
        keeper = min(bucket, key=_keeper_order)
        for row in bucket:
            if row.key != keeper.key:
                zeroed.add(row.key)
        logger.debug(
            "shared_cost_deduped",
            api_key_ref=api_key_ref,
            keeper=keeper.provider,
            zeroed=len(bucket) - 1,
        )

    effective_daily: "dict[tuple[str, str], float | None]" = {}
    effective_total: "dict[tuple[str, str], float | None]" = {}
    for row in rows:
        if row.key in zeroed:
            effective_daily[row.key] = 0.0
            effective_total[row.key] = 0.0
        else:
            effective_daily[row.key] = _finite(row.estimated_daily_cost_usd)
            effective_total[row.key] = _finite(row.total_used_cost_usd)

    return SharedCostView(
        zeroed_keys=frozenset(zeroed),
        effective_daily=effective_daily,
        effective_total=effective_total,
    )
