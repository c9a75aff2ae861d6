import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import structlog

from usagecost.grouping import compute_totals_and_averages, group_providers
from usagecost.metrics import CostMetrics
from usagecost.models import (
    PricingConfig,
    PricingMode,
    ProviderDisplayGroup,
    SharedCostView,
    TimeRange,
    TotalsAndAverages,
    UsageAmount,
    UsageRow,
)
from usagecost.pricing import DAY_MS, resolve_effective_cost
from usagecost.ratios import safe_div
from usagecost.shared_cost import dedupe_shared_costs

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class UsageReport:
    window: "TimeRange"
    rows: "tuple[UsageRow, ...]"
    shared: "SharedCostView"
    groups: "tuple[ProviderDisplayGroup, ...]"
    totals: "TotalsAndAverages | None"

    def to_dict(self) -> "dict[str, Any]":
        return {
            "window": dataclasses.asdict(self.window),
            "groups": [
                {
                    **{
                        f.name: getattr(group, f.name)
                        for f in dataclasses.fields(group)
                        if f.name != "rows"
                    },
                    "providers": list(group.providers),
                    "zeroed_providers": [
                        r.provider
                        for r in group.rows
                        if r.key in self.shared.zeroed_keys
                    ],
                }
                for group in self.groups
            ],
            "totals": dataclasses.asdict(self.totals) if self.totals else None,
        }


def apply_pricing(
    row: "UsageRow",
    config: "PricingConfig | None",
    window: "TimeRange",
    rates: "dict[str, float]",
) -> "UsageRow":
    """
    returns a copy of row carrying the cost its pricing config resolves
    to for window. Rows without a configured price keep the cost they
    arrived with.
    """
    if config is None:
        return row
    usage = UsageAmount(requests=row.requests, tokens=row.total_tokens)
    cost = resolve_effective_cost(config, window, usage, rates)
    if cost.mode is PricingMode.NONE:
        return row
    daily = None
    if cost.usd is not None:
        daily = safe_div(cost.usd * DAY_MS, window.duration_ms)
    return dataclasses.replace(
        row,
        pricing_source=cost.source,
        total_used_cost_usd=cost.usd,
        estimated_daily_cost_usd=daily,
        estimated_avg_request_cost_usd=safe_div(cost.usd, row.requests),
        usd_per_million_tokens=(
            None
            if cost.usd is None
            else safe_div(cost.usd * 1_000_000, row.total_tokens)
        ),
    )


class UsageCostPipeline:
    """
    UsageCostPipeline runs one aggregation pass over a usage snapshot:
    per-row pricing, shared-cost dedup, display grouping and overall
    averages. Each call works on a fresh snapshot; nothing is carried
    over between passes except the metrics it publishes.
    """

    def __init__(self, metrics: "CostMetrics | None" = None) -> "None":
        self._metrics = metrics

    def build_report(
        self,
        rows: "Sequence[UsageRow]",
        pricing: "Mapping[str, PricingConfig]",
        window: "TimeRange",
        rates: "dict[str, float] | None" = None,
    ) -> "UsageReport":
        rates = rates or {}
        logger.info(
            "aggregation_pass_start",
            rows=len(rows),
            start_ms=window.start_ms,
            end_ms=window.end_ms,
        )
        priced = tuple(
            apply_pricing(r, pricing.get(r.provider), window, rates) for r in rows
        )
        shared = dedupe_shared_costs(priced)
        groups = tuple(group_providers(priced, shared))
        totals = compute_totals_and_averages(priced, shared)

        unknown = [g.display_name for g in groups if g.effective_total is None]
        if unknown:
            logger.info("cost_unknown", groups=unknown)
        if self._metrics is not None:
            self._metrics.update_groups(groups)

        logger.info(
            "aggregation_pass_end",
            groups=len(groups),
            zeroed=len(shared.zeroed_keys),
        )
        return UsageReport(
            window=window,
            rows=priced,
            shared=shared,
            groups=groups,
            totals=totals,
        )
