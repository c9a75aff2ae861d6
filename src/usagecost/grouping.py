import math
from typing import Callable, Iterable, Mapping, Sequence

from usagecost.models import (
    PricingMode,
    ProviderDisplayGroup,
    SharedCostView,
    TotalsAndAverages,
    UsageRow,
    is_real_key_ref,
)
from usagecost.ratios import safe_div


def _group_key(provider: "str", api_key_ref: "str | None") -> "str":
    if is_real_key_ref(api_key_ref):
        return f"key:{(api_key_ref or '').strip()}"
    return f"provider:{provider}"


def _sum_known(values: "Iterable[float | None]") -> "float | None":
    known = [v for v in values if v is not None and math.isfinite(v)]
    if not known:
        return None
    return sum(known)


def _mean(values: "Iterable[float | None]") -> "float | None":
    known = [v for v in values if v is not None and math.isfinite(v)]
    if not known:
        return None
    return safe_div(sum(known), len(known))


def _merged_source(rows: "Sequence[UsageRow]") -> "str | None":
    sources: "list[str]" = []
    for row in rows:
        source = (row.pricing_source or "").strip()
        if source and source not in sources:
            sources.append(source)
    if not sources:
        return None
    return sources[0] if len(sources) == 1 else "mixed"


def group_providers(
    rows: "Sequence[UsageRow]",
    shared: "SharedCostView",
) -> "list[ProviderDisplayGroup]":
    """
    merges rows that share a real api key ref into one display group.
    Rows without one each get a group keyed by provider name, so two
    providers never merge unless they bill the same account. Groups are
    returned in first-seen order.
    """
    members: "dict[str, tuple[str, list[str], list[UsageRow]]]" = {}
    for row in rows:
        key = _group_key(row.provider, row.api_key_ref)
        if key not in members:
            members[key] = ((row.api_key_ref or "").strip(), [], [])
        _, providers, group_rows = members[key]
        if row.provider not in providers:
            providers.append(row.provider)
        group_rows.append(row)

    groups: "list[ProviderDisplayGroup]" = []
    for api_key_ref, providers, group_rows in members.values():
        requests = sum(r.requests or 0 for r in group_rows)
        total_tokens = sum(r.total_tokens or 0 for r in group_rows)
        # zeroed rows are left out so an unknown keeper cost stays None rather
        # than summing to 0.0 (DESIGN.md, open question decision 10)
        priced = [r for r in group_rows if r.key not in shared.zeroed_keys]
        effective_total = _sum_known(shared.effective_total.get(r.key) for r in priced)
        effective_daily = _sum_known(shared.effective_daily.get(r.key) for r in priced)
        usd_per_million = None
        if effective_total is not None:
            usd_per_million = safe_div(effective_total * 1_000_000, total_tokens)
        real_key = is_real_key_ref(api_key_ref)
        groups.append(
            ProviderDisplayGroup(
                id=f"{'|'.join(providers)}::{api_key_ref if real_key else '-'}",
                providers=tuple(providers),
                rows=tuple(group_rows),
                display_name=" / ".join(providers),
                detail_label=api_key_ref if real_key else "-",
                requests=requests,
                total_tokens=total_tokens,
                tokens_per_request=safe_div(total_tokens, requests),
                estimated_avg_request_cost_usd=safe_div(effective_total, requests),
                usd_per_million_tokens=usd_per_million,
                effective_daily=effective_daily,
                effective_total=effective_total,
                pricing_source=_merged_source(group_rows),
            )
        )
    return groups


def compute_totals_and_averages(
    rows: "Sequence[UsageRow]",
    shared: "SharedCostView",
) -> "TotalsAndAverages | None":
    """
    totals every row's requests and tokens, and averages costs over the
    rows that kept their cost. Dedup-zeroed rows are left out of the
    cost means so they do not drag them toward zero.
    """
    if not rows:
        return None
    total_requests = sum(r.requests or 0 for r in rows)
    total_tokens = sum(r.total_tokens or 0 for r in rows)
    priced = [r for r in rows if r.key not in shared.zeroed_keys]
    return TotalsAndAverages(
        total_requests=total_requests,
        total_tokens=total_tokens,
        tokens_per_request=safe_div(total_tokens, total_requests),
        avg_usd_per_request=_mean(r.estimated_avg_request_cost_usd for r in priced),
        avg_usd_per_million=_mean(r.usd_per_million_tokens for r in priced),
        avg_estimated_daily=_mean(shared.effective_daily.get(r.key) for r in priced),
        avg_total_used=_mean(shared.effective_total.get(r.key) for r in priced),
    )


_MODE_PRIORITY: "dict[PricingMode, int]" = {
    PricingMode.PACKAGE_TOTAL: 3,
    PricingMode.MONTHLY_FEE: 2,
    PricingMode.PER_REQUEST: 1,
    PricingMode.NONE: 0,
}


def build_pricing_groups(
    provider_names: "Sequence[str]",
    modes: "Mapping[str, PricingMode]",
    key_label_for_provider: "Callable[[str], str]",
) -> "list[tuple[str, tuple[str, ...], str]]":
    """
    groups providers for the pricing editor by shared api key label.
    Returns (group id, providers, primary provider) tuples; the primary
    provider is the one with the most specific pricing mode, then by
    name.
    """
    members: "dict[str, list[str]]" = {}
    for name in provider_names:
        key = _group_key(name, key_label_for_provider(name))
        members.setdefault(key, []).append(name)

    out: "list[tuple[str, tuple[str, ...], str]]" = []
    for providers in members.values():
        primary = min(
            providers,
            key=lambda n: (-_MODE_PRIORITY[modes.get(n, PricingMode.NONE)], n),
        )
        out.append(("|".join(providers), tuple(providers), primary))
    return out
