import enum
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

# api key refs that stand for "no real key" rather than a billed account
PLACEHOLDER_KEY_REFS: "frozenset[str]" = frozenset({"", "-", "set"})


def is_real_key_ref(api_key_ref: "str | None") -> "bool":
    """
    returns True when the api key ref identifies an actual billed account.
    """
    return (api_key_ref or "").strip() not in PLACEHOLDER_KEY_REFS


def _finite_or_none(value: "Any") -> "float | None":
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class PricingMode(str, enum.Enum):
    NONE = "none"
    PER_REQUEST = "per_request"
    PACKAGE_TOTAL = "package_total"
    MONTHLY_FEE = "monthly_fee"


@dataclass(frozen=True, slots=True)
class UsageRow:
    """
    UsageRow is one provider/api-key usage line of a refresh cycle.
    Rows are snapshots: derived values are produced with
    dataclasses.replace, never by mutation.
    """

    provider: "str"
    api_key_ref: "str | None" = None
    requests: "int" = 0
    total_tokens: "int" = 0
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    pricing_source: "str | None" = None
    estimated_avg_request_cost_usd: "float | None" = None
    estimated_daily_cost_usd: "float | None" = None
    total_used_cost_usd: "float | None" = None
    usd_per_million_tokens: "float | None" = None

    @property
    def key(self) -> "tuple[str, str]":
        return (self.provider, (self.api_key_ref or "").strip() or "-")

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any]") -> "UsageRow":
        return cls(
            provider=str(data["provider"]),
            api_key_ref=data.get("api_key_ref"),
            requests=int(data.get("requests") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
            input_tokens=int(data.get("input_tokens") or 0),
            output_tokens=int(data.get("output_tokens") or 0),
            pricing_source=data.get("pricing_source"),
            estimated_avg_request_cost_usd=_finite_or_none(
                data.get("estimated_avg_request_cost_usd")
            ),
            estimated_daily_cost_usd=_finite_or_none(
                data.get("estimated_daily_cost_usd")
            ),
            total_used_cost_usd=_finite_or_none(data.get("total_used_cost_usd")),
            usd_per_million_tokens=_finite_or_none(data.get("usd_per_million_tokens")),
        )


@dataclass(frozen=True, slots=True)
class SchedulePeriod:
    """
    SchedulePeriod is one priced span of a provider's pricing timeline.
    """

    amount: "float"
    starts_at: "int"
    # unix ms; None means open-ended
    expires_at: "int | None" = None
    currency: "str" = "USD"
    # None inherits the mode of the owning PricingConfig
    mode: "PricingMode | None" = None
    id: "str" = ""
    api_key_ref: "str | None" = None

    def covers(self, instant_ms: "int") -> "bool":
        if self.starts_at > instant_ms:
            return False
        return self.expires_at is None or instant_ms < self.expires_at

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any]") -> "SchedulePeriod":
        mode = data.get("mode")
        expires_at = data.get("expires_at")
        return cls(
            amount=float(data["amount"]),
            starts_at=int(data["starts_at"]),
            expires_at=int(expires_at) if expires_at is not None else None,
            currency=str(data.get("currency") or "USD"),
            mode=PricingMode(mode) if mode else None,
            id=str(data.get("id") or ""),
            api_key_ref=data.get("api_key_ref"),
        )


@dataclass(frozen=True, slots=True)
class PricingConfig:
    mode: "PricingMode" = PricingMode.NONE
    schedule: "tuple[SchedulePeriod, ...]" = ()
    currency: "str" = "USD"
    # flat untimed amount, used when no period of the resolved mode exists
    amount: "float | None" = None

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any]") -> "PricingConfig":
        periods = [SchedulePeriod.from_dict(p) for p in data.get("schedule") or []]
        periods.sort(key=lambda p: p.starts_at)
        return cls(
            mode=PricingMode(data.get("mode") or "none"),
            schedule=tuple(periods),
            currency=str(data.get("currency") or "USD"),
            amount=_finite_or_none(data.get("amount")),
        )


@dataclass(frozen=True, slots=True)
class TimeRange:
    # unix ms, half-open [start_ms, end_ms)
    start_ms: "int"
    end_ms: "int"

    @property
    def reference_ms(self) -> "int":
        return self.start_ms

    @property
    def duration_ms(self) -> "int":
        return max(0, self.end_ms - self.start_ms)


@dataclass(frozen=True, slots=True)
class UsageAmount:
    requests: "int" = 0
    tokens: "int" = 0


@dataclass(frozen=True, slots=True)
class EffectiveCost:
    """
    EffectiveCost is the resolved USD cost of a usage window.
    usd is None when the price is unknown, which is distinct from 0.0.
    """

    mode: "PricingMode"
    usd: "float | None"
    source: "str"
    rate_usd: "float | None" = None


@dataclass(frozen=True, slots=True)
class SharedCostView:
    zeroed_keys: "frozenset[tuple[str, str]]"
    effective_daily: "dict[tuple[str, str], float | None]"
    effective_total: "dict[tuple[str, str], float | None]"


@dataclass(frozen=True, slots=True)
class ProviderDisplayGroup:
    id: "str"
    providers: "tuple[str, ...]"
    rows: "tuple[UsageRow, ...]"
    display_name: "str"
    detail_label: "str"
    requests: "int"
    total_tokens: "int"
    tokens_per_request: "float | None"
    estimated_avg_request_cost_usd: "float | None"
    usd_per_million_tokens: "float | None"
    effective_daily: "float | None"
    effective_total: "float | None"
    pricing_source: "str | None"


@dataclass(frozen=True, slots=True)
class TotalsAndAverages:
    total_requests: "int"
    total_tokens: "int"
    tokens_per_request: "float | None"
    avg_usd_per_request: "float | None"
    avg_usd_per_million: "float | None"
    avg_estimated_daily: "float | None"
    avg_total_used: "float | None"


@dataclass(frozen=True, slots=True)
class RequestRow:
    """
    RequestRow is a single request-level usage entry shown on the
    requests tab.
    """

    provider: "str"
    unix_ms: "int"
    api_key_ref: "str" = "-"
    model: "str" = ""
    origin: "str" = ""
    session_id: "str" = ""
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    total_tokens: "int" = 0
    cache_creation_input_tokens: "int" = 0
    cache_read_input_tokens: "int" = 0


@dataclass(frozen=True, slots=True)
class CacheEntry:
    query_key: "str"
    rows: "tuple[RequestRow, ...]" = field(default_factory=tuple)
    has_more: "bool" = False
    using_test_fallback: "bool" = False


@dataclass(frozen=True, slots=True)
class FetchWindow:
    # both None means unbounded
    from_unix_ms: "int | None" = None
    to_unix_ms: "int | None" = None

    @property
    def unbounded(self) -> "bool":
        return self.from_unix_ms is None and self.to_unix_ms is None
