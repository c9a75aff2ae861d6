import datetime as dt

import structlog

from usagecost.currency import convert_currency_to_usd
from usagecost.models import (
    EffectiveCost,
    PricingConfig,
    PricingMode,
    SchedulePeriod,
    TimeRange,
    UsageAmount,
)
from usagecost.ratios import safe_div

logger = structlog.get_logger()

DAY_MS = 24 * 60 * 60 * 1000
# open-ended packages and monthly fees are spread over a 30 day month
MONTH_MS = 30 * DAY_MS

FIXED_FEE_MODES: "frozenset[PricingMode]" = frozenset(
    {PricingMode.PACKAGE_TOTAL, PricingMode.MONTHLY_FEE}
)


def period_mode(period: "SchedulePeriod", config: "PricingConfig") -> "PricingMode":
    """
    a period keeps the mode it was saved with, so changing the provider's
    mode later does not reprice history.
    """
    return period.mode if period.mode is not None else config.mode


def active_period(
    config: "PricingConfig",
    instant_ms: "int",
    mode: "PricingMode | None" = None,
) -> "SchedulePeriod | None":
    """
    returns the schedule period covering instant_ms. Periods should never
    overlap; if they do, the one with the latest start not after the
    instant wins.
    """
    best: "SchedulePeriod | None" = None
    for period in config.schedule:
        if mode is not None and period_mode(period, config) != mode:
            continue
        if not period.covers(instant_ms):
            continue
        if best is None or period.starts_at >= best.starts_at:
            best = period
    return best


def resolve_mode_at(config: "PricingConfig", instant_ms: "int") -> "PricingMode":
    period = active_period(config, instant_ms)
    if period is not None:
        return period_mode(period, config)
    return config.mode


def _has_periods_of_mode(config: "PricingConfig", mode: "PricingMode") -> "bool":
    return any(period_mode(p, config) == mode for p in config.schedule)


def _allocation_base_ms(period: "SchedulePeriod", mode: "PricingMode") -> "int":
    if mode is PricingMode.PACKAGE_TOTAL and period.expires_at is not None:
        length = period.expires_at - period.starts_at
        if length > 0:
            return length
    return MONTH_MS


def _overlap_ms(
    start_ms: "int", end_ms: "int | None", window: "TimeRange"
) -> "int":
    overlap_start = max(start_ms, window.start_ms)
    overlap_end = window.end_ms if end_ms is None else min(end_ms, window.end_ms)
    return max(0, overlap_end - overlap_start)


def _per_request_cost(
    config: "PricingConfig",
    window: "TimeRange",
    usage: "UsageAmount",
    rates: "dict[str, float]",
) -> "EffectiveCost":
    mode = PricingMode.PER_REQUEST
    period = active_period(config, window.reference_ms, mode)
    if period is not None:
        amount, currency = period.amount, period.currency
        source = "scheduled_per_request"
    elif not _has_periods_of_mode(config, mode) and config.amount is not None:
        amount, currency = config.amount, config.currency
        source = "manual_per_request"
    else:
        logger.debug(
            "pricing_unresolved",
            mode=mode.value,
            reason="no_active_period",
        )
        return EffectiveCost(mode=mode, usd=None, source="scheduled_per_request")

    rate_usd = convert_currency_to_usd(rates, amount, currency)
    if rate_usd is None:
        logger.debug(
            "pricing_unresolved",
            mode=mode.value,
            reason="missing_fx_rate",
            currency=currency,
        )
        return EffectiveCost(mode=mode, usd=None, source=source)
    return EffectiveCost(
        mode=mode,
        usd=usage.requests * rate_usd,
        source=source,
        rate_usd=rate_usd,
    )


def _fixed_fee_cost(
    config: "PricingConfig",
    window: "TimeRange",
    mode: "PricingMode",
    rates: "dict[str, float]",
) -> "EffectiveCost":
    suffix = "total" if mode is PricingMode.PACKAGE_TOTAL else "monthly_fee"
    if not _has_periods_of_mode(config, mode):
        source = f"manual_package_{suffix}"
        if config.amount is None:
            return EffectiveCost(mode=mode, usd=None, source=source)
        fee_usd = convert_currency_to_usd(rates, config.amount, config.currency)
        if fee_usd is None:
            logger.debug(
                "pricing_unresolved",
                mode=mode.value,
                reason="missing_fx_rate",
                currency=config.currency,
            )
            return EffectiveCost(mode=mode, usd=None, source=source)
        share = safe_div(window.duration_ms, MONTH_MS) or 0.0
        return EffectiveCost(mode=mode, usd=fee_usd * share, source=source)

    source = f"scheduled_package_{suffix}"
    total = 0.0
    matched = False
    for period in config.schedule:
        if period_mode(period, config) != mode:
            continue
        overlap = _overlap_ms(period.starts_at, period.expires_at, window)
        if overlap <= 0:
            continue
        fee_usd = convert_currency_to_usd(rates, period.amount, period.currency)
        if fee_usd is None:
            logger.debug(
                "pricing_unresolved",
                mode=mode.value,
                reason="missing_fx_rate",
                currency=period.currency,
            )
            return EffectiveCost(mode=mode, usd=None, source=source)
        total += fee_usd * overlap / _allocation_base_ms(period, mode)
        matched = True

    if not matched:
        logger.debug(
            "pricing_unresolved",
            mode=mode.value,
            reason="no_overlapping_period",
        )
        return EffectiveCost(mode=mode, usd=None, source=source)
    return EffectiveCost(mode=mode, usd=total, source=source)


def resolve_effective_cost(
    config: "PricingConfig",
    window: "TimeRange",
    usage: "UsageAmount",
    rates: "dict[str, float] | None" = None,
) -> "EffectiveCost":
    """
    resolves what a usage window cost in USD under the pricing rule that
    was in force at the window's reference instant.

    - none: no price, usd is None with source "none".
    - per_request: requests times the rate active at the reference
      instant; None if no period covers it.
    - package_total / monthly_fee: each overlapping fee period is
      prorated by the milliseconds it shares with the window.

    A missing FX rate makes the cost unknown (None), never 1:1.
    """
    rates = rates or {}
    mode = resolve_mode_at(config, window.reference_ms)
    if mode is PricingMode.NONE:
        return EffectiveCost(mode=PricingMode.NONE, usd=None, source="none")
    if mode is PricingMode.PER_REQUEST:
        return _per_request_cost(config, window, usage, rates)
    if mode is PricingMode.PACKAGE_TOTAL or mode is PricingMode.MONTHLY_FEE:
        return _fixed_fee_cost(config, window, mode, rates)
    raise ValueError(f"unhandled pricing mode: {mode!r}")


def _day_bounds_ms(instant_ms: "int", tz: "dt.tzinfo") -> "tuple[str, int, int]":
    local = dt.datetime.fromtimestamp(instant_ms / 1000, tz=tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + dt.timedelta(days=1)
    return (
        start.strftime("%Y-%m-%d"),
        int(start.timestamp() * 1000),
        int(end.timestamp() * 1000),
    )


def package_total_by_day(
    config: "PricingConfig",
    window: "TimeRange",
    rates: "dict[str, float] | None" = None,
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "dict[str, float]":
    """
    splits fixed-fee cost inside window across calendar days in tz.
    Periods whose amount cannot be converted to USD are left out.
    """
    rates = rates or {}
    segments: "list[tuple[float, int, int | None, int]]" = []
    for mode in (PricingMode.PACKAGE_TOTAL, PricingMode.MONTHLY_FEE):
        for period in config.schedule:
            if period_mode(period, config) != mode:
                continue
            fee_usd = convert_currency_to_usd(rates, period.amount, period.currency)
            if fee_usd is None or fee_usd <= 0:
                continue
            segments.append(
                (
                    fee_usd,
                    period.starts_at,
                    period.expires_at,
                    _allocation_base_ms(period, mode),
                )
            )
    if not segments and config.mode in FIXED_FEE_MODES and config.amount is not None:
        fee_usd = convert_currency_to_usd(rates, config.amount, config.currency)
        if fee_usd is not None and fee_usd > 0:
            segments.append((fee_usd, window.start_ms, window.end_ms, MONTH_MS))

    by_day: "dict[str, float]" = {}
    for fee_usd, start_ms, end_ms, base_ms in segments:
        cursor = max(start_ms, window.start_ms)
        stop = window.end_ms if end_ms is None else min(end_ms, window.end_ms)
        while cursor < stop:
            day_key, _, day_end = _day_bounds_ms(cursor, tz)
            part_end = min(stop, day_end)
            share = fee_usd * (part_end - cursor) / base_ms
            by_day[day_key] = by_day.get(day_key, 0.0) + share
            cursor = part_end
    return dict(sorted(by_day.items()))
