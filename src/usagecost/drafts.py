import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from usagecost.currency import (
    convert_currency_to_usd,
    convert_usd_to_currency,
    format_draft_amount,
    from_datetime_local_value,
    iso_currency_code,
    normalize_currency_code,
    parse_positive_amount,
    to_datetime_local_value,
)
from usagecost.errors import ScheduleValidationError
from usagecost.models import PricingMode, SchedulePeriod
from usagecost.pricing import MONTH_MS


@dataclass(frozen=True, slots=True)
class PricingDraft:
    """
    PricingDraft is an unsaved edit of a provider's pricing row.
    amount_text is kept exactly as typed.
    """

    mode: "PricingMode" = PricingMode.NONE
    amount_text: "str" = ""
    currency: "str" = "USD"

    def signature(self) -> "str":
        # "1.50" and "1.5 " are the same price
        return json.dumps(
            {
                "mode": self.mode.value,
                "amount": parse_positive_amount(self.amount_text),
                "currency": normalize_currency_code(self.currency),
            },
            sort_keys=True,
        )


def build_pricing_draft(
    mode: "PricingMode",
    amount_usd: "float | None",
    currency: "str",
    rates: "dict[str, float]",
) -> "PricingDraft":
    currency = normalize_currency_code(currency)
    amount_text = ""
    if amount_usd is not None and amount_usd > 0:
        amount = convert_usd_to_currency(rates, amount_usd, currency)
        amount_text = format_draft_amount(amount)
    return PricingDraft(mode=mode, amount_text=amount_text, currency=currency)


def resolve_pricing_amount_usd(
    draft: "PricingDraft",
    fallback_amount_usd: "float | None",
    rates: "dict[str, float]",
) -> "float | None":
    amount = parse_positive_amount(draft.amount_text)
    if amount is not None:
        return convert_currency_to_usd(rates, amount, draft.currency)
    if fallback_amount_usd is not None and fallback_amount_usd > 0:
        return fallback_amount_usd
    return None


@dataclass(frozen=True, slots=True)
class ScheduleDraft:
    provider: "str"
    mode: "PricingMode" = PricingMode.PACKAGE_TOTAL
    start_text: "str" = ""
    end_text: "str" = ""
    amount_text: "str" = ""
    currency: "str" = "USD"
    api_key_ref: "str" = ""
    id: "str" = ""
    group_providers: "tuple[str, ...]" = field(default_factory=tuple)

    def targets(self) -> "list[str]":
        out: "list[str]" = []
        for name in (self.provider, *self.group_providers):
            name = name.strip()
            if name and name not in out:
                out.append(name)
        return out

    def _signature_fields(self) -> "dict[str, str]":
        return {
            "id": self.id.strip(),
            "mode": self.mode.value,
            "api_key_ref": self.api_key_ref.strip(),
            "start": self.start_text.strip(),
            "end": self.end_text.strip(),
            "amount": self.amount_text.strip(),
            "currency": normalize_currency_code(self.currency),
        }


def schedule_signatures_by_provider(
    rows: "Sequence[ScheduleDraft]",
    provider_names: "Iterable[str] | None" = None,
) -> "dict[str, str]":
    """
    computes one order-insensitive signature per provider over the
    schedule rows that target it.
    """
    grouped: "dict[str, list[dict[str, str]]]" = {}
    for row in rows:
        for provider in row.targets():
            grouped.setdefault(provider, []).append(row._signature_fields())
    names = list(dict.fromkeys(provider_names)) if provider_names else list(grouped)
    out: "dict[str, str]" = {}
    for name in names:
        fields = sorted(
            grouped.get(name, []),
            key=lambda f: (f["start"], f["end"], f["id"]),
        )
        out[name] = json.dumps(fields, sort_keys=True)
    return out


def parse_schedule_rows_for_save(
    rows: "Sequence[ScheduleDraft]",
    rates: "dict[str, float]",
    key_label_for_provider: "Callable[[str], str]",
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "dict[str, list[SchedulePeriod]]":
    """
    validates schedule editor rows and converts them to USD periods per
    provider. Raises ScheduleValidationError with a user-facing reason on
    the first invalid row or on overlapping periods.
    """
    grouped: "dict[str, list[SchedulePeriod]]" = {}
    seen_by_provider: "dict[str, set[tuple]]" = {}
    key_periods: "set[tuple[str, int, int | None]]" = set()

    for row in rows:
        providers = row.targets()
        if not providers:
            raise ScheduleValidationError("provider is required")
        if row.mode not in (PricingMode.PACKAGE_TOTAL, PricingMode.PER_REQUEST):
            raise ScheduleValidationError("mode must be package total or per request")
        start = from_datetime_local_value(row.start_text, tz)
        end = from_datetime_local_value(row.end_text, tz)
        amount = parse_positive_amount(row.amount_text)
        if start is None or amount is None:
            raise ScheduleValidationError(
                "complete each row with valid start and amount"
            )
        if row.mode is PricingMode.PACKAGE_TOTAL and end is None:
            raise ScheduleValidationError("package total row requires expires time")
        if end is not None and start >= end:
            raise ScheduleValidationError("each row start must be earlier than expires")

        api_key_ref = row.api_key_ref.strip() or key_label_for_provider(providers[0])
        key_period = (api_key_ref, start, end)
        if api_key_ref != "-" and key_period in key_periods:
            raise ScheduleValidationError(
                f"duplicate start/expires for API key {api_key_ref}"
            )
        key_periods.add(key_period)

        amount_usd = convert_currency_to_usd(rates, amount, row.currency)
        if amount_usd is None:
            raise ScheduleValidationError(
                "no exchange rate for "
                f"{iso_currency_code(row.currency) or row.currency.strip()}"
            )
        dedupe_key = (row.mode, api_key_ref, start, end, round(amount_usd, 8))
        for provider in providers:
            seen = seen_by_provider.setdefault(provider, set())
            if dedupe_key in seen:
                continue
            seen.add(dedupe_key)
            grouped.setdefault(provider, []).append(
                SchedulePeriod(
                    amount=amount_usd,
                    starts_at=start,
                    expires_at=end,
                    currency="USD",
                    mode=row.mode,
                    id=row.id.strip(),
                    api_key_ref=api_key_ref,
                )
            )

    for provider, periods in grouped.items():
        periods.sort(key=lambda p: p.starts_at)
        for prev, cur in zip(periods, periods[1:]):
            if prev.expires_at is None or prev.expires_at > cur.starts_at:
                raise ScheduleValidationError(f"periods overlap for {provider}")
    return grouped


def schedule_draft_from_period(
    provider: "str",
    period: "SchedulePeriod",
    currency: "str",
    rates: "dict[str, float]",
    key_label_for_provider: "Callable[[str], str]",
    group_providers: "Sequence[str] | None" = None,
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "ScheduleDraft":
    currency = normalize_currency_code(currency)
    mode = (
        PricingMode.PER_REQUEST
        if period.mode is PricingMode.PER_REQUEST
        else PricingMode.PACKAGE_TOTAL
    )
    end_ms = period.expires_at
    if end_ms is None and mode is PricingMode.PACKAGE_TOTAL:
        end_ms = period.starts_at + MONTH_MS
    amount_usd = convert_currency_to_usd(rates, period.amount, period.currency)
    amount = None
    if amount_usd is not None:
        amount = convert_usd_to_currency(rates, amount_usd, currency)
    api_key_ref = (period.api_key_ref or "").strip() or key_label_for_provider(provider)
    return ScheduleDraft(
        provider=provider,
        mode=mode,
        start_text=to_datetime_local_value(period.starts_at, tz),
        end_text=to_datetime_local_value(end_ms, tz),
        amount_text=format_draft_amount(amount),
        currency=currency,
        api_key_ref=api_key_ref,
        id=period.id,
        group_providers=tuple(group_providers or (provider,)),
    )
