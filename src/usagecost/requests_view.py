import datetime as dt
import json
from dataclasses import dataclass
from typing import Iterable, Sequence

import structlog

from usagecost.models import CacheEntry, FetchWindow, RequestRow
from usagecost.pricing import DAY_MS

logger = structlog.get_logger()


def _normalized_set(values: "Iterable[str] | None") -> "list[str] | None":
    if values is None:
        return None
    return sorted({v.strip() for v in values if v and v.strip()})


def build_request_query_key(
    providers: "Iterable[str] | None" = None,
    models: "Iterable[str] | None" = None,
    origins: "Iterable[str] | None" = None,
    from_unix_ms: "int | None" = None,
    to_unix_ms: "int | None" = None,
    hours: "int | None" = None,
    limit: "int | None" = None,
    offset: "int" = 0,
) -> "str":
    """
    encodes every filter dimension of a request page query. Filter sets
    are order-insensitive; None (no filter) and an empty set stay
    distinct.
    """
    return json.dumps(
        {
            "providers": _normalized_set(providers),
            "models": _normalized_set(models),
            "origins": _normalized_set(origins),
            "from": from_unix_ms,
            "to": to_unix_ms,
            "hours": hours,
            "limit": limit,
            "offset": offset,
        },
        sort_keys=True,
        separators=(",", ":"),
    )


def resolve_request_page_cached(
    is_requests_tab: "bool",
    has_strict_request_query: "bool",
    cached: "CacheEntry | None",
    canonical_cached: "CacheEntry | None",
    last_non_empty: "CacheEntry | None" = None,
    request_query_key: "str | None" = None,
) -> "CacheEntry | None":
    """
    picks the cached request page that may be rendered for the current
    scope, or None when a refetch is required.

    On the requests tab only the exact-scope entry is acceptable; when a
    strict query is active and request_query_key is given it must match
    the entry's key. Other views may fall back to the canonical entry and
    then to the last non-empty page.
    """
    if is_requests_tab:
        if cached is None:
            logger.debug("request_cache_miss", strict=has_strict_request_query)
            return None
        if (
            has_strict_request_query
            and request_query_key is not None
            and cached.query_key != request_query_key
        ):
            logger.debug(
                "request_cache_scope_mismatch",
                cached=cached.query_key,
                requested=request_query_key,
            )
            return None
        return cached
    if cached is not None:
        return cached
    if canonical_cached is not None:
        return canonical_cached
    return last_non_empty


def resolve_summary_fetch_window(
    request_default_day: "int",
    rows_for_request_render: "Sequence[RequestRow]",
    request_fetch_from_unix_ms: "int | None" = None,
    request_fetch_to_unix_ms: "int | None" = None,
    has_explicit_request_filters: "bool" = False,
) -> "FetchWindow":
    """
    decides the window of the requests summary. Explicit filters win as
    given. Otherwise the default day is used only when a rendered row
    falls inside it; a day-scoped summary that excludes every visible
    row would disagree with the table, so it widens to unbounded.
    """
    if request_fetch_from_unix_ms is not None or has_explicit_request_filters:
        return FetchWindow(request_fetch_from_unix_ms, request_fetch_to_unix_ms)
    day_end = request_default_day + DAY_MS
    if any(request_default_day <= r.unix_ms < day_end for r in rows_for_request_render):
        return FetchWindow(request_default_day, day_end)
    return FetchWindow(None, None)


@dataclass(frozen=True, slots=True)
class RequestSummary:
    requests: "int"
    input_tokens: "int"
    output_tokens: "int"
    total_tokens: "int"
    cache_creation_input_tokens: "int"
    cache_read_input_tokens: "int"


def resolve_request_table_summary(
    backend_summary: "RequestSummary | None",
    displayed_rows: "Sequence[RequestRow]",
    has_more: "bool",
    prefer_backend_summary: "bool" = True,
) -> "RequestSummary | None":
    """
    uses the backend summary when there is one; sums the rendered rows
    only when every page is loaded, since partial sums would understate
    the totals.
    """
    if prefer_backend_summary and backend_summary is not None:
        return backend_summary
    if has_more:
        return None
    return RequestSummary(
        requests=len(displayed_rows),
        input_tokens=sum(r.input_tokens for r in displayed_rows),
        output_tokens=sum(r.output_tokens for r in displayed_rows),
        total_tokens=sum(r.total_tokens for r in displayed_rows),
        cache_creation_input_tokens=sum(
            r.cache_creation_input_tokens for r in displayed_rows
        ),
        cache_read_input_tokens=sum(r.cache_read_input_tokens for r in displayed_rows),
    )


@dataclass(frozen=True, slots=True)
class DailyRequestTotals:
    day_start_unix_ms: "int"
    total_requests: "int" = 0
    total_tokens: "int" = 0
    windows_request_count: "int" = 0
    wsl_request_count: "int" = 0


@dataclass(frozen=True, slots=True)
class CalendarIndex:
    days_with_records: "frozenset[int]"
    # day start -> (windows, wsl)
    day_origin_flags: "dict[int, tuple[bool, bool]]"


def day_start_ms(unix_ms: "int", tz: "dt.tzinfo" = dt.timezone.utc) -> "int":
    local = dt.datetime.fromtimestamp(unix_ms / 1000, tz=tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(start.timestamp() * 1000)


def build_request_calendar_index(
    is_requests_tab: "bool",
    rows_for_request_render: "Sequence[RequestRow]",
    daily_totals: "Sequence[DailyRequestTotals]",
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "CalendarIndex":
    """
    marks calendar days that have requests, from the materialized daily
    totals and from the rows on screen. Days with requests but no origin
    breakdown are flagged as windows.
    """
    if not is_requests_tab:
        return CalendarIndex(days_with_records=frozenset(), day_origin_flags={})

    flags: "dict[int, tuple[bool, bool]]" = {}

    def mark(day: "int", win: "bool", wsl: "bool") -> "None":
        prev_win, prev_wsl = flags.get(day, (False, False))
        flags[day] = (prev_win or win, prev_wsl or wsl)

    for totals in daily_totals:
        if totals.total_requests <= 0 and totals.total_tokens <= 0:
            continue
        win = totals.windows_request_count > 0
        wsl = totals.wsl_request_count > 0
        if not win and not wsl:
            win = True
        mark(totals.day_start_unix_ms, win, wsl)

    for row in rows_for_request_render:
        origin = row.origin.strip().lower()
        mark(day_start_ms(row.unix_ms, tz), origin != "wsl2", origin == "wsl2")

    return CalendarIndex(days_with_records=frozenset(flags), day_origin_flags=flags)


def classify_cache_decision(
    picked: "CacheEntry | None",
    cached: "CacheEntry | None",
    canonical_cached: "CacheEntry | None",
) -> "str":
    """
    names which entry resolve_request_page_cached returned, for metrics.
    """
    if picked is None:
        return "miss"
    if picked is cached:
        return "exact"
    if picked is canonical_cached:
        return "canonical"
    return "last_non_empty"
