import enum
import json
import math
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import structlog

from usagecost.currency import format_draft_amount, parse_positive_amount
from usagecost.errors import HistoryEditError, PersistenceError
from usagecost.ratios import safe_div

logger = structlog.get_logger()

# amounts closer than this are treated as unchanged
_TOLERANCE_USD = 0.0005


class HistoryField(str, enum.Enum):
    EFFECTIVE = "effective"
    PER_REQ = "per_req"


def _positive(value: "float | None") -> "float | None":
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return value


@dataclass(frozen=True, slots=True)
class HistoryRow:
    """
    HistoryRow is one provider-day of the spend history.
    """

    provider: "str"
    day_key: "str"
    req_count: "int" = 0
    tracked_total_usd: "float | None" = None
    scheduled_total_usd: "float | None" = None
    manual_total_usd: "float | None" = None
    manual_usd_per_req: "float | None" = None
    effective_total_usd: "float | None" = None
    effective_usd_per_req: "float | None" = None
    source: "str | None" = None

    @property
    def key(self) -> "tuple[str, str]":
        return (self.provider, self.day_key)

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any]") -> "HistoryRow":
        return cls(
            provider=str(data["provider"]),
            day_key=str(data["day_key"]),
            req_count=int(data.get("req_count") or 0),
            tracked_total_usd=data.get("tracked_total_usd"),
            scheduled_total_usd=data.get("scheduled_total_usd"),
            manual_total_usd=data.get("manual_total_usd"),
            manual_usd_per_req=data.get("manual_usd_per_req"),
            effective_total_usd=data.get("effective_total_usd"),
            effective_usd_per_req=data.get("effective_usd_per_req"),
            source=data.get("source"),
        )


@dataclass(frozen=True, slots=True)
class HistoryDraft:
    effective_text: "str" = ""
    per_req_text: "str" = ""

    def signature(self) -> "str":
        return json.dumps(
            {
                "effective": parse_positive_amount(self.effective_text),
                "per_req": parse_positive_amount(self.per_req_text),
            },
            sort_keys=True,
        )


@dataclass(frozen=True, slots=True)
class HistoryUpdate:
    """
    HistoryUpdate is the payload for the store's set-entry call.
    """

    provider: "str"
    day_key: "str"
    total_used_usd: "float | None"
    usd_per_req: "float | None"


def history_effective_display_value(row: "HistoryRow") -> "float | None":
    effective = _positive(row.effective_total_usd)
    if effective is not None:
        return effective
    total = sum(
        v or 0.0
        for v in (row.tracked_total_usd, row.scheduled_total_usd, row.manual_total_usd)
    )
    return total if total > 0 else None


def history_per_req_display_value(row: "HistoryRow") -> "float | None":
    for value in (row.effective_usd_per_req, row.manual_usd_per_req):
        if _positive(value) is not None:
            return value
    if row.req_count <= 0:
        return None
    return safe_div(history_effective_display_value(row), row.req_count)


def history_draft_from_row(row: "HistoryRow") -> "HistoryDraft":
    return HistoryDraft(
        effective_text=format_draft_amount(history_effective_display_value(row)),
        per_req_text=format_draft_amount(history_per_req_display_value(row)),
    )


def _changed(draft: "float | None", current: "float | None") -> "bool":
    if draft is None:
        return False
    return current is None or abs(draft - current) >= _TOLERANCE_USD


def build_history_update(
    row: "HistoryRow",
    draft: "HistoryDraft",
    field: "HistoryField" = HistoryField.EFFECTIVE,
) -> "HistoryUpdate":
    """
    turns an edited history cell into a store update.

    An effective total is stored as the manual amount on top of tracked
    plus scheduled spend, so it may not go below that floor. Raises
    HistoryEditError when the edit is rejected or changes nothing.
    """
    if field is HistoryField.PER_REQ:
        per_req = parse_positive_amount(draft.per_req_text)
        if not _changed(per_req, history_per_req_display_value(row)):
            raise HistoryEditError("no history change to save")
        return HistoryUpdate(
            row.provider, row.day_key, total_used_usd=None, usd_per_req=per_req
        )

    effective = parse_positive_amount(draft.effective_text)
    if not _changed(effective, history_effective_display_value(row)):
        raise HistoryEditError("no history change to save")
    floor = (row.tracked_total_usd or 0.0) + (row.scheduled_total_usd or 0.0)
    if effective < floor - _TOLERANCE_USD:
        raise HistoryEditError(
            "effective cost cannot be lower than tracked + scheduled"
        )
    delta = effective - floor
    return HistoryUpdate(
        row.provider,
        row.day_key,
        total_used_usd=delta if delta > _TOLERANCE_USD else None,
        usd_per_req=None,
    )


def format_history_source(source: "str | None") -> "str":
    if not source or source == "none":
        return "none"
    if source in ("manual_per_request", "manual_total"):
        return "manual"
    if source in ("tracked+manual_per_request", "tracked+manual_total"):
        return "tracked+manual"
    if source == "scheduled_package_total":
        return "scheduled"
    return source


class HistoryStore(Protocol):
    """
    HistoryStore is the persistence collaborator for spend history. An
    update with both amounts None clears the manual entry.
    """

    async def set_entry(self, update: "HistoryUpdate") -> "None": ...


async def save_history_edit(
    store: "HistoryStore",
    row: "HistoryRow",
    draft: "HistoryDraft",
    field: "HistoryField" = HistoryField.EFFECTIVE,
) -> "HistoryUpdate":
    """
    validates the edit and writes it. HistoryEditError is raised before
    anything is written; store failures surface as PersistenceError.
    """
    update = build_history_update(row, draft, field)
    await _write(store, update)
    logger.info(
        "history_saved",
        provider=row.provider,
        day_key=row.day_key,
        field=field.value,
    )
    return update


async def clear_history_entry(
    store: "HistoryStore",
    provider: "str",
    day_key: "str",
) -> "HistoryUpdate":
    update = HistoryUpdate(provider, day_key, total_used_usd=None, usd_per_req=None)
    await _write(store, update)
    logger.info("history_cleared", provider=provider, day_key=day_key)
    return update


async def _write(store: "HistoryStore", update: "HistoryUpdate") -> "None":
    try:
        await store.set_entry(update)
    except PersistenceError:
        raise
    except Exception as exc:
        logger.warning(
            "history_write_failed",
            provider=update.provider,
            day_key=update.day_key,
            error=str(exc),
        )
        raise PersistenceError(
            f"history write failed for {update.provider} {update.day_key}"
        ) from exc
