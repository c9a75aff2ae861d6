import asyncio
import contextlib
import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, NamedTuple, Protocol, Sequence

import structlog

logger = structlog.get_logger()

DEFAULT_AUTOSAVE_DELAY_MS = 700


class AutoSaveKey(NamedTuple):
    """
    identifies one editable cell: the row (a provider, a provider group
    or a provider/day pair) and the field being edited.
    """

    row_key: "tuple[str, ...]"
    field: "str"


class Draft(Protocol):
    def signature(self) -> "str": ...


# save(targets, draft, field) -> True on success
SaveFn = Callable[["tuple[str, ...]", Any, str], Awaitable[bool]]


class SaveStatus(str, enum.Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    key: "AutoSaveKey"
    status: "SaveStatus"
    signature: "str"
    error: "str | None" = None

    @property
    def ok(self) -> "bool":
        return self.status is not SaveStatus.FAILED


class SignatureStore:
    """
    SignatureStore remembers the signature of the last draft each target
    successfully saved. One instance belongs to one controller.
    """

    def __init__(self, initial: "dict[str, str] | None" = None) -> "None":
        self._signatures: "dict[str, str]" = dict(initial or {})

    def get(self, target: "str") -> "str | None":
        return self._signatures.get(target)

    def set(self, target: "str", signature: "str") -> "None":
        self._signatures[target] = signature

    def forget(self, target: "str") -> "None":
        self._signatures.pop(target, None)

    def all_match(self, targets: "Sequence[str]", signature: "str") -> "bool":
        return bool(targets) and all(
            self._signatures.get(t) == signature for t in targets
        )


class _OutcomeRecorder(Protocol):
    def inc_autosave(self, status: "str") -> "None": ...


@dataclass(frozen=True, slots=True)
class _PendingSave:
    targets: "tuple[str, ...]"
    draft: "Any"
    signature: "str"


class AutoSaveController:
    """
    AutoSaveController debounces edits and writes them through the
    injected save collaborator.

    Each AutoSaveKey has at most one armed timer: queueing again resets
    it. The draft is captured when it is queued. Saves to the same
    target run one at a time in the order they were issued, so the last
    queued draft is the last one written. A draft is skipped only when it
    matches the newest signature issued for every target, or what every
    target last saved when nothing is in flight. The last-saved
    signature only advances after a successful save, so a failed save is
    retried on the next edit.
    """

    def __init__(
        self,
        save: "SaveFn",
        signatures: "SignatureStore | None" = None,
        delay_ms: "int" = DEFAULT_AUTOSAVE_DELAY_MS,
        metrics: "_OutcomeRecorder | None" = None,
    ) -> "None":
        self._save = save
        self._signatures = signatures if signatures is not None else SignatureStore()
        self._delay_ms = delay_ms
        self._metrics = metrics
        self._timers: "dict[AutoSaveKey, asyncio.TimerHandle]" = {}
        self._pending: "dict[AutoSaveKey, _PendingSave]" = {}
        self._drafts: "dict[AutoSaveKey, Any]" = {}
        self._base_drafts: "dict[AutoSaveKey, Any]" = {}
        self._outcomes: "dict[AutoSaveKey, SaveOutcome]" = {}
        self._issued: "dict[str, int]" = {}
        # target -> (seq, signature) of the newest issued save not yet done
        self._in_flight: "dict[str, tuple[int, str]]" = {}
        self._locks: "dict[str, asyncio.Lock]" = {}
        self._tasks: "set[asyncio.Task[SaveOutcome]]" = set()

    @property
    def signatures(self) -> "SignatureStore":
        return self._signatures

    @property
    def delay_ms(self) -> "int":
        return self._delay_ms

    @staticmethod
    def _default_targets(key: "AutoSaveKey") -> "tuple[str, ...]":
        return ("|".join(key.row_key),)

    def set_base_draft(self, key: "AutoSaveKey", draft: "Draft") -> "None":
        """
        records the last known good draft for key, the one an Escape
        restores.
        """
        self._base_drafts[key] = draft
        self._drafts.setdefault(key, draft)

    def draft(self, key: "AutoSaveKey") -> "Any":
        return self._drafts.get(key, self._base_drafts.get(key))

    def last_outcome(self, key: "AutoSaveKey") -> "SaveOutcome | None":
        return self._outcomes.get(key)

    def has_pending(self, key: "AutoSaveKey") -> "bool":
        return key in self._timers

    def queue_auto_save(
        self,
        key: "AutoSaveKey",
        draft: "Draft",
        targets: "Sequence[str] | None" = None,
    ) -> "None":
        """
        arms (or re-arms) the debounce timer for key. Must be called from
        inside a running event loop.
        """
        self._drafts[key] = draft
        resolved = tuple(targets) if targets else self._default_targets(key)
        signature = draft.signature()
        self.clear_auto_save_timer(key)
        if self._up_to_date(resolved, signature):
            self._record(SaveOutcome(key, SaveStatus.SKIPPED, signature))
            return
        self._pending[key] = _PendingSave(resolved, draft, signature)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._delay_ms / 1000, self._fire, key)
        logger.debug("autosave_queued", row_key=key.row_key, field=key.field)

    def clear_auto_save_timer(self, key: "AutoSaveKey") -> "bool":
        """
        cancels the pending save for key, if any. In-flight saves are not
        affected. Returns True when a timer was cancelled.
        """
        self._pending.pop(key, None)
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def clear_all(self) -> "None":
        for key in list(self._timers):
            self.clear_auto_save_timer(key)

    async def save_now(
        self,
        key: "AutoSaveKey",
        draft: "Draft | None" = None,
        targets: "Sequence[str] | None" = None,
    ) -> "SaveOutcome":
        """
        cancels the debounce timer for key and saves immediately, using
        draft if given, else the pending or current draft.
        """
        pending = self._pending.get(key)
        self.clear_auto_save_timer(key)
        if draft is None:
            draft = pending.draft if pending is not None else self.draft(key)
        if draft is None:
            raise KeyError(f"no draft for {key!r}")
        self._drafts[key] = draft
        if targets:
            resolved = tuple(targets)
        elif pending is not None:
            resolved = pending.targets
        else:
            resolved = self._default_targets(key)
        save = _PendingSave(resolved, draft, draft.signature())
        return await self._run_save(key, save, self._issue(save))

    def discard(self, key: "AutoSaveKey") -> "Any":
        """
        drops the edit for key and restores the base draft.
        """
        self.clear_auto_save_timer(key)
        base = self._base_drafts.get(key)
        if base is None:
            self._drafts.pop(key, None)
        else:
            self._drafts[key] = base
        return base

    async def wait_idle(self) -> "None":
        """
        waits until every in-flight save has finished.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _expected_signature(self, target: "str") -> "str | None":
        in_flight = self._in_flight.get(target)
        if in_flight is not None:
            return in_flight[1]
        return self._signatures.get(target)

    def _up_to_date(self, targets: "Sequence[str]", signature: "str") -> "bool":
        return bool(targets) and all(
            self._expected_signature(t) == signature for t in targets
        )

    def _issue(self, pending: "_PendingSave") -> "dict[str, int]":
        issued: "dict[str, int]" = {}
        for target in pending.targets:
            seq = self._issued.get(target, 0) + 1
            self._issued[target] = seq
            self._in_flight[target] = (seq, pending.signature)
            issued[target] = seq
        return issued

    def _settle(self, issued: "dict[str, int]") -> "None":
        for target, seq in issued.items():
            in_flight = self._in_flight.get(target)
            if in_flight is not None and in_flight[0] == seq:
                del self._in_flight[target]

    def _fire(self, key: "AutoSaveKey") -> "None":
        self._timers.pop(key, None)
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        issued = self._issue(pending)
        task = asyncio.get_running_loop().create_task(
            self._run_save(key, pending, issued)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_save(
        self,
        key: "AutoSaveKey",
        pending: "_PendingSave",
        issued: "dict[str, int]",
    ) -> "SaveOutcome":
        # taken in sorted order so overlapping target sets cannot deadlock
        locks = [
            self._locks.setdefault(t, asyncio.Lock())
            for t in sorted(set(pending.targets))
        ]
        try:
            async with contextlib.AsyncExitStack() as stack:
                for lock in locks:
                    await stack.enter_async_context(lock)
                return await self._write(key, pending)
        finally:
            self._settle(issued)

    async def _write(
        self, key: "AutoSaveKey", pending: "_PendingSave"
    ) -> "SaveOutcome":
        if self._signatures.all_match(pending.targets, pending.signature):
            return self._record(
                SaveOutcome(key, SaveStatus.SKIPPED, pending.signature)
            )

        try:
            ok = await self._save(pending.targets, pending.draft, key.field)
        except Exception as exc:
            logger.warning(
                "autosave_failed",
                row_key=key.row_key,
                field=key.field,
                error=str(exc),
            )
            return self._record(
                SaveOutcome(key, SaveStatus.FAILED, pending.signature, error=str(exc))
            )

        if not ok:
            logger.warning("autosave_rejected", row_key=key.row_key, field=key.field)
            return self._record(
                SaveOutcome(
                    key, SaveStatus.FAILED, pending.signature, error="save rejected"
                )
            )

        for target in pending.targets:
            self._signatures.set(target, pending.signature)
        logger.info("autosave_saved", row_key=key.row_key, field=key.field)
        return self._record(SaveOutcome(key, SaveStatus.SAVED, pending.signature))

    def _record(self, outcome: "SaveOutcome") -> "SaveOutcome":
        self._outcomes[outcome.key] = outcome
        if self._metrics is not None:
            self._metrics.inc_autosave(outcome.status.value)
        return outcome
