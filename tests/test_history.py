import pytest

from usagecost.errors import HistoryEditError, PersistenceError
from usagecost.history import (
    HistoryDraft,
    HistoryField,
    HistoryRow,
    HistoryUpdate,
    build_history_update,
    clear_history_entry,
    format_history_source,
    history_draft_from_row,
    history_effective_display_value,
    history_per_req_display_value,
    save_history_edit,
)


@pytest.fixture
def row() -> "HistoryRow":
    return HistoryRow.from_dict(
        {
            "provider": "alpha",
            "day_key": "2026-02-01",
            "req_count": 4,
            "tracked_total_usd": 1.0,
            "scheduled_total_usd": 2.0,
        }
    )


class TestDisplayValues:
    def test_effective_falls_back_to_component_sum(self, row: "HistoryRow") -> "None":
        assert history_effective_display_value(row) == 3.0

    def test_effective_prefers_stored_value(self) -> "None":
        row = HistoryRow(
            "alpha", "2026-02-01", effective_total_usd=9.0, tracked_total_usd=1.0
        )
        assert history_effective_display_value(row) == 9.0

    def test_empty_row(self) -> "None":
        row = HistoryRow("alpha", "2026-02-01")
        assert history_effective_display_value(row) is None
        assert history_per_req_display_value(row) is None

    def test_per_req_derived_from_effective(self, row: "HistoryRow") -> "None":
        assert history_per_req_display_value(row) == 0.75

    def test_draft_from_row(self, row: "HistoryRow") -> "None":
        assert history_draft_from_row(row) == HistoryDraft("3", "0.75")


class TestBuildHistoryUpdate:
    def test_effective_stores_delta_over_floor(self, row: "HistoryRow") -> "None":
        draft = HistoryDraft(effective_text="5", per_req_text="")
        update = build_history_update(row, draft)
        assert update == HistoryUpdate(
            "alpha", "2026-02-01", total_used_usd=2.0, usd_per_req=None
        )

    def test_unchanged_within_tolerance(self, row: "HistoryRow") -> "None":
        with pytest.raises(HistoryEditError, match="no history change to save"):
            build_history_update(row, HistoryDraft(effective_text="3.0001"))

    def test_blank_input_is_no_change(self, row: "HistoryRow") -> "None":
        with pytest.raises(HistoryEditError, match="no history change to save"):
            build_history_update(row, HistoryDraft(effective_text=""))

    def test_below_floor_rejected(self) -> "None":
        row = HistoryRow(
            "alpha",
            "2026-02-01",
            tracked_total_usd=1.0,
            scheduled_total_usd=2.0,
            effective_total_usd=4.0,
        )
        with pytest.raises(HistoryEditError) as exc:
            build_history_update(row, HistoryDraft(effective_text="2.5"))
        assert (
            exc.value.reason
            == "effective cost cannot be lower than tracked + scheduled"
        )

    def test_back_to_floor_clears_manual_amount(self) -> "None":
        row = HistoryRow(
            "alpha",
            "2026-02-01",
            tracked_total_usd=1.0,
            scheduled_total_usd=2.0,
            effective_total_usd=4.0,
        )
        update = build_history_update(row, HistoryDraft(effective_text="3"))
        assert update.total_used_usd is None

    def test_per_request_edit(self, row: "HistoryRow") -> "None":
        draft = HistoryDraft(per_req_text="0.5")
        update = build_history_update(row, draft, HistoryField.PER_REQ)
        assert update == HistoryUpdate(
            "alpha", "2026-02-01", total_used_usd=None, usd_per_req=0.5
        )

    def test_per_request_unchanged(self, row: "HistoryRow") -> "None":
        with pytest.raises(HistoryEditError):
            build_history_update(
                row, HistoryDraft(per_req_text="0.75"), HistoryField.PER_REQ
            )


class TestHistoryDraftSignature:
    def test_formatting_does_not_change_signature(self) -> "None":
        formatted = HistoryDraft("3.50", "")
        assert formatted.signature() == HistoryDraft(" 3.5", "x").signature()


@pytest.mark.parametrize(
    "source, label",
    [
        (None, "none"),
        ("none", "none"),
        ("manual_total", "manual"),
        ("manual_per_request", "manual"),
        ("tracked+manual_total", "tracked+manual"),
        ("scheduled_package_total", "scheduled"),
        ("token_rate", "token_rate"),
    ],
)
def test_format_history_source(source: "str | None", label: "str") -> "None":
    assert format_history_source(source) == label


class RecordingStore:
    def __init__(self, error: "Exception | None" = None) -> "None":
        self.updates: "list[HistoryUpdate]" = []
        self.error = error

    async def set_entry(self, update: "HistoryUpdate") -> "None":
        if self.error is not None:
            raise self.error
        self.updates.append(update)


class TestHistoryPersistence:
    @pytest.mark.asyncio
    async def test_save_writes_update(self, row: "HistoryRow") -> "None":
        store = RecordingStore()
        update = await save_history_edit(store, row, HistoryDraft(effective_text="4"))
        assert store.updates == [update]
        assert update.total_used_usd == 1.0

    @pytest.mark.asyncio
    async def test_rejected_edit_writes_nothing(self, row: "HistoryRow") -> "None":
        store = RecordingStore()
        with pytest.raises(HistoryEditError):
            await save_history_edit(store, row, HistoryDraft(effective_text="1"))
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_clear_sends_empty_update(self) -> "None":
        store = RecordingStore()
        await clear_history_entry(store, "alpha", "2026-02-01")
        assert store.updates == [HistoryUpdate("alpha", "2026-02-01", None, None)]

    @pytest.mark.asyncio
    async def test_store_failure_is_persistence_error(self) -> "None":
        store = RecordingStore(error=OSError("disk full"))
        with pytest.raises(
            PersistenceError, match="history write failed for alpha 2026-02-01"
        ):
            await clear_history_entry(store, "alpha", "2026-02-01")
