import itertools

from usagecost.models import UsageRow
from usagecost.shared_cost import dedupe_shared_costs, is_shared_account_source


def _row(
    provider: "str",
    key: "str | None",
    requests: "int",
    total: "float | None",
    **kw: "object",
) -> "UsageRow":
    return UsageRow(
        provider=provider,
        api_key_ref=key,
        requests=requests,
        total_tokens=requests * 100,
        pricing_source=kw.pop("source", "manual_package_total"),
        total_used_cost_usd=total,
        estimated_daily_cost_usd=kw.pop("daily", None),
    )


class TestSharedAccountSource:
    def test_account_level_sources(self) -> "None":
        assert is_shared_account_source("manual_package_total")
        assert is_shared_account_source("scheduled_package_total")
        assert is_shared_account_source("token_rate")
        assert is_shared_account_source("provider_token_rate")
        assert is_shared_account_source("provider_budget_api_monthly")

    def test_per_request_and_none_never_dedupe(self) -> "None":
        assert not is_shared_account_source("manual_per_request")
        assert not is_shared_account_source("none")
        assert not is_shared_account_source(None)


class TestDedupeSharedCosts:
    def test_keeper_is_row_with_most_requests(self) -> "None":
        rows = [
            _row("alpha", "sk-1", 10, 30.0, daily=1.0),
            _row("beta", "sk-1", 50, 30.0, daily=1.0),
        ]
        view = dedupe_shared_costs(rows)
        assert view.zeroed_keys == {("alpha", "sk-1")}
        assert view.effective_total[("beta", "sk-1")] == 30.0
        assert view.effective_total[("alpha", "sk-1")] == 0.0
        assert view.effective_daily[("alpha", "sk-1")] == 0.0

    def test_tie_broken_by_provider_name(self) -> "None":
        rows = [
            _row("zeta", "sk-1", 5, 9.0),
            _row("eta", "sk-1", 5, 9.0),
        ]
        view = dedupe_shared_costs(rows)
        assert view.zeroed_keys == {("zeta", "sk-1")}

    def test_bucket_total_equals_keeper_cost_in_any_order(self) -> "None":
        rows = [
            _row("a", "sk-1", 3, 12.0),
            _row("b", "sk-1", 7, 12.0),
            _row("c", "sk-1", 7, 12.0),
        ]
        for perm in itertools.permutations(rows):
            view = dedupe_shared_costs(list(perm))
            bucket_total = sum(view.effective_total[r.key] for r in rows)
            assert bucket_total == 12.0
            assert len(view.zeroed_keys) == 2
            assert ("b", "sk-1") not in view.zeroed_keys

    def test_per_request_rows_are_not_deduped(self) -> "None":
        rows = [
            _row("a", "sk-1", 3, 4.0, source="manual_per_request"),
            _row("b", "sk-1", 7, 5.0, source="manual_per_request"),
        ]
        view = dedupe_shared_costs(rows)
        assert view.zeroed_keys == frozenset()
        assert view.effective_total[("a", "sk-1")] == 4.0
        assert view.effective_total[("b", "sk-1")] == 5.0

    def test_placeholder_keys_are_not_buckets(self) -> "None":
        rows = [_row("a", "-", 3, 4.0), _row("b", "-", 7, 5.0), _row("c", None, 1, 1.0)]
        view = dedupe_shared_costs(rows)
        assert view.zeroed_keys == frozenset()

    def test_non_finite_cost_passes_through_as_none(self) -> "None":
        rows = [_row("a", "sk-1", 3, float("nan")), _row("b", "sk-2", 1, None)]
        view = dedupe_shared_costs(rows)
        assert view.effective_total[("a", "sk-1")] is None
        assert view.effective_total[("b", "sk-2")] is None

    def test_counts_are_untouched(self) -> "None":
        rows = [_row("a", "sk-1", 3, 4.0), _row("b", "sk-1", 7, 4.0)]
        dedupe_shared_costs(rows)
        assert rows[0].requests == 3
        assert rows[0].total_used_cost_usd == 4.0
