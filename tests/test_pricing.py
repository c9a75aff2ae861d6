import pytest

from usagecost.models import (
    PricingConfig,
    PricingMode,
    SchedulePeriod,
    TimeRange,
    UsageAmount,
)
from usagecost.pricing import (
    active_period,
    package_total_by_day,
    resolve_effective_cost,
)

DAY_MS = 24 * 60 * 60 * 1000
# 2026-02-01T00:00:00Z
FEB_1 = 1_769_904_000_000


def _day(n: "int") -> "TimeRange":
    return TimeRange(start_ms=FEB_1 + n * DAY_MS, end_ms=FEB_1 + (n + 1) * DAY_MS)


class TestNoneMode:
    def test_no_cost_and_none_source(self) -> "None":
        cost = resolve_effective_cost(
            PricingConfig(), _day(0), UsageAmount(requests=10)
        )
        assert cost.mode is PricingMode.NONE
        assert cost.usd is None
        assert cost.source == "none"


class TestPerRequest:
    def test_rate_times_requests(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(SchedulePeriod(amount=0.5, starts_at=FEB_1),),
        )
        cost = resolve_effective_cost(config, _day(1), UsageAmount(requests=100))
        assert cost.usd == 50.0
        assert cost.rate_usd == 0.5
        assert cost.source == "scheduled_per_request"

    def test_converts_non_usd_rate(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(SchedulePeriod(amount=1.0, starts_at=FEB_1, currency="EUR"),),
        )
        cost = resolve_effective_cost(
            config, _day(0), UsageAmount(requests=3), rates={"EUR": 0.5}
        )
        assert cost.rate_usd == 2.0
        assert cost.usd == 6.0

    def test_missing_fx_rate_is_unknown(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(SchedulePeriod(amount=1.0, starts_at=FEB_1, currency="JPY"),),
        )
        cost = resolve_effective_cost(
            config, _day(0), UsageAmount(requests=3), rates={}
        )
        assert cost.usd is None

    def test_uncovered_instant_is_unknown_not_free(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(SchedulePeriod(amount=0.5, starts_at=FEB_1 + 5 * DAY_MS),),
        )
        cost = resolve_effective_cost(config, _day(0), UsageAmount(requests=10))
        assert cost.usd is None

    def test_expired_period_is_unknown(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(
                SchedulePeriod(amount=0.5, starts_at=FEB_1, expires_at=FEB_1 + DAY_MS),
            ),
        )
        cost = resolve_effective_cost(config, _day(3), UsageAmount(requests=10))
        assert cost.usd is None

    def test_flat_amount_without_schedule(self) -> "None":
        config = PricingConfig(mode=PricingMode.PER_REQUEST, amount=0.25)
        cost = resolve_effective_cost(config, _day(0), UsageAmount(requests=8))
        assert cost.usd == 2.0
        assert cost.source == "manual_per_request"

    def test_overlapping_periods_latest_start_wins(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(
                SchedulePeriod(amount=1.0, starts_at=FEB_1),
                SchedulePeriod(amount=2.0, starts_at=FEB_1 + DAY_MS),
            ),
        )
        period = active_period(config, FEB_1 + 2 * DAY_MS)
        assert period is not None and period.amount == 2.0
        cost = resolve_effective_cost(config, _day(2), UsageAmount(requests=1))
        assert cost.usd == 2.0


class TestFixedFee:
    def test_package_prorated_over_its_period(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PACKAGE_TOTAL,
            schedule=(
                SchedulePeriod(
                    amount=30.0, starts_at=FEB_1, expires_at=FEB_1 + 30 * DAY_MS
                ),
            ),
        )
        cost = resolve_effective_cost(config, _day(3), UsageAmount())
        assert cost.usd == pytest.approx(1.0)
        assert cost.source == "scheduled_package_total"

    def test_window_spanning_period_boundary_sums_both(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PACKAGE_TOTAL,
            schedule=(
                SchedulePeriod(
                    amount=10.0, starts_at=FEB_1, expires_at=FEB_1 + 10 * DAY_MS
                ),
                SchedulePeriod(
                    amount=20.0,
                    starts_at=FEB_1 + 10 * DAY_MS,
                    expires_at=FEB_1 + 20 * DAY_MS,
                ),
            ),
        )
        window = TimeRange(start_ms=FEB_1 + 9 * DAY_MS, end_ms=FEB_1 + 11 * DAY_MS)
        cost = resolve_effective_cost(config, window, UsageAmount())
        assert cost.usd == pytest.approx(3.0)

    def test_mode_change_is_not_retroactive(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PER_REQUEST,
            schedule=(
                SchedulePeriod(
                    amount=10.0,
                    starts_at=FEB_1,
                    expires_at=FEB_1 + 10 * DAY_MS,
                    mode=PricingMode.PACKAGE_TOTAL,
                ),
                SchedulePeriod(
                    amount=0.5,
                    starts_at=FEB_1 + 10 * DAY_MS,
                    mode=PricingMode.PER_REQUEST,
                ),
            ),
        )
        before = resolve_effective_cost(config, _day(2), UsageAmount(requests=4))
        after = resolve_effective_cost(config, _day(12), UsageAmount(requests=4))
        assert before.mode is PricingMode.PACKAGE_TOTAL
        assert before.usd == pytest.approx(1.0)
        assert after.mode is PricingMode.PER_REQUEST
        assert after.usd == 2.0

    def test_open_monthly_fee_uses_thirty_day_month(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.MONTHLY_FEE,
            schedule=(SchedulePeriod(amount=30.0, starts_at=FEB_1),),
        )
        window = TimeRange(start_ms=FEB_1, end_ms=FEB_1 + 2 * DAY_MS)
        cost = resolve_effective_cost(config, window, UsageAmount())
        assert cost.usd == pytest.approx(2.0)
        assert cost.source == "scheduled_package_monthly_fee"

    def test_flat_package_amount(self) -> "None":
        config = PricingConfig(mode=PricingMode.PACKAGE_TOTAL, amount=60.0)
        cost = resolve_effective_cost(config, _day(0), UsageAmount())
        assert cost.usd == pytest.approx(2.0)
        assert cost.source == "manual_package_total"

    def test_missing_fx_rate_is_unknown(self) -> "None":
        config = PricingConfig(
            mode=PricingMode.PACKAGE_TOTAL,
            schedule=(
                SchedulePeriod(
                    amount=30.0,
                    starts_at=FEB_1,
                    expires_at=FEB_1 + 30 * DAY_MS,
                    currency="GBP",
                ),
            ),
        )
        cost = resolve_effective_cost(
            config, _day(0), UsageAmount(), rates={"EUR": 0.9}
        )
        assert cost.usd is None

    def test_every_mode_is_handled(self) -> "None":
        for mode in PricingMode:
            cost = resolve_effective_cost(
                PricingConfig(mode=mode, amount=1.0), _day(0), UsageAmount(requests=1)
            )
            assert cost.mode is mode


class TestPackageTotalByDay:
    def test_splits_across_calendar_days(self) -> "None":
        half_day = DAY_MS // 2
        config = PricingConfig(
            mode=PricingMode.PACKAGE_TOTAL,
            schedule=(
                SchedulePeriod(
                    amount=10.0,
                    starts_at=FEB_1 + half_day,
                    expires_at=FEB_1 + half_day + 10 * DAY_MS,
                ),
            ),
        )
        window = TimeRange(start_ms=FEB_1, end_ms=FEB_1 + 2 * DAY_MS)
        by_day = package_total_by_day(config, window)
        assert list(by_day) == ["2026-02-01", "2026-02-02"]
        assert by_day["2026-02-01"] == pytest.approx(0.5)
        assert by_day["2026-02-02"] == pytest.approx(1.0)

    def test_no_fixed_fee_is_empty(self) -> "None":
        config = PricingConfig(mode=PricingMode.PER_REQUEST, amount=1.0)
        assert package_total_by_day(config, _day(0)) == {}
