import httpx
import pytest
import respx

from usagecost.provider.fx import CurrencyApiSource, parse_usd_rates

PRIMARY = "https://fx.example/primary/usd.json"
MIRROR = "https://fx.example/mirror/usd.json"


class TestParseUsdRates:
    def test_keeps_valid_codes_only(self) -> "None":
        fx = parse_usd_rates(
            {
                "date": "2026-02-22",
                "usd": {
                    "eur": 0.92,
                    "cny": 7.2,
                    "usd": 3.0,
                    "btc": 0.0,
                    "1inch": 4.0,
                    "xyz": "n/a",
                    "jpy": True,
                },
            },
            today="2026-02-23",
        )
        assert fx.date == "2026-02-22"
        assert fx.rates == {"USD": 1.0, "EUR": 0.92, "CNY": 7.2}

    def test_date_defaults_to_today(self) -> "None":
        assert parse_usd_rates({"usd": {}}, today="2026-02-23").date == "2026-02-23"


class TestCurrencyApiSource:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_from_first_endpoint(self) -> "None":
        respx.get(PRIMARY).mock(
            return_value=httpx.Response(
                200, json={"date": "2026-02-22", "usd": {"eur": 0.9}}
            )
        )
        source = CurrencyApiSource(endpoints=(PRIMARY, MIRROR))
        try:
            fx = await source.fetch_latest("2026-02-22")
        finally:
            await source.close()
        assert source.name == "currency-api"
        assert fx is not None
        assert fx.rates["EUR"] == 0.9

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_through_to_mirror(self) -> "None":
        respx.get(PRIMARY).mock(return_value=httpx.Response(503))
        mirror = respx.get(MIRROR).mock(
            return_value=httpx.Response(200, json={"usd": {"gbp": 0.8}})
        )
        source = CurrencyApiSource(endpoints=(PRIMARY, MIRROR))
        try:
            fx = await source.fetch_latest("2026-02-22")
        finally:
            await source.close()
        assert mirror.called
        assert fx is not None
        assert fx.date == "2026-02-22"
        assert fx.rates == {"USD": 1.0, "GBP": 0.8}

    @pytest.mark.asyncio
    @respx.mock
    async def test_all_endpoints_failing_returns_none(self) -> "None":
        respx.get(PRIMARY).mock(side_effect=httpx.ConnectError("down"))
        respx.get(MIRROR).mock(return_value=httpx.Response(200, text="not json"))
        source = CurrencyApiSource(endpoints=(PRIMARY, MIRROR))
        try:
            assert await source.fetch_latest("2026-02-22") is None
        finally:
            await source.close()
