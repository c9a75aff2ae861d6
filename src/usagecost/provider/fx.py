import math
import re

import httpx
import structlog

from usagecost.provider.base import FxRates

logger = structlog.get_logger()

# mirrors of the same dataset, tried in order
FX_ENDPOINTS: "tuple[str, ...]" = (
    "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest"
    "/v1/currencies/usd.json",
    "https://latest.currency-api.pages.dev/v1/currencies/usd.json",
)

_CODE_RE = re.compile(r"^[A-Z]{3}$")


def parse_usd_rates(payload: "dict", today: "str") -> "FxRates":
    """
    keeps three letter codes with finite, positive rates. USD is always 1.
    """
    rates: "dict[str, float]" = {"USD": 1.0}
    for code, value in (payload.get("usd") or {}).items():
        norm = str(code).strip().upper()
        if not _CODE_RE.match(norm) or norm == "USD":
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value) or value <= 0:
            continue
        rates[norm] = float(value)
    date = str(payload.get("date") or today)[:10]
    return FxRates(date=date, rates=rates)


class CurrencyApiSource:
    """
    CurrencyApiSource fetches the latest USD rate table from the public
    currency-api dataset, falling through its mirrors on any failure.
    """

    def __init__(
        self,
        endpoints: "tuple[str, ...]" = FX_ENDPOINTS,
        timeout: "float" = 10.0,
    ) -> "None":
        self._endpoints = endpoints
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers={"Cache-Control": "no-store"},
        )

    @property
    def name(self) -> "str":
        return "currency-api"

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_latest(self, today: "str") -> "FxRates | None":
        for endpoint in self._endpoints:
            try:
                resp = await self._client.get(endpoint)
                if resp.status_code != 200:
                    logger.debug(
                        "fx_endpoint_status", endpoint=endpoint, status=resp.status_code
                    )
                    continue
                payload = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("fx_fetch_failed", endpoint=endpoint, error=str(exc))
                continue
            if not isinstance(payload, dict):
                continue
            fx = parse_usd_rates(payload, today)
            logger.debug("fx_fetch_done", endpoint=endpoint, currencies=len(fx.rates))
            return fx
        return None
