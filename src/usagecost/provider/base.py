from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class FxRates:
    """
    FxRates is a USD-based rate table: units of each currency per 1 USD.
    """

    date: "str"
    rates: "dict[str, float]"


class RateSource(Protocol):
    """
    RateSource is the protocol FX collaborators satisfy. The pricing core
    only ever receives the resulting rate table.
    """

    @property
    def name(self) -> "str": ...

    async def fetch_latest(self, today: "str") -> "FxRates | None": ...

    async def close(self) -> "None": ...
