import os
from dataclasses import dataclass
from typing import Callable

from usagecost.autosave import DEFAULT_AUTOSAVE_DELAY_MS, AutoSaveController, SaveFn
from usagecost.currency_prefs import (
    DEFAULT_PREF_PREFIX,
    CurrencyPreferenceStore,
    KeyValueStore,
)
from usagecost.metrics import CostMetrics


@dataclass
class Config:
    log_level: "str" = "info"
    log_format: "str" = "console"
    # JSON file holding {"rows": [...], "pricing": {...}}
    snapshot_path: "str" = ""
    # JSON file holding a USD rate table; empty means USD only
    fx_rates_path: "str" = ""
    fx_fetch: "bool" = False
    fx_timeout: "float" = 10.0
    # unix ms; None falls back to the last 24h
    window_from_ms: "int | None" = None
    window_to_ms: "int | None" = None
    metrics_textfile: "str" = ""

    autosave_delay_ms: "int" = DEFAULT_AUTOSAVE_DELAY_MS
    currency_pref_prefix: "str" = DEFAULT_PREF_PREFIX

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            autosave_delay_ms=int(
                os.environ.get("USAGECOST_AUTOSAVE_DELAY_MS", DEFAULT_AUTOSAVE_DELAY_MS)
            ),
            currency_pref_prefix=os.environ.get(
                "USAGECOST_CURRENCY_PREF_PREFIX", DEFAULT_PREF_PREFIX
            ),
            fx_timeout=float(os.environ.get("USAGECOST_FX_TIMEOUT", 10.0)),
        )

    def autosave_controller(
        self,
        save: "SaveFn",
        metrics: "CostMetrics | None" = None,
    ) -> "AutoSaveController":
        return AutoSaveController(
            save, delay_ms=self.autosave_delay_ms, metrics=metrics
        )

    def currency_preferences(
        self,
        store: "KeyValueStore",
        key_label_for_provider: "Callable[[str], str] | None" = None,
    ) -> "CurrencyPreferenceStore":
        return CurrencyPreferenceStore(
            store,
            prefix=self.currency_pref_prefix,
            key_label_for_provider=key_label_for_provider,
        )
