import asyncio
import datetime as dt
import json
import sys
import time
from typing import Any

import structlog
from prometheus_client import CollectorRegistry, write_to_textfile

from usagecost.cli import parse_args
from usagecost.config import Config
from usagecost.currency import convert_usd_to_currency
from usagecost.currency_prefs import CurrencyPreferenceStore, InMemoryKeyValueStore
from usagecost.logging import setup_logging
from usagecost.metrics import CostMetrics
from usagecost.models import PricingConfig, TimeRange, UsageRow
from usagecost.pipeline import UsageCostPipeline, UsageReport
from usagecost.pricing import DAY_MS
from usagecost.provider.fx import CurrencyApiSource, parse_usd_rates

logger = structlog.get_logger()


def _load_json(path: "str") -> "Any":
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def _resolve_window(config: "Config") -> "TimeRange":
    end_ms = config.window_to_ms
    if end_ms is None:
        end_ms = int(time.time() * 1000)
    start_ms = config.window_from_ms
    if start_ms is None:
        start_ms = end_ms - DAY_MS
    return TimeRange(start_ms=start_ms, end_ms=end_ms)


async def _fetch_rates(config: "Config") -> "dict[str, float]":
    source = CurrencyApiSource(timeout=config.fx_timeout)
    try:
        today = dt.date.today().isoformat()
        fx = await source.fetch_latest(today)
    finally:
        await source.close()
    if fx is None:
        logger.warning("fx_unavailable", source=source.name)
        return {}
    logger.info("fx_loaded", source=source.name, date=fx.date, currencies=len(fx.rates))
    return fx.rates


def _load_rates(config: "Config") -> "dict[str, float]":
    if config.fx_rates_path:
        today = dt.date.today().isoformat()
        return parse_usd_rates(_load_json(config.fx_rates_path), today).rates
    if config.fx_fetch:
        return asyncio.run(_fetch_rates(config))
    return {}


def _report_with_display_currency(
    report: "UsageReport",
    preferences: "CurrencyPreferenceStore",
    rates: "dict[str, float]",
) -> "dict[str, Any]":
    out = report.to_dict()
    for group, data in zip(report.groups, out["groups"]):
        currency = preferences.read(group.providers[0], group.detail_label)
        total = group.effective_total
        data["display_currency"] = currency
        data["effective_total_display"] = (
            None if total is None else convert_usd_to_currency(rates, total, currency)
        )
    return out


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    snapshot = _load_json(config.snapshot_path)
    rows = [UsageRow.from_dict(r) for r in snapshot.get("rows") or []]
    pricing = {
        name: PricingConfig.from_dict(cfg)
        for name, cfg in (snapshot.get("pricing") or {}).items()
    }
    rates = _load_rates(config)
    window = _resolve_window(config)

    registry = CollectorRegistry()
    pipeline = UsageCostPipeline(metrics=CostMetrics(registry=registry))
    report = pipeline.build_report(rows, pricing, window, rates)

    preferences = config.currency_preferences(
        InMemoryKeyValueStore(snapshot.get("currency_preferences") or {})
    )
    out = _report_with_display_currency(report, preferences, rates)
    json.dump(out, sys.stdout, indent=2)
    sys.stdout.write("\n")

    if config.metrics_textfile:
        write_to_textfile(config.metrics_textfile, registry)
        logger.info("metrics_written", path=config.metrics_textfile)


if __name__ == "__main__":
    main()
