import argparse

from usagecost.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="usagecost",
        description="Per-provider LLM usage cost report",
    )
    parser.add_argument(
        "--snapshot",
        dest="snapshot_path",
        required=True,
        help="JSON file with usage rows and pricing configs",
    )
    parser.add_argument(
        "--fx.rates",
        dest="fx_rates_path",
        default="",
        help="JSON file with a USD based rate table",
    )
    parser.add_argument(
        "--fx.fetch",
        dest="fx_fetch",
        action="store_true",
        help="Fetch the latest rate table when --fx.rates is not given",
    )
    parser.add_argument(
        "--window.from",
        dest="window_from_ms",
        type=int,
        default=None,
        help="Window start, unix ms (default: 24h before --window.to)",
    )
    parser.add_argument(
        "--window.to",
        dest="window_to_ms",
        type=int,
        default=None,
        help="Window end, unix ms (default: now)",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default="",
        help="Write Prometheus metrics to this textfile",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.snapshot_path = args.snapshot_path
    config.fx_rates_path = args.fx_rates_path
    config.fx_fetch = args.fx_fetch
    config.window_from_ms = args.window_from_ms
    config.window_to_ms = args.window_to_ms
    config.metrics_textfile = args.metrics_textfile
    config.log_level = args.log_level
    config.log_format = args.log_format
    return config
