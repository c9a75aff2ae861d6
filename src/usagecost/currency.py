import datetime as dt
import math
import re

from usagecost.ratios import safe_div

_CODE_RE = re.compile(r"^[A-Z]{3}$")

# shown first in currency pickers, in this order
PREFERRED_CURRENCIES: "tuple[str, ...]" = (
    "USD",
    "CNY",
    "EUR",
    "JPY",
    "GBP",
    "HKD",
    "SGD",
    "MYR",
)

_LOCAL_INPUT_FORMAT = "%Y-%m-%dT%H:%M"


def iso_currency_code(code: "str | None") -> "str | None":
    """
    returns the ISO code for user/config input, or None when it is not a
    three letter code. RMB is accepted as an alias of CNY.
    """
    raw = (code or "").strip().upper()
    if raw == "RMB":
        raw = "CNY"
    return raw if _CODE_RE.match(raw) else None


def normalize_currency_code(code: "str | None") -> "str":
    """
    normalizes a code for display and pickers; anything that is not a
    three letter code is shown as USD. Never use it to pick a rate.
    """
    return iso_currency_code(code) or "USD"


def currency_label(code: "str") -> "str":
    return "RMB" if code == "CNY" else code


def currency_rate(rates: "dict[str, float]", code: "str") -> "float | None":
    """
    returns units of `code` per 1 USD, or None when the code is not a
    valid ISO code or the table has no usable rate. USD is always 1.
    """
    norm = iso_currency_code(code)
    if norm is None:
        return None
    if norm == "USD":
        return 1.0
    rate = rates.get(norm)
    if rate is None or not math.isfinite(rate) or rate <= 0:
        return None
    return float(rate)


def convert_currency_to_usd(
    rates: "dict[str, float]",
    amount: "float",
    currency: "str",
) -> "float | None":
    return safe_div(amount, currency_rate(rates, currency))


def convert_usd_to_currency(
    rates: "dict[str, float]",
    usd_amount: "float",
    currency: "str",
) -> "float | None":
    rate = currency_rate(rates, currency)
    if rate is None:
        return None
    return usd_amount * rate


def convert_amount_between_currencies(
    rates: "dict[str, float]",
    amount: "float",
    from_currency: "str",
    to_currency: "str",
) -> "float | None":
    usd = convert_currency_to_usd(rates, amount, from_currency)
    if usd is None:
        return None
    return convert_usd_to_currency(rates, usd, to_currency)


def build_currency_options(rates: "dict[str, float]") -> "list[str]":
    codes = sorted({c.upper() for c in rates if _CODE_RE.match(c.upper())})
    head = [c for c in PREFERRED_CURRENCIES if c in codes]
    return head + [c for c in codes if c not in head]


def parse_positive_amount(text: "str | None") -> "float | None":
    """
    parses a user-typed amount. Blank, non-numeric, non-finite and
    non-positive input is rejected with None rather than clamped.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def format_draft_amount(value: "float | None") -> "str":
    if value is None or not math.isfinite(value) or value <= 0:
        return ""
    fixed = f"{value:.4f}"
    return fixed.rstrip("0").rstrip(".")


def to_datetime_local_value(
    unix_ms: "int | None",
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "str":
    if not unix_ms or unix_ms <= 0:
        return ""
    return dt.datetime.fromtimestamp(unix_ms / 1000, tz=tz).strftime(
        _LOCAL_INPUT_FORMAT
    )


def from_datetime_local_value(
    text: "str | None",
    tz: "dt.tzinfo" = dt.timezone.utc,
) -> "int | None":
    raw = (text or "").strip()
    if not raw:
        return None
    try:
        parsed = dt.datetime.strptime(raw, _LOCAL_INPUT_FORMAT)
    except ValueError:
        return None
    unix_ms = int(parsed.replace(tzinfo=tz).timestamp() * 1000)
    return unix_ms if unix_ms > 0 else None
