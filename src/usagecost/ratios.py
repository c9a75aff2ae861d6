import math


def safe_div(
    numerator: "float | int | None",
    denominator: "float | int | None",
) -> "float | None":
    """
    divides numerator by denominator, returning None instead of raising
    or producing inf/nan. Every ratio in the package goes through here.
    """
    if numerator is None or denominator is None:
        return None
    if not math.isfinite(numerator) or not math.isfinite(denominator):
        return None
    if denominator == 0:
        return None
    return numerator / denominator
