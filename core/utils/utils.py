# utils.py - Formatierung und Parsing für Beträge und Preise
import re
from typing import Any, Union

_SUFFIXES = (
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
)


def format_number(num: float, decimals: int = 2) -> str:
    """Compact number with K/M/B suffix: 1234567 -> '1.23M'."""
    for threshold, suffix in _SUFFIXES:
        if num >= threshold:
            return f"{num / threshold:.{decimals}f}{suffix}"
    return f"{num:.{decimals}f}"


def format_currency(num: float, decimals: int = 2) -> str:
    """
    Dollar amount with K/M/B suffix.

    Zero renders as '$0.00'; any non-zero magnitude below one cent as '<$0.01'.
    """
    if num == 0:
        return "$0.00"
    if abs(num) < 0.01:
        return "<$0.01"
    for threshold, suffix in _SUFFIXES:
        if num >= threshold:
            return f"${num / threshold:.{decimals}f}{suffix}"
    return f"${num:.{decimals}f}"


def calculate_percent_change(current: float, previous: float) -> float:
    """Percent change from previous to current; 0 when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def parse_token_amount(amount: Union[str, int, float]) -> float:
    """Accepts '1,234.5' style strings; numbers pass through."""
    if isinstance(amount, str):
        return float(amount.replace(",", ""))
    return float(amount)


_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def validate_number(value: Any) -> float:
    """
    Lenient float parse: leading numeric prefix of strings ('12.5abc' -> 12.5),
    0.0 for anything unparsable, NaN or None.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if value != value else float(value)
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return 0.0
    return float(match.group(0))
