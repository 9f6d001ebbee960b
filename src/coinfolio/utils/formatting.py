"""Number formatting for money and percentages."""

from __future__ import annotations

import math
from typing import Optional, Union


def format_currency(
    value: Union[float, int, str, None],
    symbol: Optional[str] = "$",
    max_fraction_digits: int = 10,
    symbol_position: str = "start",
    use_grouping: bool = True,
) -> str:
    """
    Format a number with thousands grouping and trailing zeros trimmed.

    Args:
        value: Number (or numeric string). None or "" renders as "-".
        symbol: Currency symbol; omitted when falsy.
        max_fraction_digits: Maximum digits after the decimal point.
        symbol_position: "start" to prefix the symbol, "end" to suffix it.
        use_grouping: Insert "," thousands separators.

    Returns:
        Formatted string, e.g. format_currency(1234.5) == "$1,234.5".
        Non-finite or non-numeric values are returned as str(value).
    """
    if value is None or value == "":
        return "-"
    try:
        num = float(value)
    except (TypeError, ValueError):
        return str(value)
    if not math.isfinite(num):
        return str(value)

    spec = f"{',' if use_grouping else ''}.{max_fraction_digits}f"
    formatted = format(num, spec)
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    if formatted in ("-0", ""):
        formatted = "0"

    if symbol:
        if symbol_position == "start":
            if formatted.startswith("-"):
                return f"-{symbol}{formatted[1:]}"
            return f"{symbol}{formatted}"
        return f"{formatted}{symbol}"
    return formatted


def format_signed_pct(value: Optional[float], digits: int = 2) -> str:
    """``+12.34%`` / ``-5.00%``; "-" for None."""
    if value is None:
        return "-"
    return f"{'+' if value >= 0 else ''}{value:.{digits}f}%"
