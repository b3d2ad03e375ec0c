"""Numeric helpers shared by validation and analytics."""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any


def parse_number(value: Any) -> float | None:
    """Parse a numeric form value, returning None for anything non-numeric.

    Booleans are rejected even though they are ints in Python.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def normalize_number(number: float) -> int | float:
    """Return an int for whole numbers so 4.0 reads as 4."""
    if math.isfinite(number) and number == int(number):
        return int(number)
    return number


def round_half_up(value: float, digits: int = 0) -> int | float:
    """Round like a spreadsheet does (0.5 goes up), not banker's rounding."""
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    if digits == 0:
        return int(rounded)
    return float(rounded)


def percentage(count: int, total: int) -> int:
    """Whole-number percentage of ``count`` over ``total`` (0 when total is 0)."""
    if total == 0:
        return 0
    return round_half_up(count / total * 100)


def median(numbers: list[float]) -> float:
    """Median; the two middle values are averaged for even-sized input."""
    if not numbers:
        raise ValueError("median() of an empty sequence")
    ordered = sorted(numbers)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def format_file_size(size_bytes: int | float) -> str:
    """Human-readable size using binary (1024) units."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    exponent = 0
    while size_bytes >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    scaled = round(size_bytes / 1024**exponent, 2)
    text = f"{scaled:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[exponent]}"
