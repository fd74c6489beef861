from __future__ import annotations

from datetime import date
from typing import Any


def parse_iso_date(value: str) -> date:
    return date.fromisoformat(str(value).strip()[:10])


def iso_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if s == "":
        return default
    try:
        return int(float(s))
    except ValueError:
        return default


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if s == "":
        return default
    try:
        return float(s)
    except ValueError:
        return default


def safe_div(n: float, d: float) -> float:
    # Rates are displayed, so a zero denominator reads as 0 rather than NaN.
    if not d:
        return 0.0
    return n / d


def round_money(value: float) -> float:
    return float(f"{value:.2f}")


def is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def is_present(value: Any) -> bool:
    """Tracking ids arrive as NULL, '' or the literal string 'null' when missing."""
    if value is None:
        return False
    s = str(value)
    return s != "" and s != "null"
