"""Calendar-aligned period buckets for rate pivots.

Periods are generated backward from the end date and returned oldest first.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from attributionpivot.util import iso_date


PERIOD_TYPES: tuple[str, ...] = ("weekly", "biweekly", "monthly")
MAX_PERIODS = 52


@dataclass(frozen=True)
class TimePeriodColumn:
    key: str
    label: str
    start_date: date
    end_date: date

    def contains(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "start_date": iso_date(self.start_date),
            "end_date": iso_date(self.end_date),
        }


def _window_start(end: date, period_type: str) -> date:
    if period_type == "weekly":
        return end - timedelta(days=6)
    if period_type == "biweekly":
        return end.replace(day=15) if end.day >= 15 else end.replace(day=1)
    if period_type == "monthly":
        return end.replace(day=1)
    raise ValueError(f"period_type must be one of: {', '.join(PERIOD_TYPES)}")


def _previous_end(start: date, period_type: str) -> date:
    if period_type == "biweekly" and start.day == 15:
        return start.replace(day=14)
    return start - timedelta(days=1)


def format_period_label(start: date, end: date, period_type: str, *, today: date | None = None) -> str:
    current_year = (today or date.today()).year
    if period_type == "monthly":
        label = start.strftime("%b")
        return label if start.year == current_year else f"{label} {start.year}"
    if start.month == end.month:
        return f"{start.strftime('%b')} {start.day}-{end.day}"
    return f"{start.strftime('%b')} {start.day} - {end.strftime('%b')} {end.day}"


def generate_time_periods(
    start: date,
    end: date,
    period_type: str,
    *,
    today: date | None = None,
    max_periods: int = MAX_PERIODS,
) -> list[TimePeriodColumn]:
    if period_type not in PERIOD_TYPES:
        raise ValueError(f"period_type must be one of: {', '.join(PERIOD_TYPES)}")

    windows: list[tuple[date, date]] = []
    current_end = end
    while current_end >= start and len(windows) < max_periods:
        window_start = _window_start(current_end, period_type)
        clamped = window_start <= start
        if clamped:
            window_start = start
        windows.append((window_start, current_end))
        if clamped:
            break
        current_end = _previous_end(window_start, period_type)

    windows.reverse()
    return [
        TimePeriodColumn(
            key=f"period_{i}",
            label=format_period_label(s, e, period_type, today=today),
            start_date=s,
            end_date=e,
        )
        for i, (s, e) in enumerate(windows)
    ]


def find_period(periods: Sequence[TimePeriodColumn], d: date) -> TimePeriodColumn | None:
    for p in periods:
        if p.contains(d):
            return p
    return None
