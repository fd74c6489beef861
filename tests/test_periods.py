from datetime import date, timedelta

import pytest

from attributionpivot.periods import MAX_PERIODS, find_period, format_period_label, generate_time_periods


TODAY = date(2024, 6, 1)


def _bounds(periods):
    return [(p.start_date, p.end_date) for p in periods]


def test_monthly_periods_clamp_to_range_and_run_oldest_first():
    periods = generate_time_periods(date(2024, 1, 15), date(2024, 3, 10), "monthly", today=TODAY)

    assert [p.key for p in periods] == ["period_0", "period_1", "period_2"]
    assert [p.label for p in periods] == ["Jan", "Feb", "Mar"]
    assert _bounds(periods) == [
        (date(2024, 1, 15), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 10)),
    ]


def test_monthly_label_carries_year_outside_current_year():
    periods = generate_time_periods(date(2023, 12, 1), date(2024, 1, 31), "monthly", today=TODAY)
    assert [p.label for p in periods] == ["Dec 2023", "Jan"]


def test_weekly_periods_are_seven_day_windows_ending_on_end_date():
    periods = generate_time_periods(date(2024, 1, 1), date(2024, 1, 14), "weekly", today=TODAY)
    assert _bounds(periods) == [
        (date(2024, 1, 1), date(2024, 1, 7)),
        (date(2024, 1, 8), date(2024, 1, 14)),
    ]
    assert [p.label for p in periods] == ["Jan 1-7", "Jan 8-14"]


def test_weekly_label_spanning_two_months():
    assert format_period_label(date(2024, 1, 29), date(2024, 2, 4), "weekly", today=TODAY) == "Jan 29 - Feb 4"


def test_biweekly_periods_split_on_the_fifteenth():
    periods = generate_time_periods(date(2024, 1, 10), date(2024, 2, 20), "biweekly", today=TODAY)
    assert _bounds(periods) == [
        (date(2024, 1, 10), date(2024, 1, 14)),
        (date(2024, 1, 15), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 14)),
        (date(2024, 2, 15), date(2024, 2, 20)),
    ]
    assert [p.label for p in periods] == ["Jan 10-14", "Jan 15-31", "Feb 1-14", "Feb 15-20"]


@pytest.mark.parametrize("period_type", ["weekly", "biweekly", "monthly"])
def test_periods_cover_the_range_without_gaps_or_overlap(period_type):
    start, end = date(2023, 11, 3), date(2024, 2, 17)
    periods = generate_time_periods(start, end, period_type, today=TODAY)

    assert periods[0].start_date == start
    assert periods[-1].end_date == end
    for prev, nxt in zip(periods, periods[1:]):
        assert nxt.start_date == prev.end_date + timedelta(days=1)
    for p in periods:
        assert p.start_date <= p.end_date


def test_period_count_is_capped():
    end = date(2024, 5, 31)
    periods = generate_time_periods(date(2020, 1, 1), end, "weekly", today=TODAY)

    assert len(periods) == MAX_PERIODS
    assert periods[-1].end_date == end
    assert periods[0].start_date > date(2020, 1, 1)


def test_end_before_start_yields_no_periods():
    assert generate_time_periods(date(2024, 3, 1), date(2024, 2, 1), "monthly", today=TODAY) == []


def test_single_day_range_yields_one_period():
    periods = generate_time_periods(date(2024, 3, 5), date(2024, 3, 5), "biweekly", today=TODAY)
    assert _bounds(periods) == [(date(2024, 3, 5), date(2024, 3, 5))]


def test_unknown_period_type_is_rejected():
    with pytest.raises(ValueError):
        generate_time_periods(date(2024, 1, 1), date(2024, 2, 1), "daily")


def test_find_period_and_to_dict():
    periods = generate_time_periods(date(2024, 1, 1), date(2024, 2, 29), "monthly", today=TODAY)

    assert find_period(periods, date(2024, 2, 10)).key == "period_1"
    assert find_period(periods, date(2024, 3, 1)) is None
    assert periods[0].to_dict() == {
        "key": "period_0",
        "label": "Jan",
        "start_date": "2024-01-01",
        "end_date": "2024-01-31",
    }
