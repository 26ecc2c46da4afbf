from __future__ import annotations

import pandas as pd

# Day that opens a reporting week. Monday matches ISO weeks and SQL DATE_TRUNC('week').
WEEK_START_DAY = "MON"

_DAYS = ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]


def _period_alias(start_day: str) -> str:
    # pandas weekly periods are anchored on the day the week ENDS
    day = start_day.upper()
    if day not in _DAYS:
        raise ValueError(f"Unknown week start day {start_day!r}; expected one of {_DAYS}.")
    end_day = _DAYS[(_DAYS.index(day) - 1) % 7]
    return f"W-{end_day}"


def week_start(values: pd.Series, start_day: str = WEEK_START_DAY) -> pd.Series:
    """Truncate timestamps to the midnight that opens their week."""
    ts = pd.to_datetime(values)
    return ts.dt.to_period(_period_alias(start_day)).dt.start_time
