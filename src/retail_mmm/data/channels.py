from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Union

import pandas as pd

from retail_mmm.errors import SchemaError
from retail_mmm.utils.dates import WEEK_START_DAY, week_start
from retail_mmm.utils.logging import get_logger

logger = get_logger(__name__)

FEED_COLUMNS = ["date", "value"]
PROMOTION_COLUMNS = ["name", "start_date", "end_date"]


# =============================
# Feeds
# =============================
class ChannelFeed(ABC):
    """Source of daily activity for one marketing channel."""

    @abstractmethod
    def daily(self, start, end) -> pd.DataFrame:
        """Return columns ``date`` and ``value`` for every available day in [start, end]."""


class FixtureFeed(ChannelFeed):
    """Feed backed by a fixed table (a platform export or a test fixture)."""

    def __init__(self, frame: pd.DataFrame):
        missing = [c for c in FEED_COLUMNS if c not in frame.columns]
        if missing:
            raise SchemaError(missing, "channel feed")
        self.frame = frame[FEED_COLUMNS].assign(date=pd.to_datetime(frame["date"]).dt.normalize())

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "FixtureFeed":
        return cls(pd.read_csv(path))

    def daily(self, start, end) -> pd.DataFrame:
        start, end = pd.Timestamp(start).normalize(), pd.Timestamp(end).normalize()
        mask = (self.frame["date"] >= start) & (self.frame["date"] <= end)
        return self.frame[mask].reset_index(drop=True)


# =============================
# Weekly aggregation
# =============================
def to_weekly(
    daily: pd.DataFrame,
    out_col: str,
    date_col: str = "date",
    value_col: str = "value",
    how: str = "sum",
    start_day: str = WEEK_START_DAY,
) -> pd.DataFrame:
    """
    Aggregate a daily channel feed to the weekly grain.

    Parameters
    ----------
    daily:
        Daily rows with `date_col` and `value_col`.
    out_col:
        Name of the weekly metric column (e.g. "search_spend").
    how:
        "sum" for spend/volume feeds, "max" for flags.

    Returns
    -------
    pd.DataFrame
        Columns ["week_start", out_col], sorted by week. Weeks without any
        daily row are absent; the assembler fills them.
    """
    missing = [c for c in (date_col, value_col) if c not in daily.columns]
    if missing:
        raise SchemaError(missing, f"{out_col} feed")
    if how not in ("sum", "max"):
        raise ValueError(f"Unsupported weekly aggregation {how!r}")

    d = pd.DataFrame(
        {
            "week_start": week_start(daily[date_col], start_day),
            out_col: pd.to_numeric(daily[value_col], errors="raise"),
        }
    )
    weekly = d.groupby("week_start", sort=True)[out_col].agg(how).reset_index()
    return weekly


def weekly_from_feed(
    feed: ChannelFeed,
    out_col: str,
    start,
    end,
    start_day: str = WEEK_START_DAY,
) -> pd.DataFrame:
    daily = feed.daily(start, end)
    weekly = to_weekly(daily, out_col, start_day=start_day)
    logger.info(
        "Aggregated channel feed",
        extra={"channel": out_col, "daily_rows": len(daily), "weeks": len(weekly)},
    )
    return weekly


# =============================
# Promotions
# =============================
def read_promotions(path: Union[str, Path]) -> pd.DataFrame:
    promos = pd.read_csv(path)
    missing = [c for c in PROMOTION_COLUMNS if c not in promos.columns]
    if missing:
        raise SchemaError(missing, "promotion calendar")
    return promos[PROMOTION_COLUMNS]


def expand_promotions_daily(promotions: Union[pd.DataFrame, Iterable[Mapping]]) -> pd.DataFrame:
    """
    Expand promotion windows into distinct daily flags.

    Windows are inclusive on both ends. A window whose end precedes its
    start covers no days. Overlapping windows yield one row per day.
    """
    promos = pd.DataFrame(list(promotions) if not isinstance(promotions, pd.DataFrame) else promotions)
    if promos.empty:
        return pd.DataFrame({"date": pd.Series(dtype="datetime64[ns]"), "promo_flag": pd.Series(dtype="int64")})

    missing = [c for c in ("start_date", "end_date") if c not in promos.columns]
    if missing:
        raise SchemaError(missing, "promotion calendar")

    days: List[pd.Timestamp] = []
    for row in promos.itertuples(index=False):
        start = pd.Timestamp(row.start_date).normalize()
        end = pd.Timestamp(row.end_date).normalize()
        if end < start:
            logger.warning(
                "Promotion window ends before it starts",
                extra={"promotion": getattr(row, "name", None), "start_date": str(start.date()), "end_date": str(end.date())},
            )
            continue
        days.extend(pd.date_range(start, end, freq="D"))

    daily = pd.DataFrame({"date": pd.DatetimeIndex(days)}).drop_duplicates().sort_values("date")
    daily["promo_flag"] = 1
    return daily.reset_index(drop=True)


def promotions_weekly(promotions, start_day: str = WEEK_START_DAY) -> pd.DataFrame:
    """Weekly promo flag: 1 if any day of the week falls inside a promotion."""
    daily = expand_promotions_daily(promotions)
    if daily.empty:
        return pd.DataFrame({"week_start": pd.Series(dtype="datetime64[ns]"), "promo_flag": pd.Series(dtype="int64")})
    return to_weekly(daily, "promo_flag", value_col="promo_flag", how="max", start_day=start_day)


def build_channel_series(
    feeds: Mapping[str, ChannelFeed],
    promotions,
    start,
    end,
    start_day: str = WEEK_START_DAY,
) -> Dict[str, pd.DataFrame]:
    """Weekly series for every feed (keyed by output column) plus ``promo_flag``."""
    series = {
        col: weekly_from_feed(feed, col, start, end, start_day=start_day)
        for col, feed in feeds.items()
    }
    series["promo_flag"] = promotions_weekly(promotions, start_day=start_day)
    return series
