"""
Seeded stand-ins for ad-platform exports.

Used only when no real feed is supplied. Daily values are uniform draws,
with a higher range in the holiday months (November and December).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd

from retail_mmm.data.channels import ChannelFeed

HOLIDAY_MONTHS = (11, 12)


@dataclass
class SeasonalMockFeed(ChannelFeed):
    low: float
    high: float
    holiday_low: float
    holiday_high: float
    seed: Optional[int] = None
    integer: bool = False

    def daily(self, start, end) -> pd.DataFrame:
        dates = pd.date_range(pd.Timestamp(start).normalize(), pd.Timestamp(end).normalize(), freq="D")
        rng = np.random.default_rng(self.seed)
        draws = rng.random(len(dates))
        holiday = dates.month.isin(HOLIDAY_MONTHS)
        values = np.where(
            holiday,
            draws * (self.holiday_high - self.holiday_low) + self.holiday_low,
            draws * (self.high - self.low) + self.low,
        )
        values = np.floor(values) if self.integer else np.round(values, 2)
        return pd.DataFrame({"date": dates, "value": values})


def default_mock_feeds(seed: Optional[int] = None) -> Dict[str, ChannelFeed]:
    """Mock feeds for search, social and email, each with its own derived seed."""
    seeds = np.random.SeedSequence(seed).generate_state(3) if seed is not None else [None] * 3
    return {
        "search_spend": SeasonalMockFeed(1000, 5000, 3000, 11000, seed=_seed(seeds[0])),
        "social_spend": SeasonalMockFeed(800, 3800, 2000, 8000, seed=_seed(seeds[1])),
        "email_volume": SeasonalMockFeed(500, 4500, 2000, 10000, seed=_seed(seeds[2]), integer=True),
    }


def _seed(value) -> Optional[int]:
    return None if value is None else int(value)
