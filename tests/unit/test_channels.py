"""
Unit tests for channel aggregation, promotion expansion and mock feeds.
"""
import numpy as np
import pandas as pd
import pytest

from retail_mmm.data.channels import (
    FixtureFeed,
    build_channel_series,
    expand_promotions_daily,
    promotions_weekly,
    to_weekly,
)
from retail_mmm.data.mock_feeds import SeasonalMockFeed, default_mock_feeds
from retail_mmm.errors import SchemaError

pytestmark = pytest.mark.unit


class TestToWeekly:
    """Tests for daily-to-weekly aggregation"""

    def test_sums_days_into_monday_weeks(self):
        daily = pd.DataFrame({
            "date": pd.date_range("2010-03-01", periods=10, freq="D"),
            "value": [1.0] * 10,
        })
        weekly = to_weekly(daily, "search_spend")
        assert list(weekly.columns) == ["week_start", "search_spend"]
        assert list(weekly["week_start"]) == [pd.Timestamp("2010-03-01"), pd.Timestamp("2010-03-08")]
        assert weekly["search_spend"].tolist() == [7.0, 3.0]

    def test_gaps_produce_no_rows(self):
        daily = pd.DataFrame({"date": ["2010-03-01", "2010-03-22"], "value": [5.0, 6.0]})
        weekly = to_weekly(daily, "social_spend")
        assert len(weekly) == 2

    def test_max_aggregation(self):
        daily = pd.DataFrame({"date": ["2010-03-01", "2010-03-02"], "value": [0, 1]})
        weekly = to_weekly(daily, "promo_flag", how="max")
        assert weekly["promo_flag"].tolist() == [1]

    def test_missing_columns_raise(self):
        with pytest.raises(SchemaError):
            to_weekly(pd.DataFrame({"day": []}), "search_spend")

    def test_unknown_aggregation_rejected(self):
        daily = pd.DataFrame({"date": ["2010-03-01"], "value": [1.0]})
        with pytest.raises(ValueError):
            to_weekly(daily, "search_spend", how="mean")


class TestPromotions:
    """Tests for promotion calendar expansion"""

    def test_windows_are_inclusive(self):
        daily = expand_promotions_daily([{"name": "Summer Sale", "start_date": "2010-07-10", "end_date": "2010-07-16"}])
        assert len(daily) == 7
        assert (daily["promo_flag"] == 1).all()

    def test_overlapping_windows_give_distinct_days(self):
        daily = expand_promotions_daily([
            {"name": "a", "start_date": "2010-07-10", "end_date": "2010-07-12"},
            {"name": "b", "start_date": "2010-07-11", "end_date": "2010-07-13"},
        ])
        assert len(daily) == 4
        assert daily["date"].is_unique

    def test_reversed_window_covers_no_days(self):
        daily = expand_promotions_daily([{"name": "oops", "start_date": "2010-07-16", "end_date": "2010-07-10"}])
        assert daily.empty

    def test_weekly_flag_is_max_over_days(self):
        weekly = promotions_weekly([{"name": "Black Friday", "start_date": "2009-11-20", "end_date": "2009-11-26"}])
        # Fri 20 Nov falls in the week of Mon 16 Nov; Mon 23 opens the next week
        assert list(weekly["week_start"]) == [pd.Timestamp("2009-11-16"), pd.Timestamp("2009-11-23")]
        assert weekly["promo_flag"].tolist() == [1, 1]

    def test_empty_calendar(self):
        weekly = promotions_weekly([])
        assert weekly.empty
        assert list(weekly.columns) == ["week_start", "promo_flag"]


class TestFeeds:
    """Tests for fixture and mock feeds"""

    def test_fixture_feed_filters_to_range(self):
        feed = FixtureFeed(pd.DataFrame({
            "date": pd.date_range("2010-03-01", periods=10, freq="D"),
            "value": np.arange(10.0),
        }))
        daily = feed.daily("2010-03-03", "2010-03-05")
        assert daily["value"].tolist() == [2.0, 3.0, 4.0]

    def test_fixture_feed_requires_columns(self):
        with pytest.raises(SchemaError):
            FixtureFeed(pd.DataFrame({"date": []}))

    def test_mock_feed_is_reproducible_with_seed(self):
        a = SeasonalMockFeed(1000, 5000, 3000, 11000, seed=42).daily("2010-01-01", "2010-12-31")
        b = SeasonalMockFeed(1000, 5000, 3000, 11000, seed=42).daily("2010-01-01", "2010-12-31")
        pd.testing.assert_frame_equal(a, b)

    def test_mock_feed_holiday_uplift_ranges(self):
        daily = SeasonalMockFeed(1000, 5000, 3000, 11000, seed=1).daily("2010-01-01", "2010-12-31")
        holiday = daily["date"].dt.month.isin([11, 12])
        assert daily.loc[holiday, "value"].between(3000, 11000).all()
        assert daily.loc[~holiday, "value"].between(1000, 5000).all()

    def test_integer_mock_feed(self):
        daily = SeasonalMockFeed(500, 4500, 2000, 10000, seed=3, integer=True).daily("2010-11-01", "2010-11-30")
        assert (daily["value"] == np.floor(daily["value"])).all()

    def test_default_mock_feeds_cover_all_channels(self):
        feeds = default_mock_feeds(seed=7)
        assert set(feeds) == {"search_spend", "social_spend", "email_volume"}
        search = feeds["search_spend"].daily("2010-03-01", "2010-03-07")
        social = feeds["social_spend"].daily("2010-03-01", "2010-03-07")
        assert not np.allclose(search["value"], social["value"])

    def test_build_channel_series(self, fixture_feeds, spring_promotions):
        series = build_channel_series(fixture_feeds, spring_promotions, "2010-03-01", "2010-03-14")
        assert set(series) == {"search_spend", "social_spend", "email_volume", "promo_flag"}
        assert len(series["search_spend"]) == 2
        assert series["promo_flag"]["week_start"].tolist() == [pd.Timestamp("2010-03-08")]
