from __future__ import annotations

from typing import Dict, List, Mapping

import numpy as np
import pandas as pd

from retail_mmm.config import CHANNEL_COLS
from retail_mmm.errors import AssemblyError, SchemaError
from retail_mmm.utils.logging import get_logger

logger = get_logger(__name__)

REVENUE_COLS = ["weekly_revenue", "orders", "customers"]
SEASONALITY_COLS = ["week_of_year", "month", "year", "is_holiday_season", "is_q4"]
MODEL_INPUT_COLS = ["week_start"] + REVENUE_COLS + CHANNEL_COLS + SEASONALITY_COLS

HOLIDAY_MONTHS = (11, 12)
Q4_MONTHS = (10, 11, 12)


def derive_seasonality(weeks: pd.Series) -> pd.DataFrame:
    """
    Calendar features keyed on the week start.

    week_of_year is the ISO week; month and year are those of the week's
    first day, so a week opening on 30 Dec belongs to December.
    """
    ws = pd.to_datetime(pd.Series(weeks)).reset_index(drop=True)
    month = ws.dt.month.astype("int64")
    return pd.DataFrame(
        {
            "week_start": ws,
            "week_of_year": ws.dt.isocalendar().week.astype("int64").to_numpy(),
            "month": month,
            "year": ws.dt.year.astype("int64"),
            "is_holiday_season": month.isin(HOLIDAY_MONTHS).astype("int64"),
            "is_q4": month.isin(Q4_MONTHS).astype("int64"),
        }
    )


def assemble_model_input(
    weekly_revenue: pd.DataFrame,
    channels: Mapping[str, pd.DataFrame],
    channel_cols: List[str] = CHANNEL_COLS,
) -> pd.DataFrame:
    """
    Join revenue, channel and calendar signals into one row per week.

    Parameters
    ----------
    weekly_revenue:
        Output of `aggregate_weekly_revenue`.
    channels:
        Weekly series keyed by column name, each with ["week_start", name].
        Channels missing from the mapping are treated as having no activity.
    channel_cols:
        Channel columns the table must carry.

    Returns
    -------
    pd.DataFrame
        `MODEL_INPUT_COLS`, one row per week from the first to the last
        revenue week.

    Notes
    -----
    - The week calendar is rebuilt from the revenue span, so revenue gaps
      come back as rows with zero revenue/orders/customers.
    - Channel weeks outside the revenue span are dropped.
    - Missing channel values are zero, never null.
    """
    missing = [c for c in ["week_start"] + REVENUE_COLS if c not in weekly_revenue.columns]
    if missing:
        raise SchemaError(missing, "weekly revenue")
    if weekly_revenue.empty:
        raise AssemblyError("Weekly revenue is empty; nothing to assemble.")

    rev = weekly_revenue.assign(week_start=pd.to_datetime(weekly_revenue["week_start"]))
    if rev["week_start"].duplicated().any():
        dupes = rev.loc[rev["week_start"].duplicated(), "week_start"].tolist()
        raise AssemblyError(f"Weekly revenue has repeated weeks: {[str(w.date()) for w in dupes]}")

    calendar = pd.DataFrame(
        {"week_start": pd.date_range(rev["week_start"].min(), rev["week_start"].max(), freq="7D")}
    )
    if not rev["week_start"].isin(calendar["week_start"]).all():
        raise AssemblyError("Weekly revenue keys are not aligned to a single week boundary.")

    table = calendar.merge(rev, on="week_start", how="left")
    gap_weeks = int(table["weekly_revenue"].isna().sum())

    outside_span: Dict[str, int] = {}
    for col in channel_cols:
        series = channels.get(col)
        if series is None:
            table[col] = np.nan
            continue
        if col not in series.columns or "week_start" not in series.columns:
            raise SchemaError([c for c in ("week_start", col) if c not in series.columns], f"{col} weekly series")
        s = series[["week_start", col]].assign(week_start=pd.to_datetime(series["week_start"]))
        if s["week_start"].duplicated().any():
            raise AssemblyError(f"{col} weekly series has repeated weeks.")
        outside_span[col] = int((~s["week_start"].isin(calendar["week_start"])).sum())
        table = table.merge(s, on="week_start", how="left")

    filled: Dict[str, object] = {c: 0 for c in REVENUE_COLS + list(channel_cols)}
    join_gaps = {c: int(table[c].isna().sum()) for c in channel_cols}
    table = table.fillna(filled)
    table["orders"] = table["orders"].astype("int64")
    table["customers"] = table["customers"].astype("int64")
    table["weekly_revenue"] = table["weekly_revenue"].astype(float)
    for col in channel_cols:
        table[col] = table[col].astype("int64" if col == "promo_flag" else float)

    seasonality = derive_seasonality(table["week_start"])
    table = pd.concat([table, seasonality.drop(columns="week_start")], axis=1)
    table = table[["week_start"] + REVENUE_COLS + list(channel_cols) + SEASONALITY_COLS]

    _validate_model_input(table, calendar)
    logger.info(
        "Assembled model input",
        extra={
            "weeks": len(table),
            "revenue_gap_weeks": gap_weeks,
            "channel_join_gaps": join_gaps,
            "channel_weeks_outside_span": outside_span,
        },
    )
    return table


def _validate_model_input(table: pd.DataFrame, calendar: pd.DataFrame) -> None:
    if table["week_start"].duplicated().any():
        raise AssemblyError("Model input has more than one row for some week.")
    if len(table) != len(calendar):
        raise AssemblyError(f"Model input has {len(table)} rows for a {len(calendar)}-week span.")
    nulls = [c for c in table.columns if table[c].isna().any()]
    if nulls:
        raise AssemblyError(f"Model input has nulls in columns {nulls}.")
    numeric = table.drop(columns="week_start").to_numpy(dtype=float)
    if not np.isfinite(numeric).all():
        raise AssemblyError("Model input contains non-finite values.")
