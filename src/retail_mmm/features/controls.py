from __future__ import annotations

import numpy as np
import pandas as pd


def make_trend_feature(n: int) -> pd.DataFrame:
    """
    Sequential week index ``trend_t = [0, 1, ..., n-1]``.

    The fitted coefficient is the weekly baseline drift in revenue units.
    """
    return pd.DataFrame({"trend_t": np.arange(n, dtype=float)})


def make_fourier_seasonality(dates: np.ndarray, period: int = 52, order: int = 2) -> pd.DataFrame:
    """
    Sine and cosine pairs on the ISO week of each date, harmonics ``1..order``.

    Columns are ``sin_{period}_k{k}`` and ``cos_{period}_k{k}``, interleaved
    by harmonic. Week 53 wraps slightly past a full cycle when ``period=52``.
    """
    if order < 1:
        raise ValueError(f"Fourier order must be at least 1, got {order}")
    iso_week = pd.DatetimeIndex(pd.to_datetime(dates)).isocalendar().week.to_numpy(dtype=float)
    angle = np.outer(2.0 * np.pi * iso_week / period, np.arange(1, order + 1))

    columns = {}
    for k in range(order):
        columns[f"sin_{period}_k{k + 1}"] = np.sin(angle[:, k])
        columns[f"cos_{period}_k{k + 1}"] = np.cos(angle[:, k])
    return pd.DataFrame(columns)
