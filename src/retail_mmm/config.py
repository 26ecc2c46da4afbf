from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from retail_mmm.features.media import ChannelTransform
from retail_mmm.utils.dates import WEEK_START_DAY

CHANNEL_COLS = ["search_spend", "social_spend", "email_volume", "promo_flag"]


def _default_transforms() -> List[ChannelTransform]:
    return [
        ChannelTransform("search_spend", decay=0.5, kind="hill", slope=1.0),
        ChannelTransform("social_spend", decay=0.5, kind="hill", slope=1.0),
        ChannelTransform("email_volume", decay=0.3, kind="log"),
    ]


def _default_promotions() -> List[Dict[str, Any]]:
    return [
        {"name": "Black Friday", "start_date": "2009-11-20", "end_date": "2009-11-26"},
        {"name": "Christmas Sale", "start_date": "2010-12-18", "end_date": "2010-12-31"},
        {"name": "Summer Sale", "start_date": "2010-07-10", "end_date": "2010-07-16"},
    ]


# =============================
# Config
# =============================
@dataclass
class MMMConfig:
    # market
    target_market: str = "Germany"
    market_aliases: List[str] = field(default_factory=lambda: ["GER", "DE", "Deutschland", "Germany"])

    # aggregation
    week_start_day: str = WEEK_START_DAY
    target_col: str = "weekly_revenue"

    # media
    transforms: List[ChannelTransform] = field(default_factory=_default_transforms)

    # controls
    control_cols: List[str] = field(default_factory=lambda: ["promo_flag", "is_holiday_season", "is_q4"])
    add_trend: bool = True
    fourier_order: int = 0
    seasonality_period: int = 52

    # diagnostics
    vif_threshold: float = 10.0
    rank_tol: Optional[float] = None

    # time validation
    min_train_weeks: int = 52
    test_weeks: int = 13
    step_weeks: int = 13

    # promotion calendar: [{name, start_date, end_date}, ...]
    promotions: List[Dict[str, Any]] = field(default_factory=_default_promotions)

    @property
    def media_cols(self) -> List[str]:
        return [t.channel for t in self.transforms]


def config_from_dict(raw: Dict[str, Any]) -> MMMConfig:
    """
    Build an `MMMConfig` from a plain mapping.

    Raises
    ------
    ValueError
        On keys `MMMConfig` does not define, or malformed transform entries.
    """
    known = {f.name for f in fields(MMMConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    values = dict(raw)
    if "transforms" in values:
        specs = values["transforms"]
        if not isinstance(specs, list):
            raise ValueError("'transforms' must be a list of channel specs")
        parsed = []
        for idx, spec in enumerate(specs):
            if not isinstance(spec, dict) or "channel" not in spec:
                raise ValueError(f"Transform #{idx} must be a mapping with a 'channel' key")
            unknown_fields = sorted(set(spec) - {f.name for f in fields(ChannelTransform)})
            if unknown_fields:
                raise ValueError(f"Transform #{idx} has unknown keys: {unknown_fields}")
            parsed.append(ChannelTransform(**spec))
        values["transforms"] = parsed
    return MMMConfig(**values)


def load_config(path: Union[str, Path]) -> MMMConfig:
    """
    Load a run configuration from YAML.

    Expected format::

        target_market: Germany
        transforms:
          - channel: search_spend
            decay: 0.5
            kind: hill
            slope: 1.0
            half_saturation: 5000
        control_cols: [promo_flag, is_holiday_season, is_q4]
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return config_from_dict(raw)
