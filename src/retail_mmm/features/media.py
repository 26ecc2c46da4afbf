from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from retail_mmm.errors import ParameterError

TRANSFORM_KINDS = ("hill", "log")
_HILL_CEILING = np.nextafter(1.0, 0.0)


# =============================
# Parameters
# =============================
@dataclass(frozen=True)
class ChannelTransform:
    """
    Media-response settings for one channel column.

    Parameters
    ----------
    channel:
        Raw weekly column in the model-input table (e.g. "search_spend").
    decay:
        Adstock carryover rate, 0 <= decay < 1.
    kind:
        "hill" or "log". Both consume the same adstocked series; a channel
        uses exactly one of them.
    slope:
        Hill steepness (> 0). Ignored for "log".
    half_saturation:
        Hill half-saturation point (> 0). ``None`` resolves it from the data
        at fit time (see `safe_k_from_series`). Ignored for "log".
    """

    channel: str
    decay: float = 0.5
    kind: str = "hill"
    slope: float = 1.0
    half_saturation: Optional[float] = None

    def __post_init__(self):
        validate_transform(self)

    def resolve(self, adstocked: pd.Series) -> "ChannelTransform":
        """Freeze a data-driven half-saturation point."""
        if self.kind != "hill" or self.half_saturation is not None:
            return self
        return replace(self, half_saturation=safe_k_from_series(adstocked))


def _check_decay(decay: float, channel: Optional[str] = None) -> None:
    if not np.isfinite(decay) or not (0.0 <= decay < 1.0):
        raise ParameterError(f"decay must be in [0, 1), got {decay}", channel)


def _check_hill(slope: float, half_saturation: Optional[float], channel: Optional[str] = None) -> None:
    if not np.isfinite(slope) or slope <= 0:
        raise ParameterError(f"slope must be > 0, got {slope}", channel)
    if half_saturation is not None and (not np.isfinite(half_saturation) or half_saturation <= 0):
        raise ParameterError(f"half_saturation must be > 0, got {half_saturation}", channel)


def validate_transform(spec: ChannelTransform) -> None:
    if spec.kind not in TRANSFORM_KINDS:
        raise ParameterError(f"kind must be one of {TRANSFORM_KINDS}, got {spec.kind!r}", spec.channel)
    _check_decay(spec.decay, spec.channel)
    if spec.kind == "hill":
        _check_hill(spec.slope, spec.half_saturation, spec.channel)


def _as_spend(x, channel: Optional[str] = None) -> np.ndarray:
    arr = np.asarray(x, dtype=float)
    if arr.ndim != 1:
        raise ParameterError(f"expected a 1D series, got shape {arr.shape}", channel)
    if np.any(~np.isfinite(arr)) or np.any(arr < 0):
        raise ParameterError("spend must be finite and non-negative", channel)
    return arr


# =============================
# Transforms
# =============================
def geometric_adstock(x: np.ndarray, decay: float) -> np.ndarray:
    """
    Apply geometric adstock (recursive carryover) to a spend series.

    .. math::
        a_0 = x_0, \\qquad a_t = x_t + \\delta a_{t-1}

    Parameters
    ----------
    x:
        1D array of non-negative spend values ordered by week.
    decay:
        Carryover rate :math:`\\delta \\in [0, 1)`.

    Returns
    -------
    np.ndarray
        Adstocked series of the same shape as `x`.

    Notes
    -----
    The recursion is sequential in week order; the input must already be
    sorted. ``decay = 0`` returns a copy of `x`.
    """
    _check_decay(decay)
    x = _as_spend(x)
    out = np.zeros_like(x, dtype=float)
    carry = 0.0
    for i in range(len(x)):
        carry = x[i] + decay * carry
        out[i] = carry
    return out


def log_transform(adstocked: np.ndarray) -> np.ndarray:
    """``log(1 + adstock)``; defined for every non-negative input."""
    return np.log1p(_as_spend(adstocked))


def hill_saturation(x: np.ndarray, slope: float, half_saturation: float) -> np.ndarray:
    """
    Apply Hill saturation (diminishing returns) to an adstocked series.

    .. math::
        f(x) = \\frac{x^{s}}{x^{s} + k^{s}}

    Parameters
    ----------
    x:
        1D array of non-negative adstocked values.
    slope:
        Steepness :math:`s > 0`.
    half_saturation:
        Point :math:`k > 0` where the response reaches one half.

    Returns
    -------
    np.ndarray
        Values in [0, 1); 0 maps to 0.

    Notes
    -----
    Evaluated as ``1 / (1 + (k / x)^s)`` so large inputs do not overflow.
    Outputs are capped at the largest double below 1, so a saturated channel
    never reaches the asymptote even when ``(k / x)^s`` underflows.
    """
    if half_saturation is None:
        raise ParameterError("half_saturation must be resolved before applying Hill saturation")
    _check_hill(slope, half_saturation)
    x = _as_spend(x)
    out = np.zeros_like(x, dtype=float)
    pos = x > 0
    out[pos] = np.minimum(1.0 / (1.0 + np.power(half_saturation / x[pos], slope)), _HILL_CEILING)
    return out


def safe_k_from_series(x: pd.Series, q: float = 0.5, eps: float = 1e-8) -> float:
    """
    Robust half-saturation point from an adstocked series.

    Uses the `q` quantile of strictly positive values, or `eps` when the
    channel never spent.
    """
    x = pd.Series(x, dtype=float)
    x_pos = x[x > 0]
    if len(x_pos) == 0:
        return eps
    return max(float(x_pos.quantile(q)), eps)


def saturate(adstocked: np.ndarray, spec: ChannelTransform) -> np.ndarray:
    if spec.kind == "log":
        return log_transform(adstocked)
    return hill_saturation(adstocked, spec.slope, spec.half_saturation)


def transform_channel(x: np.ndarray, spec: ChannelTransform) -> Tuple[np.ndarray, np.ndarray]:
    """Return (adstocked, transformed) for one channel under a resolved spec."""
    try:
        adstocked = geometric_adstock(x, spec.decay)
        return adstocked, saturate(adstocked, spec)
    except ParameterError as exc:
        if exc.channel is not None:
            raise
        raise ParameterError(str(exc), spec.channel) from exc


def apply_media_transforms(
    raw: pd.DataFrame,
    transforms: Iterable[ChannelTransform],
) -> Dict[str, object]:
    """
    Adstock and saturate every configured channel of a weekly table.

    Parameters
    ----------
    raw:
        Weekly table sorted by week, holding one raw column per channel.
    transforms:
        Channel specs. Unresolved Hill half-saturation points are resolved
        from this table's adstocked values.

    Returns
    -------
    dict
        - X_ads: DataFrame of adstocked channels
        - X_media: DataFrame of transformed channels (same column names)
        - transforms: dict[channel -> resolved ChannelTransform]
    """
    X_ads = pd.DataFrame(index=raw.index)
    X_media = pd.DataFrame(index=raw.index)
    resolved: Dict[str, ChannelTransform] = {}

    for spec in transforms:
        if spec.channel not in raw.columns:
            raise ParameterError("channel column not found in weekly table", spec.channel)
        try:
            ads = geometric_adstock(raw[spec.channel].to_numpy(), spec.decay)
        except ParameterError as exc:
            raise ParameterError(str(exc), spec.channel) from exc
        spec = spec.resolve(pd.Series(ads))
        resolved[spec.channel] = spec
        X_ads[spec.channel] = ads
        X_media[spec.channel] = saturate(ads, spec)

    return {"X_ads": X_ads, "X_media": X_media, "transforms": resolved}
