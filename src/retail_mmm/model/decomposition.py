from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from retail_mmm.errors import BudgetMismatchError, EstimationError
from retail_mmm.features.media import transform_channel
from retail_mmm.model.estimator import FittedModel
from retail_mmm.utils.logging import get_logger

logger = get_logger(__name__)

DECOMPOSITION_RTOL = 1e-6


# =============================
# Decomposition
# =============================
def decompose_contributions(
    model: FittedModel,
    X: pd.DataFrame,
    weeks: Optional[Sequence[object]] = None,
) -> pd.DataFrame:
    """
    Split each week's fitted revenue into base and per-channel media terms.

    Parameters
    ----------
    model:
        Fitted constrained model.
    X:
        Design matrix the model was fitted on (or one with the same columns).
    weeks:
        Optional week keys added as a leading ``week_start`` column.

    Returns
    -------
    pd.DataFrame
        Columns: [week_start], base, one column per media channel, fitted.
        ``base`` is the intercept plus all control terms.

    Raises
    ------
    EstimationError
        If base plus media terms do not reproduce the model prediction.
    """
    coef = model.coefficients
    base = np.full(len(X), model.intercept, dtype=float)
    if model.control_cols:
        base = base + X[model.control_cols].to_numpy(dtype=float) @ coef[model.control_cols].to_numpy()

    out = pd.DataFrame({"base": base}, index=X.index)
    for col in model.media_cols:
        out[col] = coef[col] * X[col].to_numpy(dtype=float)
    out["fitted"] = out[["base"] + model.media_cols].sum(axis=1)

    predicted = model.predict(X)
    scale = max(float(np.abs(predicted).max()) if len(predicted) else 0.0, 1.0)
    if not np.allclose(out["fitted"].to_numpy(), predicted, rtol=DECOMPOSITION_RTOL, atol=DECOMPOSITION_RTOL * scale):
        raise EstimationError("Contribution decomposition does not sum to the fitted values.")

    if weeks is not None:
        out.insert(0, "week_start", list(weeks))
    return out.reset_index(drop=True)


def contribution_shares(contributions: pd.DataFrame, media_cols: Sequence[str]) -> pd.DataFrame:
    """Total contribution per term and its share of total fitted revenue."""
    totals = contributions[["base"] + list(media_cols)].sum()
    fitted_total = float(contributions["fitted"].sum())
    share = totals / fitted_total if fitted_total != 0 else totals * np.nan
    return pd.DataFrame({"term": totals.index, "contribution": totals.to_numpy(), "share": share.to_numpy()})


# =============================
# Fixed-budget simulation
# =============================
@dataclass
class SimulationResult:
    historical_revenue: float
    scenario_revenue: float
    delta: float
    by_channel: pd.DataFrame

    def to_dict(self):
        return {
            "historical_revenue": self.historical_revenue,
            "scenario_revenue": self.scenario_revenue,
            "delta": self.delta,
            "by_channel": self.by_channel.to_dict(orient="records"),
        }


def _sorted_weeks(model_input: pd.DataFrame) -> pd.DataFrame:
    if "week_start" in model_input.columns:
        return model_input.sort_values("week_start", kind="mergesort").reset_index(drop=True)
    return model_input.reset_index(drop=True)


def reallocate_budget(model_input: pd.DataFrame, shares: Mapping[str, float]) -> pd.DataFrame:
    """
    Scenario that splits the combined weekly budget of `shares`' channels by fixed shares.

    Each week keeps its combined spend; only the split between channels
    changes, so the total budget is unchanged.
    """
    if not shares:
        raise ValueError("shares must name at least one channel")
    values = np.array(list(shares.values()), dtype=float)
    if np.any(values < 0) or not np.isclose(values.sum(), 1.0):
        raise ValueError(f"shares must be non-negative and sum to 1, got {dict(shares)}")

    d = _sorted_weeks(model_input)
    channels = list(shares)
    weekly_total = d[channels].to_numpy(dtype=float).sum(axis=1)
    scenario = pd.DataFrame({c: shares[c] * weekly_total for c in channels})
    if "week_start" in d.columns:
        scenario.insert(0, "week_start", d["week_start"].to_numpy())
    return scenario


def simulate_reallocation(
    model: FittedModel,
    model_input: pd.DataFrame,
    scenario: Union[pd.DataFrame, Mapping[str, Sequence[float]]],
    atol: float = 1e-6,
) -> SimulationResult:
    """
    Re-score a reallocated spend plan against the historical one.

    Parameters
    ----------
    model:
        Fitted model carrying resolved media transforms.
    model_input:
        Weekly table the model was fitted on (raw channel columns).
    scenario:
        Replacement weekly raw spend for one or more media channels, aligned
        with the weeks of `model_input`. Channels not listed keep their
        historical spend.
    atol:
        Absolute tolerance on the total-budget comparison.

    Returns
    -------
    SimulationResult
        Predicted total revenue under both plans, their difference
        (scenario minus historical) and a per-channel breakdown.

    Raises
    ------
    BudgetMismatchError
        If scenario spend over the listed channels does not match the
        historical total for the same channels.

    Notes
    -----
    Adstock and saturation are recomputed on the new spend with the fitted
    parameters; the base (intercept and controls) is identical under both
    plans, so the delta is entirely media driven.
    """
    hist = _sorted_weeks(model_input)
    n = len(hist)
    if len(model.fitted) != n:
        raise ValueError(f"Model was fitted on {len(model.fitted)} weeks but model_input has {n}.")

    missing_specs = [c for c in model.media_cols if c not in model.transforms]
    if missing_specs:
        raise ValueError(f"Model carries no media transform for {missing_specs}; refit through build_features.")

    scen = pd.DataFrame(scenario)
    channels = [c for c in scen.columns if c != "week_start"]
    not_media = [c for c in channels if c not in model.transforms]
    if not_media:
        raise KeyError(f"Scenario channels without a fitted media transform: {not_media}")
    if len(scen) != n:
        raise ValueError(f"Scenario has {len(scen)} weeks; expected {n}.")
    if "week_start" in scen.columns and "week_start" in hist.columns:
        scen = _sorted_weeks(scen)
        if not (pd.to_datetime(scen["week_start"]).to_numpy() == pd.to_datetime(hist["week_start"]).to_numpy()).all():
            raise ValueError("Scenario weeks do not match the model-input weeks.")

    hist_total = float(hist[channels].to_numpy(dtype=float).sum())
    scen_total = float(scen[channels].to_numpy(dtype=float).sum())
    if not np.isclose(hist_total, scen_total, rtol=1e-9, atol=atol):
        raise BudgetMismatchError(hist_total, scen_total)

    rows = []
    hist_media_total = 0.0
    scen_media_total = 0.0
    for col in model.media_cols:
        spec = model.transforms[col]
        coef = float(model.coefficients[col])
        old_spend = hist[col].to_numpy(dtype=float)
        new_spend = scen[col].to_numpy(dtype=float) if col in channels else old_spend
        _, old_x = transform_channel(old_spend, spec)
        _, new_x = transform_channel(new_spend, spec)
        old_c = coef * float(old_x.sum())
        new_c = coef * float(new_x.sum())
        hist_media_total += old_c
        scen_media_total += new_c
        rows.append({
            "channel": col,
            "historical_spend": float(old_spend.sum()),
            "scenario_spend": float(new_spend.sum()),
            "historical_contribution": old_c,
            "scenario_contribution": new_c,
            "delta": new_c - old_c,
        })

    base_total = float(np.sum(model.fitted)) - hist_media_total
    historical_revenue = base_total + hist_media_total
    scenario_revenue = base_total + scen_media_total
    result = SimulationResult(
        historical_revenue=historical_revenue,
        scenario_revenue=scenario_revenue,
        delta=scen_media_total - hist_media_total,
        by_channel=pd.DataFrame(rows),
    )
    logger.info(
        "Simulated budget reallocation",
        extra={"channels": channels, "budget": hist_total, "delta": result.delta},
    )
    return result
