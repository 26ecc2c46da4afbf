from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression
from sklearn.metrics import mean_absolute_error, r2_score

from retail_mmm.errors import DegenerateDesignError, EstimationError
from retail_mmm.features.media import ChannelTransform
from retail_mmm.model.solvers import BoundedLeastSquaresSolver, ConstrainedSolver, SolverResult
from retail_mmm.utils.logging import get_logger

logger = get_logger(__name__)

INTERCEPT = "intercept"


# =============================
# Results
# =============================
@dataclass
class ModelDiagnostics:
    r2: float
    mae: float
    correlation: pd.DataFrame
    vif: pd.Series
    condition_number: float
    jarque_bera: float
    jarque_bera_pvalue: float
    high_vif: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "r2": self.r2,
            "mae": self.mae,
            "condition_number": self.condition_number,
            "jarque_bera": self.jarque_bera,
            "jarque_bera_pvalue": self.jarque_bera_pvalue,
            "high_vif": list(self.high_vif),
            "vif": {k: float(v) for k, v in self.vif.items()},
        }


@dataclass
class FittedModel:
    """
    Constrained MMM fit.

    `coefficients` is indexed by regressor name (media first, then controls);
    every entry in `media_cols` is >= 0.
    """

    coefficients: pd.Series
    intercept: float
    media_cols: List[str]
    control_cols: List[str]
    unconstrained: pd.Series
    fitted: np.ndarray
    residuals: np.ndarray
    solver: SolverResult
    diagnostics: ModelDiagnostics
    transforms: Dict[str, ChannelTransform] = field(default_factory=dict)

    @property
    def regressors(self) -> List[str]:
        return list(self.coefficients.index)

    @property
    def pinned(self) -> List[str]:
        """Media regressors held at the zero bound."""
        return [c for c in self.media_cols if self.coefficients[c] <= 0.0]

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        X = X[self.regressors]
        return self.intercept + X.to_numpy(dtype=float) @ self.coefficients.to_numpy()

    def coefficient_table(self) -> pd.DataFrame:
        kind = ["media" if c in self.media_cols else "control" for c in self.regressors]
        table = pd.DataFrame(
            {
                "regressor": [INTERCEPT] + self.regressors,
                "kind": [INTERCEPT] + kind,
                "coefficient": [self.intercept] + list(self.coefficients.to_numpy()),
                "unconstrained": [self.unconstrained[INTERCEPT]] + [self.unconstrained[c] for c in self.regressors],
            }
        )
        pinned = set(self.pinned)
        table["pinned"] = table["regressor"].isin(pinned)
        table["vif"] = table["regressor"].map(self.diagnostics.vif)
        return table


# =============================
# Design checks
# =============================
def check_design(
    X: pd.DataFrame,
    y: np.ndarray,
    weeks: Optional[Sequence[object]] = None,
    rank_tol: Optional[float] = None,
) -> float:
    """
    Reject designs that cannot give a unique least-squares solution.

    Parameters
    ----------
    X:
        Regressor table (no intercept column).
    y:
        Target aligned with X.
    weeks:
        Week keys aligned with X, used to name offending rows.
    rank_tol:
        Singular-value cut-off on the column-normalised ``[1 | X]``.
        Defaults to numpy's ``matrix_rank`` tolerance.

    Returns
    -------
    float
        Condition number of the column-normalised design.

    Raises
    ------
    DegenerateDesignError
        On non-finite values (naming the weeks), fewer weeks than parameters,
        or linear dependence among columns (naming the regressors involved).
    """
    weeks = list(weeks) if weeks is not None else list(range(len(X)))
    values = X.to_numpy(dtype=float)
    y = np.asarray(y, dtype=float)

    bad_rows = ~np.isfinite(values).all(axis=1) | ~np.isfinite(y)
    if bad_rows.any():
        bad_cols = [c for c in X.columns if not np.isfinite(X[c].to_numpy(dtype=float)).all()]
        raise DegenerateDesignError(
            "Design matrix or target holds non-finite values",
            regressors=bad_cols,
            weeks=[w for w, bad in zip(weeks, bad_rows) if bad],
        )

    names = [INTERCEPT] + list(X.columns)
    A = np.column_stack([np.ones(len(X)), values])
    if A.shape[0] < A.shape[1]:
        raise DegenerateDesignError(
            f"{A.shape[0]} weeks cannot identify {A.shape[1]} parameters",
            regressors=names,
        )

    norms = np.linalg.norm(A, axis=0)
    zero_cols = [n for n, v in zip(names, norms) if v == 0.0]
    if zero_cols:
        raise DegenerateDesignError("Regressors are identically zero", regressors=zero_cols)

    An = A / norms
    _, s, Vt = np.linalg.svd(An, full_matrices=False)
    tol = rank_tol if rank_tol is not None else s.max() * max(An.shape) * np.finfo(float).eps
    null = Vt[s <= tol]
    if len(null):
        loading = np.abs(null).max(axis=0)
        involved = [n for n, v in zip(names, loading) if v > 1e-6]
        raise DegenerateDesignError(
            f"Design matrix is rank deficient (rank {int((s > tol).sum())} of {An.shape[1]})",
            regressors=involved,
        )
    return float(s.max() / s.min())


# =============================
# Diagnostics
# =============================
def variance_inflation_factors(X: pd.DataFrame) -> pd.Series:
    """
    VIF per regressor: ``1 / (1 - R^2_k)`` with R^2_k from regressing column k
    on all other columns (with intercept). A lone regressor has VIF 1.
    """
    out = {}
    for col in X.columns:
        others = X.drop(columns=col)
        if others.shape[1] == 0:
            out[col] = 1.0
            continue
        target = X[col].to_numpy(dtype=float)
        r2 = LinearRegression().fit(others, target).score(others, target)
        out[col] = np.inf if r2 >= 1.0 - 1e-12 else 1.0 / (1.0 - r2)
    return pd.Series(out, name="vif", dtype=float)


def residual_normality(residuals: np.ndarray) -> Tuple[float, float]:
    """Jarque-Bera statistic and p-value; NaN when residuals have no spread."""
    residuals = np.asarray(residuals, dtype=float)
    if len(residuals) < 2 or np.allclose(residuals, residuals.mean()):
        return float("nan"), float("nan")
    res = stats.jarque_bera(residuals)
    return float(res[0]), float(res[1])


# =============================
# Estimation
# =============================
def fit_constrained(
    X: pd.DataFrame,
    y: np.ndarray,
    media_cols: Sequence[str],
    weeks: Optional[Sequence[object]] = None,
    solver: Optional[ConstrainedSolver] = None,
    rank_tol: Optional[float] = None,
    vif_threshold: float = 10.0,
    transforms: Optional[Dict[str, ChannelTransform]] = None,
) -> FittedModel:
    """
    Fit ``y ~ intercept + X b`` with ``b[m] >= 0`` for every media column.

    Parameters
    ----------
    X:
        Design matrix: transformed media columns and control columns.
    y:
        Weekly revenue aligned with X.
    media_cols:
        Columns of X whose coefficients are constrained to be non-negative.
        All other columns and the intercept are free.
    weeks:
        Week keys aligned with X, reported in design errors.
    solver:
        Constrained least-squares backend (default: bounded-variable LS).
    rank_tol:
        Passed to `check_design`.
    vif_threshold:
        Regressors above this VIF are flagged and logged.
    transforms:
        Resolved media transforms, stored on the model for simulation.

    Returns
    -------
    FittedModel

    Raises
    ------
    DegenerateDesignError
        If the design is rank deficient or holds non-finite values.
    EstimationError
        If the solver reports non-convergence.

    Notes
    -----
    Coefficients are on the original scale of each regressor, so
    ``media_coef * transformed_value`` is directly a revenue contribution.
    """
    media_cols = list(media_cols)
    unknown = [c for c in media_cols if c not in X.columns]
    if unknown:
        raise KeyError(f"Media columns not in design matrix: {unknown}")
    control_cols = [c for c in X.columns if c not in media_cols]
    X = X[media_cols + control_cols]
    y = np.asarray(y, dtype=float).ravel()

    condition_number = check_design(X, y, weeks=weeks, rank_tol=rank_tol)

    names = [INTERCEPT] + list(X.columns)
    A = np.column_stack([np.ones(len(X)), X.to_numpy(dtype=float)])
    lower = np.array([0.0 if n in media_cols else -np.inf for n in names])

    solver = solver or BoundedLeastSquaresSolver()
    result = solver.solve(A, y, lower)
    if not result.converged:
        raise EstimationError(f"Constrained solver did not converge (status {result.status}): {result.message}")

    unconstrained = pd.Series(np.linalg.lstsq(A, y, rcond=None)[0], index=names, name="unconstrained")
    coef = pd.Series(result.coef, index=names, name="coefficient")
    fitted = A @ coef.to_numpy()
    residuals = y - fitted

    vif = variance_inflation_factors(X)
    high_vif = [c for c, v in vif.items() if v > vif_threshold]
    jb, jb_p = residual_normality(residuals)
    diagnostics = ModelDiagnostics(
        r2=float(r2_score(y, fitted)) if len(y) > 1 else float("nan"),
        mae=float(mean_absolute_error(y, fitted)),
        correlation=X.corr(),
        vif=vif,
        condition_number=condition_number,
        jarque_bera=jb,
        jarque_bera_pvalue=jb_p,
        high_vif=high_vif,
    )

    model = FittedModel(
        coefficients=coef.drop(INTERCEPT),
        intercept=float(coef[INTERCEPT]),
        media_cols=media_cols,
        control_cols=control_cols,
        unconstrained=unconstrained,
        fitted=fitted,
        residuals=residuals,
        solver=result,
        diagnostics=diagnostics,
        transforms=dict(transforms or {}),
    )

    if high_vif:
        logger.warning("High variance inflation", extra={"regressors": high_vif, "threshold": vif_threshold})
    if model.pinned:
        logger.info("Media coefficients held at zero", extra={"regressors": model.pinned})
    logger.info("Fitted constrained model", extra={"r2": diagnostics.r2, "weeks": len(y), "regressors": len(names) - 1})
    return model


# =============================
# Backtesting
# =============================
def rolling_origin_splits(n: int, min_train_weeks: int, test_weeks: int, step_weeks: int):
    """Expanding-window folds: each trains on weeks ``[0, end)`` and tests on the next ``test_weeks``."""
    if step_weeks < 1 or test_weeks < 1:
        raise ValueError("test_weeks and step_weeks must be positive")
    last_end = n - test_weeks
    return [
        (np.arange(end), np.arange(end, end + test_weeks))
        for end in range(min_train_weeks, last_end + 1, step_weeks)
    ]


def backtest_time_series(
    X: pd.DataFrame,
    y: np.ndarray,
    dates: np.ndarray,
    media_cols: Sequence[str],
    min_train_weeks: int,
    test_weeks: int,
    step_weeks: int,
    solver: Optional[ConstrainedSolver] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Rolling-origin backtest of the constrained model.

    Returns
    -------
    (pd.DataFrame, pd.DataFrame)
        - results: per-fold date windows with out-of-sample R² and MAE
        - coefs: per-fold coefficients (plus ``intercept``), one row per fold

    Notes
    -----
    Media transforms are computed once on the full series before splitting,
    so adstock carried into a test block comes from observed spend. Negative
    out-of-sample R² is common for MMM and is reported as-is.
    """
    order = np.argsort(dates, kind="mergesort")
    X = X.iloc[order].reset_index(drop=True)
    y = np.asarray(y, dtype=float).ravel()[order]
    dates = np.asarray(dates)[order]

    splits = rolling_origin_splits(len(X), min_train_weeks, test_weeks, step_weeks)
    if len(splits) == 0:
        raise ValueError("No splits created. Reduce min_train_weeks or test_weeks.")

    rows = []
    coef_rows = []
    for i, (tr, te) in enumerate(splits, start=1):
        model = fit_constrained(X.iloc[tr], y[tr], media_cols, weeks=dates[tr], solver=solver)
        pred = model.predict(X.iloc[te])
        rows.append({
            "fold": i,
            "train_start": pd.Timestamp(dates[tr][0]).date(),
            "train_end": pd.Timestamp(dates[tr][-1]).date(),
            "test_start": pd.Timestamp(dates[te][0]).date(),
            "test_end": pd.Timestamp(dates[te][-1]).date(),
            "r2_test": r2_score(y[te], pred),
            "mae_test": mean_absolute_error(y[te], pred),
        })
        coefs = model.coefficients.copy()
        coefs[INTERCEPT] = model.intercept
        coefs.name = f"fold_{i}"
        coef_rows.append(coefs)

    return pd.DataFrame(rows), pd.DataFrame(coef_rows)
