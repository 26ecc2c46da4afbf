from __future__ import annotations

from typing import Dict, List, Mapping, Optional

import pandas as pd

from retail_mmm.config import MMMConfig
from retail_mmm.data.assemble import assemble_model_input
from retail_mmm.data.channels import ChannelFeed, build_channel_series
from retail_mmm.data.mock_feeds import default_mock_feeds
from retail_mmm.data.transactions import (
    aggregate_weekly_revenue,
    clean_transactions,
    deduplicate_transactions,
    filter_market,
    normalize_country,
)
from retail_mmm.errors import DegenerateDesignError, SchemaError
from retail_mmm.features.controls import make_fourier_seasonality, make_trend_feature
from retail_mmm.features.media import apply_media_transforms
from retail_mmm.model.decomposition import (
    contribution_shares,
    decompose_contributions,
    reallocate_budget,
    simulate_reallocation,
)
from retail_mmm.model.estimator import backtest_time_series, fit_constrained
from retail_mmm.model.solvers import ConstrainedSolver
from retail_mmm.utils.logging import get_logger, log_operation

logger = get_logger(__name__)


# =============================
# Stages 1-8: transactions -> model input
# =============================
def build_model_input(
    transactions: pd.DataFrame,
    cfg: MMMConfig,
    feeds: Optional[Mapping[str, ChannelFeed]] = None,
    promotions=None,
    seed: Optional[int] = None,
) -> Dict[str, object]:
    """
    Run the data layer from raw transactions to the weekly model-input table.

    Parameters
    ----------
    transactions:
        Raw transaction table (see `retail_mmm.data.transactions.RAW_COLUMNS`).
    cfg:
        Run configuration (market, aliases, week boundary, promotions).
    feeds:
        Daily channel feeds keyed by weekly column name. Channels without a
        feed fall back to the seeded mock feed.
    promotions:
        Promotion calendar rows; defaults to ``cfg.promotions``.
    seed:
        Seed for any mock feed used.

    Returns
    -------
    dict
        - cleaning_report: CleaningReport
        - duplicates_removed: int
        - transactions: deduplicated transactions
        - weekly_revenue: weekly revenue table
        - channels: dict of weekly channel series
        - model_input: assembled table, one row per week
    """
    with log_operation("normalize_and_filter", logger=logger, market=cfg.target_market):
        normalized = normalize_country(transactions, cfg.target_market, cfg.market_aliases)
        market = filter_market(normalized, cfg.target_market)

    with log_operation("clean_and_deduplicate", logger=logger):
        cleaned, report = clean_transactions(market)
        deduped, removed = deduplicate_transactions(cleaned)

    with log_operation("aggregate_weekly_revenue", logger=logger):
        weekly = aggregate_weekly_revenue(deduped, cfg.week_start_day)

    if deduped.empty:
        start = end = None
    else:
        start, end = deduped["invoice_date"].min(), deduped["invoice_date"].max()

    mocks = default_mock_feeds(seed)
    all_feeds: Dict[str, ChannelFeed] = {}
    for col in ("search_spend", "social_spend", "email_volume"):
        if feeds and col in feeds:
            all_feeds[col] = feeds[col]
        else:
            logger.warning("No feed supplied; using seeded mock feed", extra={"channel": col, "seed": seed})
            all_feeds[col] = mocks[col]

    with log_operation("assemble_model_input", logger=logger):
        if start is None:
            channels: Dict[str, pd.DataFrame] = {}
        else:
            channels = build_channel_series(
                all_feeds,
                cfg.promotions if promotions is None else promotions,
                start,
                end,
                start_day=cfg.week_start_day,
            )
        model_input = assemble_model_input(weekly, channels)

    return {
        "cleaning_report": report,
        "duplicates_removed": removed,
        "transactions": deduped,
        "weekly_revenue": weekly,
        "channels": channels,
        "model_input": model_input,
    }


# =============================
# Stage 9: features
# =============================
def build_features(model_input: pd.DataFrame, cfg: MMMConfig) -> Dict[str, object]:
    """
    Build the design matrix from the model-input table.

    Constructs, in order:
    1) Adstocked channels (X_ads)
    2) Transformed channels (X_media), Hill or log per channel
    3) Controls (X_controls): configured columns, trend, optional Fourier terms
    4) X_final = [X_media, X_controls]

    Configured controls that hold one value over every week (a promo flag
    with no promotion in the span, ``is_q4`` on spring-only data) are
    dropped with a warning instead of failing the rank check.

    Returns
    -------
    dict
        - df_weekly: model input sorted by week
        - dates, y
        - media_cols, control_cols
        - dropped_controls: configured controls left out as constant
        - X_ads, X_media, X_controls, X_final
        - transforms: dict[channel -> resolved ChannelTransform]
    """
    dfw = model_input.sort_values("week_start", kind="mergesort").reset_index(drop=True)
    needed = [cfg.target_col] + cfg.media_cols + list(cfg.control_cols)
    missing = [c for c in needed if c not in dfw.columns]
    if missing:
        raise SchemaError(missing, "model input")

    dates = pd.to_datetime(dfw["week_start"]).to_numpy()
    y = dfw[cfg.target_col].astype(float).to_numpy()

    media = apply_media_transforms(dfw, cfg.transforms)

    controls = dfw[list(cfg.control_cols)].astype(float)
    # a control that never varies over the span is collinear with the intercept
    constant = [c for c in controls.columns if controls[c].nunique(dropna=False) <= 1]
    if constant:
        logger.warning(
            "Dropping controls that do not vary over the modelled weeks",
            extra={
                "controls": constant,
                "first_week": str(pd.Timestamp(dates[0]).date()) if len(dates) else None,
                "last_week": str(pd.Timestamp(dates[-1]).date()) if len(dates) else None,
                "promotions_configured": len(cfg.promotions),
            },
        )
        controls = controls.drop(columns=constant)

    parts: List[pd.DataFrame] = [controls]
    if cfg.add_trend:
        parts.append(make_trend_feature(len(dfw)))
    if cfg.fourier_order > 0:
        parts.append(make_fourier_seasonality(dates, cfg.seasonality_period, cfg.fourier_order))
    X_controls = pd.concat(parts, axis=1)

    X_final = pd.concat([media["X_media"], X_controls], axis=1)

    return {
        "df_weekly": dfw,
        "dates": dates,
        "y": y,
        "media_cols": cfg.media_cols,
        "control_cols": list(X_controls.columns),
        "dropped_controls": constant,
        "X_ads": media["X_ads"],
        "X_media": media["X_media"],
        "X_controls": X_controls,
        "X_final": X_final,
        "transforms": media["transforms"],
    }


# =============================
# Stages 10-11: estimation, decomposition, simulation
# =============================
def fit_model(
    model_input: pd.DataFrame,
    cfg: MMMConfig,
    solver: Optional[ConstrainedSolver] = None,
    scenario_shares: Optional[Mapping[str, float]] = None,
) -> Dict[str, object]:
    """
    Fit the constrained model on a model-input table and derive its outputs.

    Returns
    -------
    dict
        - features: output of `build_features`
        - model: FittedModel
        - coefficients: coefficient table
        - contributions: weekly decomposition
        - contribution_shares: totals and shares per term
        - backtest, backtest_coefs: rolling-origin results (None if too few weeks)
        - simulation: SimulationResult for `scenario_shares` (None if not given)
    """
    feats = build_features(model_input, cfg)

    with log_operation("fit_constrained", logger=logger, weeks=len(feats["y"])):
        model = fit_constrained(
            feats["X_final"],
            feats["y"],
            feats["media_cols"],
            weeks=[pd.Timestamp(d).date() for d in feats["dates"]],
            solver=solver,
            rank_tol=cfg.rank_tol,
            vif_threshold=cfg.vif_threshold,
            transforms=feats["transforms"],
        )

    contributions = decompose_contributions(model, feats["X_final"], weeks=feats["df_weekly"]["week_start"])

    backtest = backtest_coefs = None
    if len(feats["y"]) >= cfg.min_train_weeks + cfg.test_weeks:
        try:
            backtest, backtest_coefs = backtest_time_series(
                feats["X_final"],
                feats["y"],
                feats["dates"],
                feats["media_cols"],
                cfg.min_train_weeks,
                cfg.test_weeks,
                cfg.step_weeks,
                solver=solver,
            )
        except DegenerateDesignError as exc:
            logger.warning("Backtest skipped: a training window is degenerate", extra={"reason": str(exc)})
    else:
        logger.info(
            "Backtest skipped: not enough weeks",
            extra={"weeks": len(feats["y"]), "required": cfg.min_train_weeks + cfg.test_weeks},
        )

    simulation = None
    if scenario_shares:
        scenario = reallocate_budget(feats["df_weekly"], scenario_shares)
        simulation = simulate_reallocation(model, feats["df_weekly"], scenario)

    return {
        "features": feats,
        "model": model,
        "coefficients": model.coefficient_table(),
        "contributions": contributions,
        "contribution_shares": contribution_shares(contributions, model.media_cols),
        "backtest": backtest,
        "backtest_coefs": backtest_coefs,
        "simulation": simulation,
    }


# =============================
# End-to-end runner
# =============================
def run_mmm_pipeline(
    transactions: pd.DataFrame,
    cfg: Optional[MMMConfig] = None,
    feeds: Optional[Mapping[str, ChannelFeed]] = None,
    promotions=None,
    seed: Optional[int] = None,
    solver: Optional[ConstrainedSolver] = None,
    scenario_shares: Optional[Mapping[str, float]] = None,
) -> Dict[str, object]:
    """
    End-to-end run for one market.

    Pipeline:
    1) Normalize country, keep the target market
    2) Clean, deduplicate, aggregate to weekly revenue
    3) Aggregate channel feeds and promotions; assemble the model input
    4) Adstock + saturation per channel, controls
    5) Non-negative constrained fit with diagnostics
    6) Contribution decomposition, optional fixed-budget simulation

    Typical usage
    -------------
    >>> import pandas as pd
    >>> from retail_mmm.data.transactions import read_transactions
    >>> from retail_mmm.pipelines.run_mmm import run_mmm_pipeline
    >>> raw = read_transactions("data/raw/online_retail.csv")
    >>> out = run_mmm_pipeline(raw, seed=7, scenario_shares={"search_spend": 0.5, "social_spend": 0.5})
    >>> out["coefficients"]

    Notes
    -----
    Coefficients are constrained associations, not causal elasticities;
    collinear channels (see ``model.diagnostics.vif``) share credit arbitrarily.
    """
    cfg = cfg or MMMConfig()
    data = build_model_input(transactions, cfg, feeds=feeds, promotions=promotions, seed=seed)
    fitted = fit_model(data["model_input"], cfg, solver=solver, scenario_shares=scenario_shares)
    out = dict(data)
    out.update(fitted)
    return out
