"""
Unit tests for contribution decomposition and fixed-budget reallocation.
"""
import numpy as np
import pandas as pd
import pytest

from retail_mmm.errors import BudgetMismatchError
from retail_mmm.features.media import ChannelTransform, apply_media_transforms
from retail_mmm.model.decomposition import (
    contribution_shares,
    decompose_contributions,
    reallocate_budget,
    simulate_reallocation,
)
from retail_mmm.model.estimator import fit_constrained

pytestmark = pytest.mark.unit

TRANSFORMS = [
    ChannelTransform("search_spend", decay=0.5, kind="hill", slope=1.0, half_saturation=800.0),
    ChannelTransform("social_spend", decay=0.3, kind="hill", slope=1.5),
]


@pytest.fixture
def weekly_model():
    """Sixteen weeks of spend, revenue driven by both channels plus a promo control"""
    rng = np.random.default_rng(8)
    n = 16
    model_input = pd.DataFrame({
        "week_start": pd.date_range("2010-03-01", periods=n, freq="7D"),
        "search_spend": np.round(rng.uniform(200.0, 1200.0, n), 2),
        "social_spend": np.round(rng.uniform(100.0, 900.0, n), 2),
        "promo_flag": [0, 1] * (n // 2),
    })
    media = apply_media_transforms(model_input, TRANSFORMS)
    X = pd.concat([media["X_media"], model_input[["promo_flag"]].astype(float)], axis=1)
    y = (
        5000.0
        + 3000.0 * X["search_spend"]
        + 1200.0 * X["social_spend"]
        + 400.0 * X["promo_flag"]
        + rng.normal(0.0, 20.0, n)
    ).to_numpy()
    model = fit_constrained(X, y, ["search_spend", "social_spend"], transforms=media["transforms"])
    return model, model_input, X


class TestDecomposition:
    """Tests for base + media contributions"""

    def test_terms_sum_to_fitted(self, weekly_model):
        model, model_input, X = weekly_model
        contrib = decompose_contributions(model, X, weeks=model_input["week_start"])
        assert list(contrib.columns) == ["week_start", "base", "search_spend", "social_spend", "fitted"]
        total = contrib[["base", "search_spend", "social_spend"]].sum(axis=1)
        assert total.to_numpy() == pytest.approx(model.fitted)
        assert contrib["fitted"].to_numpy() == pytest.approx(model.fitted)

    def test_base_holds_intercept_and_controls(self, weekly_model):
        model, _, X = weekly_model
        contrib = decompose_contributions(model, X)
        expected = model.intercept + model.coefficients["promo_flag"] * X["promo_flag"].to_numpy()
        assert contrib["base"].to_numpy() == pytest.approx(expected)

    def test_media_contributions_non_negative(self, weekly_model):
        model, _, X = weekly_model
        contrib = decompose_contributions(model, X)
        assert (contrib[["search_spend", "social_spend"]] >= 0.0).all().all()

    def test_shares_cover_fitted_total(self, weekly_model):
        model, _, X = weekly_model
        shares = contribution_shares(decompose_contributions(model, X), model.media_cols)
        assert shares["term"].tolist() == ["base", "search_spend", "social_spend"]
        assert shares["share"].sum() == pytest.approx(1.0)


class TestReallocation:
    """Tests for fixed-budget scenarios"""

    def test_identity_scenario_has_zero_delta(self, weekly_model):
        model, model_input, _ = weekly_model
        scenario = model_input[["week_start", "search_spend", "social_spend"]]
        result = simulate_reallocation(model, model_input, scenario)
        assert result.delta == pytest.approx(0.0, abs=1e-9)
        assert result.historical_revenue == pytest.approx(model.fitted.sum())
        assert result.scenario_revenue == pytest.approx(result.historical_revenue)

    def test_changed_budget_is_rejected(self, weekly_model):
        model, model_input, _ = weekly_model
        scenario = model_input[["search_spend", "social_spend"]] * 1.1
        with pytest.raises(BudgetMismatchError) as exc_info:
            simulate_reallocation(model, model_input, scenario)
        assert exc_info.value.scenario_total > exc_info.value.historical_total

    def test_reallocation_keeps_weekly_totals(self, weekly_model):
        _, model_input, _ = weekly_model
        scenario = reallocate_budget(model_input, {"search_spend": 0.7, "social_spend": 0.3})
        combined = model_input["search_spend"] + model_input["social_spend"]
        assert (scenario["search_spend"] + scenario["social_spend"]).to_numpy() == pytest.approx(combined.to_numpy())
        assert scenario["search_spend"].to_numpy() == pytest.approx(0.7 * combined.to_numpy())

    def test_channel_breakdown_adds_up(self, weekly_model):
        model, model_input, _ = weekly_model
        scenario = reallocate_budget(model_input, {"search_spend": 0.5, "social_spend": 0.5})
        result = simulate_reallocation(model, model_input, scenario)
        assert result.by_channel["delta"].sum() == pytest.approx(result.delta)
        assert result.by_channel["historical_spend"].sum() == pytest.approx(result.by_channel["scenario_spend"].sum())
        assert result.scenario_revenue - result.historical_revenue == pytest.approx(result.delta)

    def test_simulation_is_deterministic(self, weekly_model):
        model, model_input, _ = weekly_model
        scenario = reallocate_budget(model_input, {"search_spend": 0.2, "social_spend": 0.8})
        a = simulate_reallocation(model, model_input, scenario)
        b = simulate_reallocation(model, model_input, scenario)
        assert a.delta == b.delta

    @pytest.mark.parametrize("shares", [
        {"search_spend": 0.6, "social_spend": 0.6},
        {"search_spend": 1.2, "social_spend": -0.2},
        {},
    ])
    def test_invalid_shares(self, weekly_model, shares):
        _, model_input, _ = weekly_model
        with pytest.raises(ValueError):
            reallocate_budget(model_input, shares)

    def test_non_media_channel_rejected(self, weekly_model):
        model, model_input, _ = weekly_model
        with pytest.raises(KeyError):
            simulate_reallocation(model, model_input, model_input[["promo_flag"]])

    def test_week_count_must_match(self, weekly_model):
        model, model_input, _ = weekly_model
        with pytest.raises(ValueError):
            simulate_reallocation(model, model_input, model_input[["search_spend"]].iloc[:-1])

    def test_model_without_transforms_rejected(self, weekly_model):
        model, model_input, X = weekly_model
        bare = fit_constrained(X, model.fitted, model.media_cols)
        with pytest.raises(ValueError):
            simulate_reallocation(bare, model_input, model_input[["search_spend"]])
