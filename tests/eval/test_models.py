"""Tests for the covariate schedule and the linear / Gamma GLM families."""

from __future__ import annotations

import dataclasses

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from strikerate.eval.models import (
    Coefficient,
    GammaGLMFamily,
    LinearFamily,
    create_family,
    linear_predictor_form,
)
from strikerate.eval.standardize import Standardizer


def _standardized(train: pd.DataFrame, test: pd.DataFrame, columns: list[str]):
    stats = Standardizer.fit(train, columns)
    return stats.apply(train), stats.apply(test)


class TestSchedule:
    def test_thirteen_subsets_in_order(self):
        from strikerate.eval.schedule import SCHEDULE

        assert [s.number for s in SCHEDULE] == list(range(1, 14))
        assert SCHEDULE[0].columns == ("cape",)
        assert SCHEDULE[1].columns == ("cxp",)
        assert SCHEDULE[8].columns == ("swr", "tair")
        assert SCHEDULE[12].columns == ("swr", "tair", "rh", "wind", "precip", "sp")

    def test_labels_and_ids(self):
        from strikerate.eval.schedule import get_subset

        subset = get_subset(10)
        assert subset.label == "SWR + T + RH"
        assert subset.model_id("G") == "G10"
        assert get_subset(2).label == "CAPE x P"

    def test_bayes_tiers(self):
        from strikerate.eval.schedule import bayes_schedule

        tiers = bayes_schedule()
        assert [s.number for s in tiers] == [1, 9, 10, 11, 13]
        assert [len(s.columns) for s in tiers] == [1, 2, 3, 4, 6]

    def test_unknown_subset(self):
        from strikerate.eval.schedule import get_subset

        with pytest.raises(KeyError):
            get_subset(14)


class TestFittedModel:
    def test_formatted_coefficient(self):
        assert Coefficient("a", 1.23456, 0.1).formatted() == "1.235 ± 0.1"
        assert Coefficient("a", 2.0).formatted() == "2"

    def test_immutable(self, make_panel):
        panel = make_panel(n_rows=60)
        fitted = LinearFamily().fit(panel, ["cape"], "N1")

        with pytest.raises(dataclasses.FrozenInstanceError):
            fitted.model_id = "N2"
        with pytest.raises(TypeError):
            fitted.extras["n_obs"] = 0

    def test_predictor_form(self):
        assert linear_predictor_form(["swr", "tair"]) == "a + b*SWR + c*T"

    def test_factory(self):
        assert isinstance(create_family("linear"), LinearFamily)
        assert isinstance(create_family("glm", maxiter=50), GammaGLMFamily)
        with pytest.raises(ValueError, match="Unknown family type"):
            create_family("forest")


class TestLinearFamily:
    def test_half_widths_are_1_96_se(self, make_panel):
        panel = make_panel(n_rows=80)
        fitted = LinearFamily().fit(panel, ["cape", "swr"], "N99")

        X = sm.add_constant(panel[["cape", "swr"]].to_numpy())
        ref = sm.OLS(panel["strikes"].to_numpy(), X).fit()

        assert [c.name for c in fitted.coefficients] == ["(Intercept)", "cape", "swr"]
        np.testing.assert_allclose(fitted.estimates, ref.params)
        np.testing.assert_allclose(
            [c.half_width for c in fitted.coefficients], 1.96 * ref.bse
        )
        assert fitted.predictors == "CAPE + SWR"
        assert fitted.functional_form == "y = a + b*CAPE + c*SWR"

    def test_recovers_linear_relationship(self):
        """strikes = 2*cape + noise on 100 rows, fitted on {CAPE}."""
        from strikerate.eval.metrics import correlation, rmse
        from strikerate.eval.splits import RandomSplit

        rng = np.random.default_rng(11)
        sigma = 1.0
        cape = rng.uniform(0.0, 10.0, 100)
        panel = pd.DataFrame({
            "cape": cape,
            "signal": 2.0 * cape,
            "strikes": 2.0 * cape + rng.normal(0.0, sigma, 100),
        })
        train, test = RandomSplit().split(panel)
        train_z, test_z = _standardized(train, test, ["cape"])

        family = LinearFamily()
        pred = family.predict(family.fit(train_z, ["cape"], "N1"), test_z)

        assert rmse(test["signal"], pred) < 0.5 * sigma
        assert rmse(test["strikes"], pred) < 1.5 * sigma
        assert correlation(test["strikes"], pred) > 0.9

        # Slope on the standardized scale is 2 * sd(train cape)
        fitted = family.fit(train_z, ["cape"], "N1")
        assert fitted.coef("cape") == pytest.approx(2.0 * train["cape"].std(), rel=0.1)


class TestGammaGLMFamily:
    @pytest.fixture
    def decaying_panel(self):
        rng = np.random.default_rng(12)
        cape = rng.uniform(0.0, 10.0, 200)
        mean = np.exp(2.0 - 0.3 * cape)
        strikes = rng.gamma(shape=20.0, scale=mean / 20.0)
        return pd.DataFrame({"cape": cape, "strikes": strikes})

    def test_positive_where_linear_goes_negative(self, decaying_panel):
        """Log link keeps GLM predictions positive; OLS extrapolates below 0."""
        test = pd.DataFrame({"cape": [0.0, 5.0, 30.0, 50.0], "strikes": 1.0})
        train_z, test_z = _standardized(decaying_panel, test, ["cape"])

        linear, glm = LinearFamily(), GammaGLMFamily()
        lin_pred = linear.predict(linear.fit(train_z, ["cape"], "N1"), test_z)
        glm_pred = glm.predict(glm.fit(train_z, ["cape"], "G1"), test_z)

        assert (lin_pred < 0).any()
        assert (glm_pred > 0).all()
        assert np.all(np.isfinite(glm_pred))

    def test_recovers_log_link_coefficients(self, decaying_panel):
        glm = GammaGLMFamily()
        fitted = glm.fit(decaying_panel, ["cape"], "G1")

        assert fitted.coef("(Intercept)") == pytest.approx(2.0, abs=0.15)
        assert fitted.coef("cape") == pytest.approx(-0.3, abs=0.03)
        assert fitted.extras["converged"] is True
        assert fitted.functional_form == "y = exp(a + b*CAPE)"

    def test_skips_nonpositive_training_rows(self, decaying_panel):
        """Zero responses are left out of the Gamma fit, not rejected."""
        df = decaying_panel.copy()
        df.loc[df.index[:15], "strikes"] = 0.0
        glm = GammaGLMFamily()

        fitted = glm.fit(df, ["cape"], "G1")
        reference = glm.fit(df[df["strikes"] > 0], ["cape"], "G1")

        assert fitted.extras["n_excluded"] == 15
        assert fitted.extras["n_obs"] == len(df) - 15
        np.testing.assert_allclose(fitted.estimates, reference.estimates)
        # Predictions still cover every row, zero-strike ones included
        assert (glm.predict(fitted, df) > 0).all()

    def test_all_nonpositive_raises(self, decaying_panel):
        df = decaying_panel.copy()
        df["strikes"] = 0.0
        with pytest.raises(ValueError, match="strictly positive"):
            GammaGLMFamily().fit(df, ["cape"], "G1")

    def test_predict_matches_exp_linear_predictor(self, decaying_panel):
        glm = GammaGLMFamily()
        fitted = glm.fit(decaying_panel, ["cape"], "G1")

        a, b = fitted.estimates
        expected = np.exp(a + b * decaying_panel["cape"].to_numpy())
        np.testing.assert_allclose(glm.predict(fitted, decaying_panel), expected)
