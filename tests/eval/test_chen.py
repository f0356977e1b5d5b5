"""Tests for the CAPE x P parametric fits, the bin model and the ensemble."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from strikerate.eval.nonparametric import NO_BIN, BinTable, NonParametricBinFamily, bin_index
from strikerate.eval.parametric import (
    ensemble_mean,
    fit_linear_nls,
    fit_log_log,
    fit_power_nls,
    fit_scale,
    predict_parametric,
    predict_with_fallback,
)


def _frame(x, y) -> pd.DataFrame:
    return pd.DataFrame({"cxp": np.asarray(x, dtype=float), "strikes": np.asarray(y, dtype=float)})


class TestBinEdges:
    """Boundary handling of the 50-bin lookup (5 bins here for readability)."""

    EDGES = np.linspace(0.0, 10.0, 6)  # 0, 2, 4, 6, 8, 10

    def test_train_max_falls_in_last_bin(self):
        assert bin_index([10.0], self.EDGES)[0] == 4

    def test_train_min_falls_in_first_bin(self):
        assert bin_index([0.0], self.EDGES)[0] == 0

    def test_interior_edge_belongs_to_upper_bin(self):
        np.testing.assert_array_equal(bin_index([2.0, 4.0, 7.999], self.EDGES), [1, 2, 3])

    def test_outside_range_has_no_bin(self):
        np.testing.assert_array_equal(
            bin_index([-0.001, 10.001, np.nan], self.EDGES), [NO_BIN] * 3
        )


class TestBinTable:
    def test_bin_means(self):
        x = np.arange(11.0)  # 0..10
        y = x * 2.0
        table = BinTable.fit(x, y, n_bins=5)

        # [0,2) -> {0,1}, [2,4) -> {2,3}, ..., [8,10] -> {8,9,10}
        np.testing.assert_allclose(table.means, [1.0, 5.0, 9.0, 13.0, 18.0])
        np.testing.assert_array_equal(table.counts, [2, 2, 2, 2, 3])
        assert table.global_mean == pytest.approx(10.0)

    def test_empty_bin_uses_global_mean(self):
        table = BinTable.fit([0.0, 0.5, 9.5, 10.0], [1.0, 1.0, 5.0, 5.0], n_bins=10)
        pred, fallback = table.lookup(np.array([5.0, 0.2]))

        assert pred[0] == table.global_mean == 3.0
        assert pred[1] == 1.0
        np.testing.assert_array_equal(fallback, [True, False])

    def test_constant_predictor_rejected(self):
        with pytest.raises(ValueError, match="constant predictor"):
            BinTable.fit([1.0, 1.0, 1.0], [1.0, 2.0, 3.0])


class TestNonParametricBinFamily:
    @pytest.fixture
    def train(self):
        rng = np.random.default_rng(21)
        x = rng.uniform(1.0, 9.0, 200)
        return _frame(x, 0.5 * x + rng.normal(0.0, 0.1, 200))

    def test_train_max_uses_last_bin(self, train):
        family = NonParametricBinFamily(n_bins=50)
        fitted = family.fit(train)
        table = fitted.extras["table"]

        x_max = train["cxp"].max()
        pred, n_fallback = family.predict_with_fallback(fitted, _frame([x_max], [0.0]))

        last_bin = table.counts.size - 1
        assert table.counts[last_bin] >= 1
        assert pred[0] == table.means[last_bin]
        assert n_fallback == 0

    def test_out_of_range_returns_train_mean(self, train):
        family = NonParametricBinFamily(n_bins=50)
        fitted = family.fit(train)

        test = _frame([0.0, 100.0, train["cxp"].min() - 1e-9], [0.0, 0.0, 0.0])
        pred, n_fallback = family.predict_with_fallback(fitted, test)

        assert np.all(pred == np.mean(train["strikes"].to_numpy(dtype=float)))
        assert n_fallback == 3

    def test_fitted_record(self, train):
        fitted = NonParametricBinFamily(n_bins=50).fit(train)

        assert fitted.model_id == "NP"
        assert fitted.coefficients == ()
        assert fitted.extras["x_min"] == train["cxp"].min()
        assert fitted.extras["x_max"] == train["cxp"].max()


class TestParametricFits:
    @pytest.fixture
    def power_data(self):
        rng = np.random.default_rng(22)
        x = rng.uniform(1.0, 10.0, 150)
        return _frame(x, 2.0 * x ** 0.7 * np.exp(rng.normal(0.0, 0.01, 150)))

    def test_log_log_power_law(self, power_data):
        fitted = fit_log_log(power_data)

        assert fitted.coef("a") == pytest.approx(np.log(2.0), abs=0.02)
        assert fitted.coef("b") == pytest.approx(0.7, abs=0.02)

        x = np.array([1.0, 4.0])
        pred = predict_parametric(fitted, _frame(x, [0.0, 0.0]))
        np.testing.assert_allclose(pred, np.exp(fitted.coef("a")) * x ** fitted.coef("b"))

    def test_log_log_excludes_nonpositive_x(self, power_data):
        df = pd.concat([power_data, _frame([0.0, 0.0], [1.0, 1.0])], ignore_index=True)
        fitted = fit_log_log(df)

        assert fitted.extras["n_excluded"] == 2
        assert fitted.coef("b") == pytest.approx(0.7, abs=0.02)
        assert predict_parametric(fitted, _frame([0.0], [0.0]))[0] == 0.0

    def test_negative_exponent_at_zero_uses_train_mean(self):
        rng = np.random.default_rng(24)
        x = rng.uniform(1.0, 10.0, 150)
        train = _frame(x, 3.0 * x ** -0.5 * np.exp(rng.normal(0.0, 0.01, 150)))
        test = _frame([0.0, 4.0], [0.0, 0.0])

        for fitted in (fit_log_log(train), fit_power_nls(train)):
            assert fitted.coef("b") == pytest.approx(-0.5, abs=0.02)

            pred, n_fallback = predict_with_fallback(fitted, test)

            assert n_fallback == 1
            assert np.isfinite(pred).all()
            assert pred[0] == pytest.approx(train["strikes"].mean())
            assert pred[1] == pytest.approx(1.5, rel=0.02)
            np.testing.assert_allclose(predict_parametric(fitted, test), pred)

    def test_power_nls(self, power_data):
        fitted = fit_power_nls(power_data)

        assert fitted.coef("a") == pytest.approx(2.0, rel=0.05)
        assert fitted.coef("b") == pytest.approx(0.7, abs=0.02)
        assert fitted.fitting_function == "nls"

    def test_scale_discards_intercept(self):
        x = np.linspace(1.0, 10.0, 40)
        fitted = fit_scale(_frame(x, 4.0 * x + 7.0))

        assert [c.name for c in fitted.coefficients] == ["a"]
        assert fitted.coef("a") == pytest.approx(4.0)
        assert fitted.extras["discarded_intercept"] == pytest.approx(7.0)
        np.testing.assert_allclose(predict_parametric(fitted, _frame([2.0], [0.0])), [8.0])

    def test_linear_nls(self):
        rng = np.random.default_rng(23)
        x = np.linspace(1.0, 10.0, 40)
        fitted = fit_linear_nls(_frame(x, 4.0 * x + 7.0 + rng.normal(0.0, 0.01, 40)))

        assert fitted.coef("a") == pytest.approx(4.0, abs=0.01)
        assert fitted.coef("b") == pytest.approx(7.0, abs=0.05)
        np.testing.assert_allclose(
            predict_parametric(fitted, _frame([2.0], [0.0])),
            [fitted.coef("a") * 2.0 + fitted.coef("b")],
        )


class TestEnsemble:
    def test_mean_of_members_excludes_c4(self):
        """C5 = (C1 + C2 + C3 + NP) / 4; C4 is ignored."""
        predictions = {
            "C1": np.array([1.0, 2.0, 0.5]),
            "C2": np.array([3.0, 4.0, 1.5]),
            "C3": np.array([5.0, 6.0, 2.5]),
            "C4": np.array([100.0, -100.0, 1e6]),
            "NP": np.array([7.0, 8.0, 3.5]),
        }
        np.testing.assert_allclose(ensemble_mean(predictions), [4.0, 5.0, 2.0])

    def test_missing_member_raises(self):
        with pytest.raises(KeyError, match="NP"):
            ensemble_mean({"C1": [1.0], "C2": [1.0], "C3": [1.0], "C4": [1.0]})


class TestEvaluateChen:
    def test_family_tables(self, make_panel):
        from strikerate.eval.config import ChenConfig, SplitConfig
        from strikerate.eval.data import load_panel, prepare_dataset
        from strikerate.eval.runner import evaluate_chen

        dataset = prepare_dataset(load_panel(make_panel(n_rows=150)), SplitConfig())
        result = evaluate_chen(dataset, ChenConfig(), verbose=False)

        assert result.failures == []
        assert result.model_ids == ["C1", "C2", "C3", "C5", "NP"]
        assert list(result.performance["model_name"]) == ["C1", "C2", "C3", "C5", "NP"]
        # C4 is fitted and reported with its parameters only
        assert "C4" in list(result.parameters["model_label"])
        assert result.parameters.loc[result.parameters["model_label"] == "C4", "b"].notna().all()

        preds = result.predictions
        expected = preds[["C1", "C2", "C3", "NP"]].mean(axis=1)
        np.testing.assert_allclose(preds["C5"], expected)
        pd.testing.assert_index_equal(preds.index, dataset.test.index)

        diag = result.diagnostics.set_index("model_name")
        assert not diag.loc["C4", "in_ensemble"]
        assert diag.loc["NP", "n_fallback"] >= 0

    def test_report_linear_fit(self, make_panel):
        from strikerate.eval.config import ChenConfig, SplitConfig
        from strikerate.eval.data import load_panel, prepare_dataset
        from strikerate.eval.runner import evaluate_chen

        dataset = prepare_dataset(load_panel(make_panel(n_rows=150)), SplitConfig())
        result = evaluate_chen(dataset, ChenConfig(report_linear_fit=True), verbose=False)

        assert result.model_ids == ["C1", "C2", "C3", "C4", "C5", "NP"]
        # Still not part of the ensemble
        expected = result.predictions[["C1", "C2", "C3", "NP"]].mean(axis=1)
        np.testing.assert_allclose(result.predictions["C5"], expected)

    def test_zero_cxp_with_decreasing_fit(self, make_panel):
        """Test rows at cxp = 0 keep C1, C2 and the ensemble finite."""
        from dataclasses import replace

        from strikerate.eval.config import ChenConfig, SplitConfig
        from strikerate.eval.data import load_panel, prepare_dataset
        from strikerate.eval.runner import evaluate_chen

        panel = make_panel(n_rows=150)
        panel["strikes"] = 3.0 * panel["cxp"] ** -0.5
        dataset = prepare_dataset(load_panel(panel), SplitConfig())
        test = dataset.test.copy()
        test.loc[test.index[:3], "cxp"] = 0.0
        dataset = replace(dataset, test=test)

        result = evaluate_chen(dataset, ChenConfig(), verbose=False)

        assert result.failures == []
        assert result.model_ids == ["C1", "C2", "C3", "C5", "NP"]
        assert np.isfinite(result.predictions.to_numpy()).all()

        diag = result.diagnostics.set_index("model_name")
        assert diag.loc["C1", "n_fallback"] == 3
        assert diag.loc["C2", "n_fallback"] == 3
        assert diag.loc["C3", "n_fallback"] == 0
        assert diag.loc["NP", "n_fallback"] >= 3

    def test_failed_member_drops_ensemble(self, make_panel):
        from strikerate.eval.config import ChenConfig, SplitConfig
        from strikerate.eval.data import load_panel, prepare_dataset
        from strikerate.eval.runner import evaluate_chen

        panel = make_panel(n_rows=150)
        # Constant cxp: the bin model cannot be built
        panel["cxp"] = 2.0
        dataset = prepare_dataset(load_panel(panel), SplitConfig())
        result = evaluate_chen(dataset, ChenConfig(), verbose=False)

        failed = {f["model_id"] for f in result.failures}
        assert {"NP", "C5"} <= failed
        assert "C5" not in result.model_ids
