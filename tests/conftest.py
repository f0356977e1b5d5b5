"""Pytest configuration and fixtures."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def make_panel():
    """Factory fixture for creating synthetic observation panels.

    Covariates are positive and well spread so every family can be fitted.
    cape is in kJ/kg so cxp stays O(1-10).
    strikes = 0.3 + 0.8 * cape + 0.2 * cxp + noise, kept > 0.
    """

    def _make(
        n_rows: int = 120,
        seed: int = 0,
        noise_sd: float = 0.1,
        with_month: bool = True,
    ) -> pd.DataFrame:
        rng = np.random.default_rng(seed)

        cells = [(lon, lat) for lon in np.arange(-100.0, -90.0, 0.5) for lat in np.arange(30.0, 40.0, 0.5)]
        cell_idx = np.arange(n_rows) % len(cells)
        year = 2010 + np.arange(n_rows) // len(cells)

        cape = rng.uniform(0.1, 2.0, n_rows)
        precip = rng.uniform(0.5, 5.0, n_rows)
        cxp = cape * precip
        strikes = (
            0.3
            + 0.8 * cape
            + 0.2 * cxp
            + rng.normal(0.0, noise_sd, n_rows)
        )
        strikes = np.clip(strikes, 0.05, None)

        df = pd.DataFrame({
            "lon": [cells[i][0] for i in cell_idx],
            "lat": [cells[i][1] for i in cell_idx],
            "year": year,
            "strikes": strikes,
            "cape": cape,
            "precip": precip,
            "cxp": cxp,
            "tair": rng.normal(295.0, 5.0, n_rows),
            "wind": rng.uniform(1.0, 8.0, n_rows),
            "swr": rng.uniform(150.0, 350.0, n_rows),
            "sp": rng.normal(98000.0, 800.0, n_rows),
            "rh": rng.uniform(30.0, 95.0, n_rows),
        })
        if with_month:
            df["month"] = 1 + (np.arange(n_rows) // 7) % 12
        return df

    return _make


class FakeSampler:
    """Deterministic PosteriorSampler for tests.

    Returns coefficients that reproduce a constant mean of mean(y): shape
    intercept 2, rate intercept 2 / mean(y), zero slopes (or their logs for
    the log parameterization).
    """

    def __init__(self, rhat: float = 1.0, ess: float = 2000.0, n_high_pareto_k: int = 0) -> None:
        self.rhat = rhat
        self.ess = ess
        self.n_high_pareto_k = n_high_pareto_k
        self.calls = []

    def sample(self, spec, X, y):
        from strikerate.eval.bayes import PosteriorSummary

        self.calls.append(spec)
        k = spec.n_coef
        shape = np.zeros(k)
        rate = np.zeros(k)
        if spec.parameterization == "log":
            shape[0] = np.log(2.0)
            rate[0] = np.log(2.0 / np.mean(y))
        else:
            shape[0] = 2.0
            rate[0] = 2.0 / np.mean(y)
        return PosteriorSummary(
            shape_mean=shape,
            shape_sd=np.full(k, 0.1),
            rate_mean=rate,
            rate_sd=np.full(k, 0.1),
            pointwise_log_lik=np.full(len(y), -1.0),
            rhat_max=self.rhat,
            ess_min=self.ess,
            n_high_pareto_k=self.n_high_pareto_k,
        )


@pytest.fixture
def fake_sampler():
    """Factory fixture for FakeSampler instances."""

    def _make(rhat: float = 1.0, ess: float = 2000.0, n_high_pareto_k: int = 0) -> FakeSampler:
        return FakeSampler(rhat=rhat, ess=ess, n_high_pareto_k=n_high_pareto_k)

    return _make
