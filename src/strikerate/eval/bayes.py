"""Bayesian Gamma regression with covariate-dependent shape and rate.

Model, for each observation i:

    strikes_i ~ Gamma(shape=alpha_i, rate=beta_i)
    alpha_i = g(a0 + a . x_i),   beta_i = g(b0 + b . x_i)

Two parameterizations are used and they are not interchangeable:

- "identity" (tiers with at most 3 covariates): g is the identity and the
  linear predictors themselves must stay positive. Any draw giving a
  non-positive alpha_i or beta_i has zero posterior density. Priors are
  Normal(0, 10).
- "log" (larger tiers): g = exp, so positivity holds by construction.
  Priors are Normal(0, 1); wider priors on the log scale overflow exp().

Point predictions are the Gamma mean alpha(x)/beta(x) evaluated at the
posterior-mean coefficients.

Sampling is delegated to a PosteriorSampler so the family does not depend
on one backend. PyMCSampler runs NUTS and summarizes with ArviZ.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd

from strikerate.errors import FitConvergenceWarning
from strikerate.eval.models import (
    INTERCEPT,
    Z95,
    Coefficient,
    FittedModel,
    linear_predictor_form,
    positive_response_rows,
)
from strikerate.schemas.panel import RESPONSE

logger = logging.getLogger(__name__)

Parameterization = Literal["identity", "log"]

# Tiers up to this many covariates use the identity parameterization
MAX_IDENTITY_COVARIATES = 3

# PSIS-LOO estimates are unreliable for observations above this k
PARETO_K_MAX = 0.7


@dataclass(frozen=True)
class GammaRegressionSpec:
    """Declarative description of one probabilistic program.

    Attributes:
        covariates: Predictor columns, in model order
        parameterization: "identity" (constrained) or "log"
        prior_sigma: Scale of the Normal(0, sigma) prior on every coefficient
    """
    covariates: tuple[str, ...]
    parameterization: Parameterization
    prior_sigma: float

    @property
    def n_coef(self) -> int:
        return len(self.covariates) + 1

    @property
    def coef_names(self) -> list[str]:
        return [INTERCEPT] + list(self.covariates)

    @classmethod
    def for_covariates(cls, covariates: Sequence[str]) -> GammaRegressionSpec:
        """Spec for a covariate tier, choosing parameterization by tier size."""
        covariates = tuple(covariates)
        if len(covariates) <= MAX_IDENTITY_COVARIATES:
            return cls(covariates, "identity", 10.0)
        return cls(covariates, "log", 1.0)


@dataclass
class PosteriorSummary:
    """What a sampler hands back for one fit.

    Attributes:
        shape_mean, shape_sd: Posterior mean/sd of the shape coefficients
        rate_mean, rate_sd: Posterior mean/sd of the rate coefficients
        pointwise_log_lik: Posterior-mean log-likelihood per training row
        rhat_max: Largest R-hat over all coefficients
        ess_min: Smallest bulk effective sample size
        n_divergent: Divergent transitions after tuning
        elpd_loo: PSIS-LOO expected log predictive density, if computed
        n_high_pareto_k: Observations whose PSIS Pareto k exceeds
            PARETO_K_MAX, i.e. where elpd_loo is unreliable
    """
    shape_mean: np.ndarray
    shape_sd: np.ndarray
    rate_mean: np.ndarray
    rate_sd: np.ndarray
    pointwise_log_lik: np.ndarray
    rhat_max: float
    ess_min: float
    n_divergent: int = 0
    elpd_loo: float | None = None
    n_high_pareto_k: int = 0


@runtime_checkable
class PosteriorSampler(Protocol):
    """Capability interface for posterior sampling backends."""

    def sample(
        self,
        spec: GammaRegressionSpec,
        X: np.ndarray,
        y: np.ndarray,
    ) -> PosteriorSummary:
        """Sample the posterior of spec given covariates X and response y."""
        ...


def _link(eta: np.ndarray, parameterization: Parameterization) -> np.ndarray:
    return np.exp(eta) if parameterization == "log" else eta


def gamma_mean(
    X: np.ndarray,
    shape_coef: np.ndarray,
    rate_coef: np.ndarray,
    parameterization: Parameterization,
) -> np.ndarray:
    """alpha(x) / beta(x) for covariate matrix X (no intercept column)."""
    alpha = _link(shape_coef[0] + X @ shape_coef[1:], parameterization)
    beta = _link(rate_coef[0] + X @ rate_coef[1:], parameterization)
    with np.errstate(divide="ignore", invalid="ignore"):
        return alpha / beta


def initial_values(spec: GammaRegressionSpec, y: np.ndarray) -> dict[str, np.ndarray]:
    """Starting point with alpha = 1 and beta = 1 / mean(y) for every row.

    Slopes start at zero, so the starting point is inside the positive
    region for the identity parameterization.
    """
    shape0 = np.zeros(spec.n_coef)
    rate0 = np.zeros(spec.n_coef)
    mean_y = float(np.mean(y))
    if spec.parameterization == "log":
        rate0[0] = -np.log(mean_y)
    else:
        shape0[0] = 1.0
        rate0[0] = 1.0 / mean_y
    return {"a": shape0, "b": rate0}


class PyMCSampler:
    """NUTS sampler backed by PyMC, summarized with ArviZ.

    Chains are independent; with cores > 1 PyMC runs them in separate
    processes and merges the traces after every chain finishes.

    Args:
        draws: Posterior draws per chain
        tune: Tuning iterations per chain
        chains: Number of chains
        cores: Parallel processes for chains
        seed: Random seed
        target_accept: NUTS target acceptance rate
        compute_loo: Compute PSIS-LOO from the pointwise log-likelihood
    """

    def __init__(
        self,
        draws: int = 1000,
        tune: int = 1000,
        chains: int = 4,
        cores: int = 1,
        seed: int = 123,
        target_accept: float = 0.9,
        compute_loo: bool = True,
    ) -> None:
        self.draws = draws
        self.tune = tune
        self.chains = chains
        self.cores = cores
        self.seed = seed
        self.target_accept = target_accept
        self.compute_loo = compute_loo

    def build_model(self, spec: GammaRegressionSpec, X: np.ndarray, y: np.ndarray):
        """Build the PyMC model for one spec."""
        import pymc as pm
        import pytensor.tensor as pt

        coords = {
            "coef": spec.coef_names,
            "covariate": list(spec.covariates),
            "obs": np.arange(len(y)),
        }
        with pm.Model(coords=coords) as model:
            x_data = pm.Data("x", X, dims=("obs", "covariate"))
            a = pm.Normal("a", mu=0.0, sigma=spec.prior_sigma, dims="coef")
            b = pm.Normal("b", mu=0.0, sigma=spec.prior_sigma, dims="coef")

            eta_a = a[0] + pt.dot(x_data, a[1:])
            eta_b = b[0] + pt.dot(x_data, b[1:])

            if spec.parameterization == "log":
                alpha = pm.math.exp(eta_a)
                beta = pm.math.exp(eta_b)
            else:
                alpha = eta_a
                beta = eta_b
                pm.Potential(
                    "positive_shape_rate",
                    pt.switch(pt.all(alpha > 0) & pt.all(beta > 0), 0.0, -np.inf),
                )

            pm.Gamma("y", alpha=alpha, beta=beta, observed=y, dims="obs")
        return model

    def sample(
        self,
        spec: GammaRegressionSpec,
        X: np.ndarray,
        y: np.ndarray,
    ) -> PosteriorSummary:
        import arviz as az
        import pymc as pm

        model = self.build_model(spec, X, y)
        with model:
            idata = pm.sample(
                draws=self.draws,
                tune=self.tune,
                chains=self.chains,
                cores=self.cores,
                random_seed=self.seed,
                target_accept=self.target_accept,
                init="adapt_diag",
                initvals=initial_values(spec, y),
                idata_kwargs={"log_likelihood": True},
                progressbar=False,
            )

        posterior = idata.posterior
        var_names = ["a", "b"]
        rhat = az.rhat(idata, var_names=var_names)
        ess = az.ess(idata, var_names=var_names, method="bulk")

        n_divergent = 0
        if "diverging" in idata.sample_stats:
            n_divergent = int(idata.sample_stats["diverging"].sum())

        elpd_loo = None
        n_high_pareto_k = 0
        if self.compute_loo:
            loo = az.loo(idata, pointwise=True)
            elpd_loo = float(loo.elpd_loo)
            n_high_pareto_k = int((loo.pareto_k.to_numpy() > PARETO_K_MAX).sum())

        return PosteriorSummary(
            shape_mean=posterior["a"].mean(("chain", "draw")).to_numpy(),
            shape_sd=posterior["a"].std(("chain", "draw")).to_numpy(),
            rate_mean=posterior["b"].mean(("chain", "draw")).to_numpy(),
            rate_sd=posterior["b"].std(("chain", "draw")).to_numpy(),
            pointwise_log_lik=idata.log_likelihood["y"].mean(("chain", "draw")).to_numpy(),
            rhat_max=float(rhat.to_array().max()),
            ess_min=float(ess.to_array().min()),
            n_divergent=n_divergent,
            elpd_loo=elpd_loo,
            n_high_pareto_k=n_high_pareto_k,
        )


class BayesianGammaFamily:
    """Bayesian Gamma regression over the Bayesian covariate tiers.

    Convergence is checked on every fit. A fit that misses the R-hat or
    ESS thresholds still returns predictions but raises a
    FitConvergenceWarning and is logged, and its FittedModel records
    converged=False.

    Args:
        sampler: PosteriorSampler backend (default: PyMCSampler())
        rhat_max: Largest acceptable R-hat
        ess_min: Smallest acceptable bulk ESS
    """

    group_name = "Bayesian"
    prefix = "B"
    standardize = True
    fitting_function = "MCMC (NUTS)"
    distribution = "Gamma"

    def __init__(
        self,
        sampler: PosteriorSampler | None = None,
        rhat_max: float = 1.01,
        ess_min: float = 400.0,
    ) -> None:
        self.sampler = sampler if sampler is not None else PyMCSampler()
        self.rhat_max = rhat_max
        self.ess_min = ess_min

    def fit(
        self,
        train: pd.DataFrame,
        covariates: Sequence[str],
        model_id: str,
    ) -> FittedModel:
        spec = GammaRegressionSpec.for_covariates(covariates)
        n_rows = len(train)
        train = positive_response_rows(train, model_id, min_rows=spec.n_coef + 1)
        X = train[list(spec.covariates)].to_numpy(dtype=float)
        y = train[RESPONSE].to_numpy(dtype=float)

        summary = self.sampler.sample(spec, X, y)

        converged = summary.rhat_max <= self.rhat_max and summary.ess_min >= self.ess_min
        if not converged:
            msg = (
                f"{model_id} ({spec.parameterization}, {len(spec.covariates)} covariates) "
                f"did not converge: max R-hat={summary.rhat_max:.3f} "
                f"(limit {self.rhat_max}), min ESS={summary.ess_min:.0f} "
                f"(limit {self.ess_min:.0f})"
            )
            logger.warning(msg)
            warnings.warn(msg, FitConvergenceWarning, stacklevel=2)
        if summary.n_divergent:
            logger.warning("%s: %d divergent transitions", model_id, summary.n_divergent)
        if summary.n_high_pareto_k:
            logger.warning(
                "%s: %d of %d observations have Pareto k > %.1f; elpd_loo is unreliable",
                model_id, summary.n_high_pareto_k, len(y), PARETO_K_MAX,
            )

        coefficients = tuple(
            Coefficient(f"{prefix}{name}", float(m), float(Z95 * s))
            for prefix, means, sds in (
                ("shape:", summary.shape_mean, summary.shape_sd),
                ("rate:", summary.rate_mean, summary.rate_sd),
            )
            for name, m, s in zip(spec.coef_names, means, sds)
        )

        form = linear_predictor_form(spec.covariates)
        if spec.parameterization == "log":
            functional_form = f"y ~ Gamma(exp({form}), exp({form}))"
        else:
            functional_form = f"y ~ Gamma({form}, {form}); shape, rate > 0"

        return FittedModel(
            model_id=model_id,
            family=self.group_name,
            covariates=spec.covariates,
            coefficients=coefficients,
            form=f"gamma_{spec.parameterization}",
            functional_form=functional_form,
            fitting_function=self.fitting_function,
            distribution=self.distribution,
            extras=MappingProxyType({
                "parameterization": spec.parameterization,
                "prior_sigma": spec.prior_sigma,
                "rhat_max": summary.rhat_max,
                "ess_min": summary.ess_min,
                "n_divergent": summary.n_divergent,
                "elpd_loo": summary.elpd_loo,
                "n_high_pareto_k": summary.n_high_pareto_k,
                "n_excluded": n_rows - len(train),
                "converged": converged,
                "pointwise_log_lik": summary.pointwise_log_lik,
            }),
        )

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        n_coef = len(fitted.covariates) + 1
        estimates = fitted.estimates
        X = data[list(fitted.covariates)].to_numpy(dtype=float)
        return gamma_mean(
            X,
            shape_coef=estimates[:n_coef],
            rate_coef=estimates[n_coef:],
            parameterization=fitted.extras["parameterization"],
        )


def diagnostics_frame(fits: Sequence[FittedModel]) -> pd.DataFrame:
    """Tabulate sampler diagnostics for a set of Bayesian fits."""
    rows = []
    for fitted in fits:
        extras = fitted.extras
        rows.append({
            "model_name": fitted.model_id,
            "predictors": fitted.predictors,
            "parameterization": extras.get("parameterization"),
            "rhat_max": extras.get("rhat_max"),
            "ess_min": extras.get("ess_min"),
            "n_divergent": extras.get("n_divergent"),
            "elpd_loo": extras.get("elpd_loo"),
            "n_high_pareto_k": extras.get("n_high_pareto_k"),
            "n_excluded": extras.get("n_excluded"),
            "converged": extras.get("converged"),
        })
    return pd.DataFrame(rows)
