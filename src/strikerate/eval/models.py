"""Regression model families for strike-rate prediction.

This module provides the fitted-model record shared by every family and
the two classical regression families fitted over the covariate schedule.

Models:
- LinearFamily: OLS on standardized covariates (N1..N13)
- GammaGLMFamily: Gamma GLM with log link, fitted by IRLS (G1..G13)

Each family is a stateless strategy: fit() returns an immutable
FittedModel and predict() evaluates one on new (standardized) rows.
"""

from __future__ import annotations

import logging
import string
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd
import statsmodels.api as sm

from strikerate.errors import FitConvergenceWarning
from strikerate.schemas.panel import COVARIATE_LABELS, RESPONSE

logger = logging.getLogger(__name__)

# 95% normal quantile used for every reported half-width
Z95 = 1.96

INTERCEPT = "(Intercept)"


@dataclass(frozen=True)
class Coefficient:
    """A fitted coefficient and its 95% confidence half-width.

    Attributes:
        name: Term name ("(Intercept)", a covariate column, "a", ...)
        estimate: Point estimate (or posterior mean)
        half_width: 1.96 x standard error (or posterior sd); None if unknown
    """
    name: str
    estimate: float
    half_width: float | None = None

    def formatted(self) -> str:
        """Render as "estimate ± half-width"."""
        if self.half_width is None:
            return f"{self.estimate:.4g}"
        return f"{self.estimate:.4g} ± {self.half_width:.4g}"


@dataclass(frozen=True)
class FittedModel:
    """Immutable result of fitting one model on the training partition.

    Attributes:
        model_id: Identifier used in output tables (e.g. "N5", "C3")
        family: Group name ("Linear", "GLM", "Bayesian", "Chen", ...)
        covariates: Panel columns used as predictors, in model order
        coefficients: Fitted coefficients in reporting order
        form: Machine tag for the functional form (drives prediction)
        functional_form: Human-readable equation
        fitting_function: Fitting routine reported in performance tables
        distribution: Assumed response distribution
        extras: Family-specific details (standardization stats, diagnostics)
    """
    model_id: str
    family: str
    covariates: tuple[str, ...]
    coefficients: tuple[Coefficient, ...]
    form: str
    functional_form: str
    fitting_function: str
    distribution: str
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def predictors(self) -> str:
        return " + ".join(COVARIATE_LABELS.get(c, c) for c in self.covariates)

    @property
    def estimates(self) -> np.ndarray:
        return np.array([c.estimate for c in self.coefficients], dtype=float)

    def coef(self, name: str) -> float:
        """Estimate of a named coefficient."""
        for c in self.coefficients:
            if c.name == name:
                return c.estimate
        raise KeyError(f"{self.model_id} has no coefficient '{name}'")


@runtime_checkable
class ModelFamily(Protocol):
    """Protocol for a model family fitted over covariate subsets.

    Attributes:
        group_name: Family label used in output tables
        prefix: Model id prefix ("N", "G", "B")
        standardize: Whether the family consumes standardized covariates
    """

    group_name: str
    prefix: str
    standardize: bool

    def fit(
        self,
        train: pd.DataFrame,
        covariates: Sequence[str],
        model_id: str,
    ) -> FittedModel:
        """Fit on training rows and return an immutable record."""
        ...

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        """Predict strike rate for each row of data."""
        ...


def design_matrix(df: pd.DataFrame, covariates: Sequence[str]) -> np.ndarray:
    """Covariate matrix with a leading column of ones."""
    missing = [c for c in covariates if c not in df.columns]
    if missing:
        raise ValueError(f"Missing covariate columns: {missing}")
    X = df[list(covariates)].to_numpy(dtype=float)
    return sm.add_constant(X, has_constant="add")


def linear_predictor_form(covariates: Sequence[str], letters: str = string.ascii_lowercase) -> str:
    """Render "a + b*SWR + c*T" for an intercept plus covariates."""
    terms = [letters[0]]
    for letter, col in zip(letters[1:], covariates):
        terms.append(f"{letter}*{COVARIATE_LABELS.get(col, col)}")
    return " + ".join(terms)


def _response(train: pd.DataFrame) -> np.ndarray:
    return train[RESPONSE].to_numpy(dtype=float)


def positive_response_rows(train: pd.DataFrame, model_id: str, min_rows: int = 2) -> pd.DataFrame:
    """Training rows usable by a Gamma likelihood (strikes > 0).

    Rows with strikes <= 0 are dropped for this fit only and the count is
    logged. The partition itself is left untouched, so the other families
    still see every row.

    Raises:
        ValueError: If fewer than min_rows positive rows remain
    """
    keep = train[RESPONSE].to_numpy(dtype=float) > 0
    n_dropped = int(np.sum(~keep))
    if n_dropped:
        logger.info(
            "%s: excluding %d of %d training rows with %s <= 0 from the Gamma fit",
            model_id, n_dropped, len(train), RESPONSE,
        )
    if int(keep.sum()) < min_rows:
        raise ValueError(
            f"{model_id}: Gamma likelihood requires strictly positive {RESPONSE}; "
            f"only {int(keep.sum())} of {len(train)} training rows are > 0"
        )
    return train[keep]


def _coefficients(
    covariates: Sequence[str],
    params: np.ndarray,
    bse: np.ndarray,
) -> tuple[Coefficient, ...]:
    names = [INTERCEPT] + list(covariates)
    return tuple(
        Coefficient(name=n, estimate=float(p), half_width=float(Z95 * s))
        for n, p, s in zip(names, params, bse)
    )


class LinearFamily:
    """Ordinary least squares: strikes ~ 1 + covariates.

    Predictions are the affine combination evaluated on standardized
    covariates. Nothing stops them going negative; that is a known
    limitation of the linear form, left as is.
    """

    group_name = "Linear"
    prefix = "N"
    standardize = True
    fitting_function = "lm"
    distribution = "Normal"

    def fit(
        self,
        train: pd.DataFrame,
        covariates: Sequence[str],
        model_id: str,
    ) -> FittedModel:
        covariates = tuple(covariates)
        X = design_matrix(train, covariates)
        y = _response(train)

        results = sm.OLS(y, X).fit()

        return FittedModel(
            model_id=model_id,
            family=self.group_name,
            covariates=covariates,
            coefficients=_coefficients(covariates, results.params, results.bse),
            form="linear",
            functional_form="y = " + linear_predictor_form(covariates),
            fitting_function=self.fitting_function,
            distribution=self.distribution,
            extras=MappingProxyType({
                "n_obs": int(results.nobs),
                "r_squared": float(results.rsquared),
                "aic": float(results.aic),
            }),
        )

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        X = design_matrix(data, fitted.covariates)
        return X @ fitted.estimates


class GammaGLMFamily:
    """Gamma GLM with log link: E[strikes] = exp(b0 + b.x).

    Fitted by IRLS. The log link keeps every prediction strictly positive
    for finite covariates. The Gamma likelihood needs strictly positive
    responses, so training rows with strikes <= 0 are left out of the fit
    (predictions are still made for every test row).

    Args:
        maxiter: IRLS iteration cap
    """

    group_name = "GLM"
    prefix = "G"
    standardize = True
    fitting_function = "glm"
    distribution = "Gamma"

    def __init__(self, maxiter: int = 100) -> None:
        self.maxiter = maxiter

    def fit(
        self,
        train: pd.DataFrame,
        covariates: Sequence[str],
        model_id: str,
    ) -> FittedModel:
        covariates = tuple(covariates)
        n_rows = len(train)
        train = positive_response_rows(train, model_id, min_rows=len(covariates) + 2)
        X = design_matrix(train, covariates)
        y = _response(train)

        family = sm.families.Gamma(link=sm.families.links.Log())
        results = sm.GLM(y, X, family=family).fit(maxiter=self.maxiter)

        converged = bool(getattr(results, "converged", True))
        if not converged:
            msg = f"{model_id}: IRLS did not converge in {self.maxiter} iterations"
            logger.warning(msg)
            warnings.warn(msg, FitConvergenceWarning, stacklevel=2)

        return FittedModel(
            model_id=model_id,
            family=self.group_name,
            covariates=covariates,
            coefficients=_coefficients(covariates, results.params, results.bse),
            form="log_linear",
            functional_form="y = exp(" + linear_predictor_form(covariates) + ")",
            fitting_function=self.fitting_function,
            distribution=self.distribution,
            extras=MappingProxyType({
                "n_obs": int(results.nobs),
                "n_excluded": n_rows - len(train),
                "converged": converged,
                "aic": float(results.aic),
                "deviance": float(results.deviance),
                "scale": float(results.scale),
            }),
        )

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        X = design_matrix(data, fitted.covariates)
        return np.exp(X @ fitted.estimates)


def create_family(family_type: str, **kwargs: Any) -> ModelFamily:
    """Factory function to create a schedule-driven family by type.

    Args:
        family_type: "linear", "glm" or "bayes"
        **kwargs: Passed to the family constructor

    Returns:
        Configured ModelFamily instance
    """
    if family_type == "linear":
        return LinearFamily()
    elif family_type == "glm":
        return GammaGLMFamily(**kwargs)
    elif family_type == "bayes":
        from strikerate.eval.bayes import BayesianGammaFamily

        return BayesianGammaFamily(**kwargs)
    else:
        raise ValueError(f"Unknown family type: {family_type}")
