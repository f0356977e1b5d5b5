"""Chen-style parametric fits of strike rate on CAPE x precipitation.

All sub-models map raw cxp (x, not standardized) to strikes (y) and are
fitted on the training partition only:

- C1 power law via log-log OLS: log(y + eps) = a + b*log(x),
  predicted as exp(a) * x^b
- C2 power law via nonlinear least squares: y = a * x^b, start (1, 1)
- C3 scale: y = a*x, a = slope of OLS y ~ 1 + x (intercept discarded)
- C4 linear via nonlinear least squares: y = a*x + b, start (1, 1)
- C5 ensemble: elementwise mean of C1, C2, C3 and the binned-mean model

C1 and C2 are undefined at cxp = 0 when the fitted exponent is negative;
such test rows get the training mean strike rate and are counted.

C4 is fitted and its parameters are reported, but it never enters the
ensemble and is left out of the prediction/performance tables unless
explicitly requested: linear forms are excluded on physical-plausibility
grounds.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.optimize import curve_fit

from strikerate.eval.models import Z95, Coefficient, FittedModel
from strikerate.schemas.panel import RESPONSE

logger = logging.getLogger(__name__)

PREDICTOR = "cxp"
FAMILY = "Chen"

# Sub-models averaged into C5, in order
ENSEMBLE_MEMBERS = ("C1", "C2", "C3", "NP")
EXCLUDED_FROM_ENSEMBLE = ("C4",)


def _power(x: np.ndarray, a: float, b: float) -> np.ndarray:
    return a * np.power(x, b)


def _linear(x: np.ndarray, a: float, b: float) -> np.ndarray:
    return a * x + b


def _xy(train: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    return (
        train[PREDICTOR].to_numpy(dtype=float),
        train[RESPONSE].to_numpy(dtype=float),
    )


def _nls(
    func: Callable[..., np.ndarray],
    x: np.ndarray,
    y: np.ndarray,
    p0: Sequence[float],
    maxfev: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Nonlinear least squares; returns (params, standard errors)."""
    params, pcov = curve_fit(func, x, y, p0=list(p0), maxfev=maxfev)
    with np.errstate(invalid="ignore"):
        se = np.sqrt(np.diag(pcov))
    return params, se


def _record(
    model_id: str,
    names: Sequence[str],
    params: Sequence[float],
    se: Sequence[float],
    form: str,
    functional_form: str,
    fitting_function: str,
    **extras,
) -> FittedModel:
    return FittedModel(
        model_id=model_id,
        family=FAMILY,
        covariates=(PREDICTOR,),
        coefficients=tuple(
            Coefficient(n, float(p), float(Z95 * s)) for n, p, s in zip(names, params, se)
        ),
        form=form,
        functional_form=functional_form,
        fitting_function=fitting_function,
        distribution="Normal",
        extras=MappingProxyType(extras),
    )


def fit_log_log(train: pd.DataFrame, model_id: str = "C1", eps: float = 1e-4) -> FittedModel:
    """C1: OLS of log(y + eps) on log(x).

    Rows with x <= 0 have no logarithm and are left out of the fit.
    """
    x, y = _xy(train)
    keep = x > 0
    n_dropped = int(np.sum(~keep))
    if n_dropped:
        logger.info("%s: excluding %d training rows with %s <= 0", model_id, n_dropped, PREDICTOR)
    if keep.sum() < 3:
        raise ValueError(f"{model_id}: fewer than 3 training rows with {PREDICTOR} > 0")

    X = sm.add_constant(np.log(x[keep]), has_constant="add")
    results = sm.OLS(np.log(y[keep] + eps), X).fit()

    return _record(
        model_id,
        ["a", "b"],
        results.params,
        results.bse,
        form="power_loglog",
        functional_form=f"log(y + {eps:g}) = a + b*log(x)",
        fitting_function="lm (log-log)",
        eps=eps,
        n_excluded=n_dropped,
        train_mean=float(np.mean(y)),
    )


def fit_power_nls(train: pd.DataFrame, model_id: str = "C2", maxfev: int = 10000) -> FittedModel:
    """C2: y = a * x^b by nonlinear least squares from a=1, b=1."""
    x, y = _xy(train)
    params, se = _nls(_power, x, y, p0=(1.0, 1.0), maxfev=maxfev)
    return _record(
        model_id,
        ["a", "b"],
        params,
        se,
        form="power",
        functional_form="y = a*x^b",
        fitting_function="nls",
        train_mean=float(np.mean(y)),
    )


def fit_scale(train: pd.DataFrame, model_id: str = "C3") -> FittedModel:
    """C3: y = a*x where a is the OLS slope of y ~ 1 + x."""
    x, y = _xy(train)
    results = sm.OLS(y, sm.add_constant(x, has_constant="add")).fit()
    return _record(
        model_id,
        ["a"],
        results.params[1:],
        results.bse[1:],
        form="scale",
        functional_form="y = a*x",
        fitting_function="lm",
        discarded_intercept=float(results.params[0]),
    )


def fit_linear_nls(train: pd.DataFrame, model_id: str = "C4", maxfev: int = 10000) -> FittedModel:
    """C4: y = a*x + b by nonlinear least squares from a=1, b=1."""
    x, y = _xy(train)
    params, se = _nls(_linear, x, y, p0=(1.0, 1.0), maxfev=maxfev)
    return _record(
        model_id,
        ["a", "b"],
        params,
        se,
        form="linear_xy",
        functional_form="y = a*x + b",
        fitting_function="nls",
    )


def _evaluate(fitted: FittedModel, x: np.ndarray) -> np.ndarray:
    if fitted.form == "power_loglog":
        a, b = fitted.coef("a"), fitted.coef("b")
        # exp(a + b*log x) written so that x = 0 maps to 0 for b > 0
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.exp(a) * np.power(x, b)
    elif fitted.form == "power":
        with np.errstate(divide="ignore", invalid="ignore"):
            return _power(x, fitted.coef("a"), fitted.coef("b"))
    elif fitted.form == "scale":
        return fitted.coef("a") * x
    elif fitted.form == "linear_xy":
        return _linear(x, fitted.coef("a"), fitted.coef("b"))
    else:
        raise ValueError(f"Not a parametric form: {fitted.form}")


def predict_with_fallback(fitted: FittedModel, data: pd.DataFrame) -> tuple[np.ndarray, int]:
    """Evaluate a C1-C4 fit on raw cxp, plus the number of fallback rows.

    A power law has no finite value at x <= 0 when its exponent is
    negative. Those rows are predicted as the training mean strike rate,
    the same policy the bin model applies outside its range.
    """
    x = data[PREDICTOR].to_numpy(dtype=float)
    pred = np.asarray(_evaluate(fitted, x), dtype=float)

    fallback = (x <= 0) & ~np.isfinite(pred)
    n_fallback = int(fallback.sum())
    if n_fallback:
        pred = pred.copy()
        pred[fallback] = fitted.extras["train_mean"]
        logger.info(
            "%s: %d rows with %s <= 0 have no finite power-law value, using train mean %.4g",
            fitted.model_id, n_fallback, PREDICTOR, fitted.extras["train_mean"],
        )
    return pred, n_fallback


def predict_parametric(fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
    """Evaluate a C1-C4 fit on raw cxp."""
    return predict_with_fallback(fitted, data)[0]


def ensemble_mean(predictions: dict[str, np.ndarray]) -> np.ndarray:
    """C5: elementwise mean of the ensemble members.

    Args:
        predictions: Model id -> prediction array; must contain every id in
            ENSEMBLE_MEMBERS. Other entries (including C4) are ignored.

    Raises:
        KeyError: If a member is missing
    """
    missing = [m for m in ENSEMBLE_MEMBERS if m not in predictions]
    if missing:
        raise KeyError(f"Ensemble members missing: {missing}")
    stacked = np.vstack([np.asarray(predictions[m], dtype=float) for m in ENSEMBLE_MEMBERS])
    return stacked.mean(axis=0)


def ensemble_record(model_id: str = "C5") -> FittedModel:
    """FittedModel describing the ensemble (no coefficients of its own)."""
    return FittedModel(
        model_id=model_id,
        family=FAMILY,
        covariates=(PREDICTOR,),
        coefficients=(),
        form="ensemble",
        functional_form="y = mean(" + ", ".join(ENSEMBLE_MEMBERS) + ")",
        fitting_function="ensemble mean",
        distribution="-",
        extras=MappingProxyType({"members": ENSEMBLE_MEMBERS}),
    )


class ParametricPowerLawFamily:
    """The C1-C4 fits as one strategy object.

    Args:
        log_eps: Offset for the log-log fit
        maxfev: Function-evaluation cap for the NLS fits
    """

    group_name = FAMILY
    prefix = "C"
    standardize = False

    def __init__(self, log_eps: float = 1e-4, maxfev: int = 10000) -> None:
        self.log_eps = log_eps
        self.maxfev = maxfev

    def fitters(self) -> dict[str, Callable[[pd.DataFrame], FittedModel]]:
        """Model id -> fit callable, in numbering order."""
        return {
            "C1": lambda df: fit_log_log(df, "C1", eps=self.log_eps),
            "C2": lambda df: fit_power_nls(df, "C2", maxfev=self.maxfev),
            "C3": lambda df: fit_scale(df, "C3"),
            "C4": lambda df: fit_linear_nls(df, "C4", maxfev=self.maxfev),
        }

    def predict_with_fallback(
        self, fitted: FittedModel, data: pd.DataFrame
    ) -> tuple[np.ndarray, int]:
        return predict_with_fallback(fitted, data)

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        return predict_parametric(fitted, data)
