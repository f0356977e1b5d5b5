"""Non-parametric lookup-table model on CAPE x precipitation.

The training range of cxp is cut into equal-width bins and each bin stores
the mean training strike rate. Bin membership:

- bins are right-open [e_i, e_{i+1}), except the last bin which is closed
  [e_{n-1}, e_n], so a value equal to the training maximum lands in the
  last bin and a value equal to the training minimum in the first
- a value outside [train min, train max] has no bin

Extrapolation policy: a test value with no bin, or whose bin received no
training rows, is predicted as the global training mean strike rate. This
is the designed behaviour for out-of-range inputs, not an error; the number
of rows that took the fallback is reported with every prediction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType

import numpy as np
import pandas as pd

from strikerate.eval.models import FittedModel
from strikerate.schemas.panel import RESPONSE

logger = logging.getLogger(__name__)

NO_BIN = -1


@dataclass(frozen=True)
class BinTable:
    """Per-bin training means over equal-width cxp bins.

    Attributes:
        edges: Bin edges, len = n_bins + 1, edges[0] = train min, edges[-1] = train max
        means: Mean training strike rate per bin (NaN for empty bins)
        counts: Training rows per bin
        global_mean: Mean training strike rate over all rows
    """
    edges: np.ndarray
    means: np.ndarray
    counts: np.ndarray
    global_mean: float

    @property
    def n_bins(self) -> int:
        return len(self.edges) - 1

    @classmethod
    def fit(cls, x: np.ndarray, y: np.ndarray, n_bins: int = 50) -> BinTable:
        """Build the table from training cxp values and strike rates."""
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if x.shape != y.shape or x.size == 0:
            raise ValueError("x and y must be non-empty and the same length")
        if n_bins < 1:
            raise ValueError(f"n_bins must be >= 1, got {n_bins}")

        lo, hi = float(x.min()), float(x.max())
        if lo == hi:
            raise ValueError(f"Cannot bin a constant predictor (all values = {lo})")

        # linspace returns lo and hi exactly as the outer edges
        edges = np.linspace(lo, hi, n_bins + 1)
        idx = bin_index(x, edges)

        counts = np.bincount(idx, minlength=n_bins)
        sums = np.bincount(idx, weights=y, minlength=n_bins)
        with np.errstate(invalid="ignore", divide="ignore"):
            means = np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)

        return cls(edges=edges, means=means, counts=counts, global_mean=float(y.mean()))

    def lookup(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Predict for each x.

        Returns:
            Tuple of (predictions, fallback mask). The mask is True where
            the global mean was used.
        """
        idx = bin_index(np.asarray(x, dtype=float), self.edges)
        pred = np.full(idx.shape, self.global_mean, dtype=float)

        in_range = idx != NO_BIN
        bin_means = self.means[idx[in_range]]
        filled = ~np.isnan(bin_means)
        pred[np.flatnonzero(in_range)[filled]] = bin_means[filled]

        fallback = np.ones(idx.shape, dtype=bool)
        fallback[np.flatnonzero(in_range)[filled]] = False
        return pred, fallback


def bin_index(x: np.ndarray, edges: np.ndarray) -> np.ndarray:
    """Bin number for each value, NO_BIN (-1) outside [edges[0], edges[-1]].

    Interior boundaries belong to the upper bin; the top edge belongs to the
    last bin.
    """
    x = np.asarray(x, dtype=float)
    n_bins = len(edges) - 1
    idx = np.searchsorted(edges, x, side="right") - 1
    idx = np.where(x == edges[-1], n_bins - 1, idx)
    outside = (x < edges[0]) | (x > edges[-1]) | np.isnan(x)
    return np.where(outside, NO_BIN, idx).astype(int)


class NonParametricBinFamily:
    """Binned-mean lookup of strike rate on raw cxp.

    Args:
        n_bins: Number of equal-width bins over the training range
        predictor: Panel column to bin on
    """

    group_name = "Non-parametric"
    prefix = "NP"
    standardize = False
    fitting_function = "binned mean"
    distribution = "Empirical"

    def __init__(self, n_bins: int = 50, predictor: str = "cxp") -> None:
        self.n_bins = n_bins
        self.predictor = predictor

    def fit(self, train: pd.DataFrame, model_id: str = "NP") -> FittedModel:
        table = BinTable.fit(
            train[self.predictor].to_numpy(dtype=float),
            train[RESPONSE].to_numpy(dtype=float),
            n_bins=self.n_bins,
        )
        n_empty = int(np.sum(table.counts == 0))
        if n_empty:
            logger.info("%s: %d of %d bins have no training rows", model_id, n_empty, table.n_bins)

        return FittedModel(
            model_id=model_id,
            family=self.group_name,
            covariates=(self.predictor,),
            coefficients=(),
            form="binned_mean",
            functional_form=f"y = mean(train y in bin(x)), {table.n_bins} equal-width bins",
            fitting_function=self.fitting_function,
            distribution=self.distribution,
            extras=MappingProxyType({
                "table": table,
                "n_empty_bins": n_empty,
                "x_min": float(table.edges[0]),
                "x_max": float(table.edges[-1]),
            }),
        )

    def predict_with_fallback(
        self, fitted: FittedModel, data: pd.DataFrame
    ) -> tuple[np.ndarray, int]:
        """Predictions plus the number of rows that used the global-mean fallback."""
        table: BinTable = fitted.extras["table"]
        pred, fallback = table.lookup(data[self.predictor].to_numpy(dtype=float))
        return pred, int(fallback.sum())

    def predict(self, fitted: FittedModel, data: pd.DataFrame) -> np.ndarray:
        pred, n_fallback = self.predict_with_fallback(fitted, data)
        if n_fallback:
            logger.info(
                "%s: %d of %d rows outside populated bins, using train mean %.4g",
                fitted.model_id, n_fallback, len(pred), fitted.extras["table"].global_mean,
            )
        return pred
