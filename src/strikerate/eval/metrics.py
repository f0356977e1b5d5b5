"""Skill metrics shared by every model family.

This module provides:
1. RMSE
2. Pearson correlation (undefined for constant series)
3. Perkins S-score: overlap of the observed and predicted histograms

The S-score histograms must share bin edges. Edges are derived once from
the pooled range of both series; comparing histograms built on different
edges raises instead of returning a meaningless number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from strikerate.errors import ZeroVarianceError


def _as_pair(observed: Any, predicted: Any) -> tuple[np.ndarray, np.ndarray]:
    """Coerce two series to aligned, finite float arrays."""
    obs = np.asarray(observed, dtype=float).ravel()
    pred = np.asarray(predicted, dtype=float).ravel()

    if obs.shape != pred.shape:
        raise ValueError(
            f"observed and predicted must have the same length, got {obs.size} and {pred.size}"
        )
    if obs.size == 0:
        raise ValueError("Cannot score empty series")
    if not np.all(np.isfinite(obs)):
        raise ValueError("observed contains non-finite values")
    if not np.all(np.isfinite(pred)):
        raise ValueError(
            f"predicted contains {int(np.sum(~np.isfinite(pred)))} non-finite values"
        )
    return obs, pred


def rmse(observed: Any, predicted: Any) -> float:
    """Root mean squared error."""
    obs, pred = _as_pair(observed, predicted)
    return float(np.sqrt(np.mean((obs - pred) ** 2)))


def correlation(observed: Any, predicted: Any) -> float:
    """Pearson product-moment correlation.

    Raises:
        ZeroVarianceError: If either series is constant
    """
    obs, pred = _as_pair(observed, predicted)
    if np.ptp(obs) == 0.0:
        raise ZeroVarianceError("observed series is constant; correlation undefined")
    if np.ptp(pred) == 0.0:
        raise ZeroVarianceError("predicted series is constant; correlation undefined")

    obs_c = obs - obs.mean()
    pred_c = pred - pred.mean()
    r = np.sum(obs_c * pred_c) / np.sqrt(np.sum(obs_c ** 2) * np.sum(pred_c ** 2))
    # Rounding can push |r| marginally past 1
    return float(np.clip(r, -1.0, 1.0))


@dataclass(frozen=True)
class Histogram:
    """Relative-frequency histogram on explicit bin edges.

    Attributes:
        edges: Bin edges (len = n_bins + 1), last bin closed on the right
        probs: Fraction of values in each bin (sums to 1)
    """
    edges: np.ndarray
    probs: np.ndarray

    @classmethod
    def from_values(cls, values: np.ndarray, edges: np.ndarray) -> Histogram:
        counts, _ = np.histogram(values, bins=edges)
        total = counts.sum()
        if total == 0:
            raise ValueError("No values fall inside the histogram edges")
        return cls(edges=np.asarray(edges, dtype=float), probs=counts / total)


def pooled_edges(observed: Any, predicted: Any, nbins: int = 15) -> np.ndarray:
    """Equal-width bin edges spanning [min, max] of both series together."""
    if nbins < 1:
        raise ValueError(f"nbins must be >= 1, got {nbins}")
    obs, pred = _as_pair(observed, predicted)
    pooled = np.concatenate([obs, pred])
    # Degenerate range: numpy widens it to +/-0.5 around the single value
    return np.histogram_bin_edges(pooled, bins=nbins)


def histogram_overlap(a: Histogram, b: Histogram) -> float:
    """Sum over bins of min(p_a, p_b).

    Raises:
        ValueError: If the histograms were built on different edges
    """
    if a.edges.shape != b.edges.shape or not np.array_equal(a.edges, b.edges):
        raise ValueError("Histograms must share identical bin edges to be compared")
    return float(np.sum(np.minimum(a.probs, b.probs)))


def s_score(observed: Any, predicted: Any, nbins: int = 15) -> float:
    """Perkins skill score between observed and predicted value sets.

    Both series are binned on the same nbins equal-width edges over the
    pooled range. The result is in [0, 1]; 1 means identical marginal
    distributions at this resolution.
    """
    obs, pred = _as_pair(observed, predicted)
    edges = pooled_edges(obs, pred, nbins=nbins)
    score = histogram_overlap(
        Histogram.from_values(obs, edges),
        Histogram.from_values(pred, edges),
    )
    return float(min(max(score, 0.0), 1.0))


@dataclass
class SkillScores:
    """Skill of one model's test predictions.

    Attributes:
        n_samples: Number of test rows scored
        rmse: Root mean squared error (strikes km^-2 month^-1)
        cor: Pearson correlation, None when undefined (constant series)
        sscore: Perkins S-score
    """
    n_samples: int
    rmse: float
    cor: float | None
    sscore: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "n_samples": self.n_samples,
            "rmse": round(self.rmse, 6),
            "cor": None if self.cor is None else round(self.cor, 6),
            "sscore": round(self.sscore, 6),
        }


def compute_skill(
    observed: Any,
    predicted: Any,
    nbins: int = 15,
    allow_undefined_cor: bool = False,
) -> SkillScores:
    """Compute RMSE, correlation and S-score in one pass.

    Args:
        observed: Observed test values
        predicted: Predicted test values
        nbins: S-score histogram bins
        allow_undefined_cor: Report cor=None instead of raising
            ZeroVarianceError when a series is constant

    Returns:
        SkillScores
    """
    obs, pred = _as_pair(observed, predicted)
    try:
        cor = correlation(obs, pred)
    except ZeroVarianceError:
        if not allow_undefined_cor:
            raise
        cor = None

    return SkillScores(
        n_samples=len(obs),
        rmse=rmse(obs, pred),
        cor=cor,
        sscore=s_score(obs, pred, nbins=nbins),
    )


def print_metrics_summary(family: str, performance: pd.DataFrame) -> None:
    """Print a formatted summary of one family's performance table.

    Args:
        family: Family name for the header
        performance: PerformanceTable DataFrame
    """
    print("\n" + "=" * 60)
    print(f"PERFORMANCE SUMMARY: {family.upper()}")
    print("=" * 60)

    if performance.empty:
        print("  (no successful fits)")
        print()
        return

    print(f"  {'Model':<7} {'Predictors':<28} {'RMSE':>9} {'Cor':>7} {'S':>6}")
    for _, row in performance.iterrows():
        cor = "   n/a" if pd.isna(row["cor"]) else f"{row['cor']:>7.3f}"
        print(
            f"  {row['model_name']:<7} {row['predictors']:<28} "
            f"{row['rmse']:>9.4f} {cor} {row['sscore']:>6.3f}"
        )
    print()
