"""Metrics slicing by various dimensions.

Compute per-model metrics broken down by:
- Month (1-12), when the panel carries a month column
- Year
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from strikerate.errors import ZeroVarianceError
from strikerate.eval.metrics import correlation, rmse

MIN_SLICE_ROWS = 10


def compute_metrics_by_slice(
    predictions_df: pd.DataFrame,
    test_df: pd.DataFrame,
    min_rows: int = MIN_SLICE_ROWS,
) -> dict[str, dict[str, Any]]:
    """Compute metrics broken down by month and year.

    Args:
        predictions_df: Family prediction table ("observed" plus one
            column per model id), indexed like test_df
        test_df: Test partition carrying the slice columns
        min_rows: Slices with fewer rows are skipped

    Returns:
        Dictionary of slice name -> {slice_value -> {model_id -> metrics dict}}
    """
    slices = {}

    # By month
    if "month" in test_df.columns:
        slices["by_month"] = _slice_by_column(predictions_df, test_df["month"], min_rows)

    # By year
    if "year" in test_df.columns:
        slices["by_year"] = _slice_by_column(predictions_df, test_df["year"], min_rows)

    return slices


def _slice_metrics(observed: np.ndarray, predicted: np.ndarray) -> dict[str, Any]:
    """RMSE and correlation for one slice; cor is None when undefined."""
    try:
        cor = round(correlation(observed, predicted), 6)
    except ZeroVarianceError:
        cor = None
    return {
        "n_samples": int(len(observed)),
        "rmse": round(rmse(observed, predicted), 6),
        "cor": cor,
    }


def _slice_by_column(
    predictions_df: pd.DataFrame,
    keys: pd.Series,
    min_rows: int,
) -> dict[str, dict[str, Any]]:
    """Compute per-model metrics for each unique value of a key column.

    Args:
        predictions_df: Family prediction table
        keys: Slice key per test row, aligned on index
        min_rows: Minimum rows for stable metrics

    Returns:
        Dictionary of key value -> {model_id -> metrics dict}
    """
    keys = keys.reindex(predictions_df.index)
    model_ids = [c for c in predictions_df.columns if c != "observed"]

    result = {}
    for value in sorted(keys.dropna().unique()):
        subset = predictions_df[keys == value]
        if len(subset) < min_rows:
            continue
        observed = subset["observed"].to_numpy(dtype=float)
        result[str(int(value))] = {
            model_id: _slice_metrics(observed, subset[model_id].to_numpy(dtype=float))
            for model_id in model_ids
        }
    return result
