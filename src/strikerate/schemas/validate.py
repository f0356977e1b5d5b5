"""Validation helpers for schema enforcement.

These helpers ensure DataFrames conform to expected schemas.
All helpers raise ValueError with actionable messages including:
- Dataset name (if provided)
- Offending columns
- Count of failing rows
- Sample of failing row indices (first 5)
"""

from __future__ import annotations

from typing import Any, Iterable

import numpy as np
import pandas as pd


def _format_error(
    dataset: str | None,
    rule: str,
    detail: str,
    failing_indices: list[Any] | None = None,
    count: int | None = None,
) -> str:
    """Format a validation error message consistently."""
    parts = []
    if dataset:
        parts.append(f"[{dataset}]")
    parts.append(rule)
    parts.append(f": {detail}")
    if count is not None:
        parts.append(f" ({count} rows)")
    if failing_indices:
        sample = failing_indices[:5]
        parts.append(f" | sample indices: {sample}")
    return "".join(parts)


def require_columns(
    df_columns: Iterable[str],
    required: Iterable[str],
    dataset: str | None = None,
) -> None:
    """Raise ValueError if required columns are missing.

    Args:
        df_columns: Column names from a DataFrame (e.g., df.columns)
        required: Required column names
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If any required columns are missing
    """
    missing = set(required) - set(df_columns)
    if missing:
        raise ValueError(
            _format_error(dataset, "Missing columns", f"{sorted(missing)}")
        )


def require_numeric(
    df: pd.DataFrame,
    cols: Iterable[str],
    dataset: str | None = None,
) -> None:
    """Raise ValueError if any of the columns is not a numeric dtype.

    Args:
        df: DataFrame to check
        cols: Column names that must be numeric
        dataset: Optional dataset name for error messages
    """
    mismatches = []
    for col in cols:
        if col not in df.columns:
            continue  # Let require_columns handle missing columns
        if not pd.api.types.is_numeric_dtype(df[col].dtype):
            mismatches.append(f"{col}: expected numeric, got {df[col].dtype}")

    if mismatches:
        raise ValueError(
            _format_error(dataset, "Dtype mismatch", "; ".join(mismatches))
        )


def require_no_nulls(
    df: pd.DataFrame,
    cols: Iterable[str],
    dataset: str | None = None,
) -> None:
    """Raise ValueError if specified columns contain null values.

    Args:
        df: DataFrame to check
        cols: Column names that must not have nulls
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If any specified columns have null values
    """
    for col in cols:
        if col not in df.columns:
            continue  # Let require_columns handle missing columns

        null_mask = df[col].isna()
        null_count = int(null_mask.sum())
        if null_count > 0:
            failing_indices = df.index[null_mask].tolist()
            raise ValueError(
                _format_error(
                    dataset,
                    "Null values",
                    f"column '{col}' has nulls",
                    failing_indices,
                    null_count,
                )
            )


def require_finite(
    df: pd.DataFrame,
    cols: Iterable[str],
    dataset: str | None = None,
) -> None:
    """Raise ValueError if numeric columns contain +/-inf.

    Args:
        df: DataFrame to check
        cols: Column names that must be finite
        dataset: Optional dataset name for error messages
    """
    for col in cols:
        if col not in df.columns:
            continue

        values = df[col].to_numpy(dtype=float)
        inf_mask = np.isinf(values)
        inf_count = int(inf_mask.sum())
        if inf_count > 0:
            failing_indices = df.index[inf_mask].tolist()
            raise ValueError(
                _format_error(
                    dataset,
                    "Infinite values",
                    f"column '{col}' has inf",
                    failing_indices,
                    inf_count,
                )
            )


def require_unique(
    df: pd.DataFrame,
    key_cols: list[str],
    dataset: str | None = None,
) -> None:
    """Raise ValueError if key columns have duplicate combinations.

    Args:
        df: DataFrame to check
        key_cols: Column names that form a unique key
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If duplicate key combinations exist
    """
    if df.empty:
        return

    for col in key_cols:
        if col not in df.columns:
            return  # Let require_columns handle missing columns

    dup_mask = df.duplicated(subset=key_cols, keep=False)
    dup_count = int(dup_mask.sum())
    if dup_count > 0:
        failing_indices = df.index[dup_mask].tolist()
        raise ValueError(
            _format_error(
                dataset,
                "Duplicate keys",
                f"columns {key_cols} have duplicates",
                failing_indices,
                dup_count,
            )
        )


def require_range(
    df: pd.DataFrame,
    col: str,
    lo: float,
    hi: float,
    allow_null: bool = False,
    dataset: str | None = None,
) -> None:
    """Raise ValueError if values are outside the specified range.

    Args:
        df: DataFrame to check
        col: Column name to check
        lo: Minimum allowed value (inclusive)
        hi: Maximum allowed value (inclusive)
        allow_null: If True, null values are allowed
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If values are outside range
    """
    if col not in df.columns:
        return  # Let require_columns handle missing columns

    if df.empty:
        return

    series = df[col]
    if allow_null:
        series = series.dropna()

    out_of_range = (series < lo) | (series > hi)
    bad_count = int(out_of_range.sum())
    if bad_count > 0:
        failing_indices = series.index[out_of_range].tolist()
        raise ValueError(
            _format_error(
                dataset,
                "Out of range",
                f"column '{col}' must be in [{lo}, {hi}]",
                failing_indices,
                bad_count,
            )
        )


def require_nonnegative(
    df: pd.DataFrame,
    col: str,
    dataset: str | None = None,
) -> None:
    """Raise ValueError if values are negative.

    Args:
        df: DataFrame to check
        col: Column name to check
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If values are negative
    """
    if col not in df.columns:
        return  # Let require_columns handle missing columns

    if df.empty:
        return

    series = df[col].dropna()
    negative = series < 0
    bad_count = int(negative.sum())
    if bad_count > 0:
        failing_indices = series.index[negative].tolist()
        raise ValueError(
            _format_error(
                dataset,
                "Negative values",
                f"column '{col}' must be >= 0",
                failing_indices,
                bad_count,
            )
        )
