"""Data loading and preparation for strike-rate evaluation.

This module reads the observation panel, validates it against the panel
schema and splits it into train/test partitions. Loading problems are
fatal: they raise instead of being isolated like individual model fits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

from strikerate.schemas.panel import COVARIATES, RESPONSE, validate_panel

if TYPE_CHECKING:
    from strikerate.eval.config import SplitConfig

logger = logging.getLogger(__name__)


@dataclass
class EvalDataset:
    """Container for evaluation data splits.

    Attributes:
        train: Training rows, original panel order and index
        test: Test rows, original panel order and index
        full: Complete panel before splitting
    """
    train: pd.DataFrame
    test: pd.DataFrame
    full: pd.DataFrame

    @property
    def n_train(self) -> int:
        """Number of training samples."""
        return len(self.train)

    @property
    def n_test(self) -> int:
        """Number of test samples."""
        return len(self.test)


def read_panel(path: Path | str) -> pd.DataFrame:
    """Read a panel file (.csv or .parquet) without validation."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Panel not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(path)
    elif suffix == ".csv":
        return pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported panel format '{suffix}' (expected .csv or .parquet)")


def load_panel(
    source: Path | str | pd.DataFrame,
    drop_nonpositive_response: bool = False,
) -> pd.DataFrame:
    """Load and validate the observation panel.

    Args:
        source: Path to a panel file, or an in-memory DataFrame
        drop_nonpositive_response: Drop rows with strikes <= 0 from the
            whole panel. Off by default: zero-strike cell-months are real
            data for the linear and CAPE x P families, and the Gamma
            families leave them out of their own fits.

    Returns:
        Validated panel with a fresh RangeIndex

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the panel fails validation or no rows remain
    """
    if isinstance(source, pd.DataFrame):
        df = source.copy()
    else:
        df = read_panel(source)

    validate_panel(df)

    if drop_nonpositive_response:
        keep = df[RESPONSE] > 0
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.info(
                "Dropping %d of %d panel rows with %s <= 0", n_dropped, len(df), RESPONSE
            )
        df = df[keep]

    if df.empty:
        raise ValueError("No panel rows remaining after filters")

    return df.reset_index(drop=True)


def prepare_dataset(panel: pd.DataFrame, split_config: SplitConfig) -> EvalDataset:
    """Split a loaded panel into an EvalDataset.

    Args:
        panel: Validated panel (see load_panel)
        split_config: Partition configuration

    Returns:
        EvalDataset with train/test splits
    """
    from strikerate.eval.splits import create_split

    splitter = create_split(split_config)
    train_df, test_df = splitter.split(panel)

    return EvalDataset(train=train_df, test=test_df, full=panel)


def print_data_summary(dataset: EvalDataset) -> None:
    """Print a summary of the evaluation dataset.

    Args:
        dataset: EvalDataset to summarize
    """
    n = len(dataset.full)
    print("\n" + "=" * 60)
    print("EVALUATION DATA SUMMARY")
    print("=" * 60)

    print(f"\nTotal samples:    {n:,}")
    print(f"Training samples: {dataset.n_train:,} ({100 * dataset.n_train / n:.1f}%)")
    print(f"Test samples:     {dataset.n_test:,} ({100 * dataset.n_test / n:.1f}%)")

    full = dataset.full
    if "year" in full.columns:
        print(f"\nYears: {int(full['year'].min())} to {int(full['year'].max())}")
    if {"lon", "lat"} <= set(full.columns):
        n_cells = len(full[["lon", "lat"]].drop_duplicates())
        print(f"Grid cells: {n_cells:,}")

    strikes = full[RESPONSE]
    print(
        f"\n{RESPONSE}: mean={strikes.mean():.4g}  sd={strikes.std():.4g}  "
        f"min={strikes.min():.4g}  max={strikes.max():.4g}"
    )
    print(f"Covariates ({len(COVARIATES)}): {', '.join(COVARIATES)}")
