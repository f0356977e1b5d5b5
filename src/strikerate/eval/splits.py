"""Seeded train/test partitioning of the observation panel.

The panel is a cross-section of cell-months rather than a single time
series, so rows are assigned to train/test by a uniform random sample of
row indices without replacement. Reproducibility holds only within one
sampling algorithm: indices are drawn with
``numpy.random.default_rng(seed).choice(n, size=floor(train_frac * n),
replace=False)`` (PCG64 bit generator). Changing the algorithm changes
membership even with the same seed.

Both partitions are returned in original panel order with their original
index preserved, so predictions can be aligned back to panel rows.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from strikerate.errors import InsufficientDataError

if TYPE_CHECKING:
    from strikerate.eval.config import SplitConfig


class Split(ABC):
    """Abstract base class for splitting strategies."""

    @abstractmethod
    def split(self, df: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Split data into train and test sets.

        Args:
            df: Panel DataFrame

        Returns:
            Tuple of (train_df, test_df)
        """
        pass


@dataclass
class RandomSplit(Split):
    """Seeded random train/test split by row count.

    Attributes:
        train_frac: Fraction of rows assigned to train (floored)
        seed: Seed for numpy's default generator
    """
    train_frac: float = 0.80
    seed: int = 123

    def __post_init__(self) -> None:
        if not 0.0 < self.train_frac < 1.0:
            raise ValueError(f"train_frac must be in (0, 1), got {self.train_frac}")

    def n_train(self, n: int) -> int:
        """Number of training rows for a panel of size n."""
        return int(math.floor(self.train_frac * n))

    def train_indices(self, n: int) -> np.ndarray:
        """Sorted positional indices of the training rows.

        Args:
            n: Panel size

        Returns:
            Sorted int array of length floor(train_frac * n)

        Raises:
            InsufficientDataError: If n < 2 or either side would be empty
        """
        if n < 2:
            raise InsufficientDataError(
                f"Need at least 2 observations to partition, got {n}"
            )
        n_train = self.n_train(n)
        if n_train == 0 or n_train == n:
            raise InsufficientDataError(
                f"train_frac={self.train_frac} leaves an empty partition for n={n}"
            )

        rng = np.random.default_rng(self.seed)
        idx = rng.choice(n, size=n_train, replace=False)
        return np.sort(idx)

    def split(self, df: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Split panel rows into train and test.

        Args:
            df: Panel DataFrame

        Returns:
            Tuple of (train_df, test_df) in original row order
        """
        n = len(df)
        train_idx = self.train_indices(n)

        mask = np.zeros(n, dtype=bool)
        mask[train_idx] = True

        train_df = df.iloc[mask]
        test_df = df.iloc[~mask]

        return train_df, test_df


def create_split(config: SplitConfig) -> Split:
    """Create a Split instance from configuration.

    Args:
        config: SplitConfig with split parameters

    Returns:
        Configured Split instance
    """
    return RandomSplit(train_frac=config.train_frac, seed=config.seed)
