"""Train-only covariate standardization.

Location/scale statistics are computed from the training partition alone
and then applied unchanged to train, test and any later data. The response
column is never standardized.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

import pandas as pd

from strikerate.errors import DegenerateVarianceError
from strikerate.schemas.panel import RESPONSE


@dataclass(frozen=True)
class StandardizationStats:
    """Per-covariate (mean, sample std) computed on training rows.

    Attributes:
        means: Column -> training mean
        stds: Column -> training sample standard deviation (ddof=1)
    """
    means: Mapping[str, float] = field(default_factory=dict)
    stds: Mapping[str, float] = field(default_factory=dict)

    @property
    def columns(self) -> list[str]:
        return list(self.means)

    def apply(self, df: pd.DataFrame, columns: Iterable[str] | None = None) -> pd.DataFrame:
        """Return a copy of df with the given (default: all fitted) columns standardized.

        Columns not covered by the stats are left untouched.
        """
        columns = self.columns if columns is None else list(columns)
        missing = [c for c in columns if c not in self.means]
        if missing:
            raise KeyError(f"No standardization stats for columns: {missing}")

        out = df.copy()
        for col in columns:
            out[col] = (df[col].astype(float) - self.means[col]) / self.stds[col]
        return out

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            col: {"mean": float(self.means[col]), "std": float(self.stds[col])}
            for col in self.columns
        }


class Standardizer:
    """Fits StandardizationStats on training data.

    Usage:
        stats = Standardizer.fit(train_df, ["cape", "swr"])
        train_z = Standardizer.apply(stats, train_df)
        test_z = Standardizer.apply(stats, test_df)
    """

    @staticmethod
    def fit(train: pd.DataFrame, columns: Iterable[str]) -> StandardizationStats:
        """Compute mean and sample std for each column over training rows.

        Raises:
            ValueError: If asked to standardize the response
            DegenerateVarianceError: If a column's std is zero or not finite
        """
        columns = list(columns)
        if RESPONSE in columns:
            raise ValueError(f"The response '{RESPONSE}' must not be standardized")

        means: dict[str, float] = {}
        stds: dict[str, float] = {}
        for col in columns:
            values = train[col].astype(float)
            mean = float(values.mean())
            std = float(values.std(ddof=1))
            if not math.isfinite(std) or std == 0.0:
                raise DegenerateVarianceError(col, std)
            means[col] = mean
            stds[col] = std

        return StandardizationStats(
            means=MappingProxyType(means),
            stds=MappingProxyType(stds),
        )

    @staticmethod
    def apply(
        stats: StandardizationStats,
        data: pd.DataFrame,
        columns: Iterable[str] | None = None,
    ) -> pd.DataFrame:
        """Standardize data with previously fitted stats."""
        return stats.apply(data, columns)
