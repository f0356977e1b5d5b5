"""Exception and warning types raised by the evaluation pipeline.

Data problems subclass ValueError so callers that already catch bad-input
errors keep working. Convergence problems are warnings: a fit that did not
converge still produces predictions, but the run must say so.
"""

from __future__ import annotations


class StrikeRateError(Exception):
    """Base class for pipeline errors."""


class InsufficientDataError(StrikeRateError, ValueError):
    """Panel too small to partition into train and test."""


class DegenerateVarianceError(StrikeRateError, ValueError):
    """A covariate has zero (or undefined) variance on the training rows."""

    def __init__(self, column: str, std: float) -> None:
        self.column = column
        self.std = std
        super().__init__(
            f"Cannot standardize '{column}': training std is {std!r}"
        )


class ZeroVarianceError(StrikeRateError, ValueError):
    """Correlation is undefined because one series is constant."""


class FitConvergenceWarning(UserWarning):
    """Optimizer or sampler finished without meeting its convergence criteria."""
