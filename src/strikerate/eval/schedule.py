"""Fixed covariate-subset schedule shared by the regression families.

Subsets are numbered 1-13 and the number becomes part of the model id
(N5, G9, B13, ...). The Bayesian family runs only the tiers listed in
BAYES_TIERS, keeping the schedule numbers so its ids line up with the
linear and GLM fits on the same covariates.
"""

from __future__ import annotations

from dataclasses import dataclass

from strikerate.schemas.panel import COVARIATE_LABELS


@dataclass(frozen=True)
class CovariateSubset:
    """One entry of the covariate schedule.

    Attributes:
        number: Position in the schedule (1-based)
        columns: Panel columns, in model order
    """
    number: int
    columns: tuple[str, ...]

    @property
    def label(self) -> str:
        """Predictor label, e.g. "SWR + T + RH"."""
        return " + ".join(COVARIATE_LABELS[c] for c in self.columns)

    def model_id(self, prefix: str) -> str:
        return f"{prefix}{self.number}"


_NEAR_SURFACE = ("swr", "tair", "rh", "wind", "precip", "sp")

SCHEDULE: tuple[CovariateSubset, ...] = (
    CovariateSubset(1, ("cape",)),
    CovariateSubset(2, ("cxp",)),
    CovariateSubset(3, ("rh",)),
    CovariateSubset(4, ("swr",)),
    CovariateSubset(5, ("tair",)),
    CovariateSubset(6, ("sp",)),
    CovariateSubset(7, ("precip",)),
    CovariateSubset(8, ("wind",)),
    CovariateSubset(9, _NEAR_SURFACE[:2]),
    CovariateSubset(10, _NEAR_SURFACE[:3]),
    CovariateSubset(11, _NEAR_SURFACE[:4]),
    CovariateSubset(12, _NEAR_SURFACE[:5]),
    CovariateSubset(13, _NEAR_SURFACE),
)

# Single CAPE, then the nested SWR/T/RH/W/(P, SP) tiers
BAYES_TIERS: tuple[int, ...] = (1, 9, 10, 11, 13)


def get_subset(number: int) -> CovariateSubset:
    """Look up a schedule entry by its number."""
    for subset in SCHEDULE:
        if subset.number == number:
            return subset
    raise KeyError(f"No covariate subset numbered {number}")


def bayes_schedule() -> tuple[CovariateSubset, ...]:
    """Schedule entries fitted by the Bayesian family."""
    return tuple(get_subset(n) for n in BAYES_TIERS)
