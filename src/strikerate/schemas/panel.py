"""Observation panel schema.

One row per spatial cell and month. The panel is the unit that gets
partitioned into train/test; every model family reads from it.

Key rules:
- strikes is the response (strikes per km^2 per month), never standardized
- cxp is CAPE x precipitation, precomputed upstream
- month is optional; when present it enables per-month slices
"""

from __future__ import annotations

from typing import TypedDict

import pandas as pd

from strikerate.schemas.validate import (
    require_columns,
    require_finite,
    require_no_nulls,
    require_nonnegative,
    require_numeric,
    require_range,
    require_unique,
)


class Observation(TypedDict):
    """Monthly aggregated covariates and strike rate for one grid cell."""

    lon: float  # Cell centre longitude (degrees east)
    lat: float  # Cell centre latitude (degrees north)
    year: int  # Calendar year
    strikes: float  # Strike rate (strikes km^-2 month^-1)
    cape: float  # Convective available potential energy (J/kg)
    precip: float  # Precipitation
    cxp: float  # CAPE x precipitation
    tair: float  # Near-surface air temperature
    wind: float  # Near-surface wind speed
    swr: float  # Downward shortwave radiation
    sp: float  # Surface pressure
    rh: float  # Relative humidity


RESPONSE = "strikes"

# Predictor columns, in the order they are reported
COVARIATES = ["cape", "cxp", "rh", "swr", "tair", "sp", "precip", "wind"]

# Short labels used in performance/parameter tables
COVARIATE_LABELS = {
    "cape": "CAPE",
    "cxp": "CAPE x P",
    "rh": "RH",
    "swr": "SWR",
    "tair": "T",
    "sp": "SP",
    "precip": "P",
    "wind": "W",
}

PANEL_FIELDS = [
    "lon",
    "lat",
    "year",
    RESPONSE,
    "cape",
    "precip",
    "cxp",
    "tair",
    "wind",
    "swr",
    "sp",
    "rh",
]

REQUIRED_COLUMNS = PANEL_FIELDS.copy()

_DATASET_NAME = "panel"


def validate_panel(df: pd.DataFrame) -> None:
    """Validate that a DataFrame conforms to the observation panel schema.

    Checks performed:
    - All required columns present and numeric
    - No nulls or infinities in response/covariate columns
    - strikes, cape, precip and cxp are non-negative
    - lat in [-90, 90], lon in [-180, 360]
    - month in [1, 12] when present
    - Uniqueness on (lon, lat, year, month) when month is present. Without
      a month column a cell-year legitimately has up to 12 rows, so no
      key is enforced.

    Args:
        df: DataFrame to validate

    Raises:
        ValueError: If any validation check fails
    """
    require_columns(df.columns, REQUIRED_COLUMNS, dataset=_DATASET_NAME)

    if df.empty:
        return

    model_cols = [RESPONSE] + COVARIATES
    require_numeric(df, PANEL_FIELDS, dataset=_DATASET_NAME)
    require_no_nulls(df, model_cols, dataset=_DATASET_NAME)
    require_finite(df, model_cols, dataset=_DATASET_NAME)

    for col in (RESPONSE, "cape", "precip", "cxp"):
        require_nonnegative(df, col, dataset=_DATASET_NAME)

    require_range(df, "lat", lo=-90, hi=90, dataset=_DATASET_NAME)
    require_range(df, "lon", lo=-180, hi=360, dataset=_DATASET_NAME)

    if "month" in df.columns:
        require_range(df, "month", lo=1, hi=12, dataset=_DATASET_NAME)
        require_unique(df, ["lon", "lat", "year", "month"], dataset=_DATASET_NAME)
