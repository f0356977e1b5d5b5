"""Schema definitions for the strike-rate pipeline.

This package defines the contract layer - what "valid data" looks like.
Nothing here should do work, only define structure.

Schemas:
- panel: Monthly observation panel (response + climate covariates)
- validate: Validation helpers and validators
"""

from strikerate.schemas.panel import (
    COVARIATE_LABELS,
    COVARIATES,
    PANEL_FIELDS,
    REQUIRED_COLUMNS as PANEL_REQUIRED_COLUMNS,
    RESPONSE,
    Observation,
    validate_panel,
)
from strikerate.schemas.validate import (
    require_columns,
    require_finite,
    require_no_nulls,
    require_nonnegative,
    require_numeric,
    require_range,
    require_unique,
)

__all__ = [
    # Panel
    "Observation",
    "PANEL_FIELDS",
    "PANEL_REQUIRED_COLUMNS",
    "RESPONSE",
    "COVARIATES",
    "COVARIATE_LABELS",
    "validate_panel",
    # Validation helpers
    "require_columns",
    "require_numeric",
    "require_no_nulls",
    "require_finite",
    "require_unique",
    "require_range",
    "require_nonnegative",
]
