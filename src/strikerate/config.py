"""Path settings for the strike-rate pipeline."""

from __future__ import annotations

from pathlib import Path


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def data_root() -> Path:
    return project_root() / "data"


def panel_path(name: str = "panel.parquet") -> Path:
    return data_root() / "processed" / name


def runs_root() -> Path:
    return project_root() / "runs"
