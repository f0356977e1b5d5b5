"""Artifact generation and run management.

This module handles writing evaluation artifacts to disk, one run
directory per run:
- config.json: Frozen configuration
- meta.json: Run metadata (git hash, timestamp, partition sizes)
- predictions_<family>.parquet: Test-row predictions per model id
- performance_<family>.csv: PerformanceTable
- parameters_<family>.csv: ParameterTable
- diagnostics_<family>.csv: Family-specific fit diagnostics
- comparison.json: Cross-family rankings
- slices.json: Sliced metrics breakdown
- failures.json: Fits that failed (only when there are any)
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    from strikerate.eval.config import EvalConfig
    from strikerate.eval.data import EvalDataset
    from strikerate.eval.runner import FamilyResult

# Index column written to prediction files (row label in the loaded panel)
ROW_COLUMN = "panel_row"


def create_run_dir(run_id: str, base_path: Path | None = None) -> Path:
    """Create a directory for run artifacts.

    Args:
        run_id: Unique run identifier
        base_path: Base directory (default: runs/)

    Returns:
        Path to the created run directory
    """
    if base_path is None:
        base_path = Path("runs")

    run_dir = Path(base_path) / run_id
    run_dir.mkdir(parents=True, exist_ok=True)

    return run_dir


def write_family_artifacts(result: FamilyResult, run_dir: Path) -> dict[str, Path]:
    """Write one family's tables into a run directory.

    Args:
        result: FamilyResult to persist
        run_dir: Existing run directory

    Returns:
        Dictionary of artifact name -> path
    """
    family = result.family
    artifacts = {}

    predictions_path = run_dir / f"predictions_{family}.parquet"
    result.predictions.rename_axis(ROW_COLUMN).reset_index().to_parquet(
        predictions_path, index=False
    )
    artifacts[f"predictions_{family}"] = predictions_path

    performance_path = run_dir / f"performance_{family}.csv"
    result.performance.to_csv(performance_path, index=False)
    artifacts[f"performance_{family}"] = performance_path

    parameters_path = run_dir / f"parameters_{family}.csv"
    result.parameters.to_csv(parameters_path, index=False)
    artifacts[f"parameters_{family}"] = parameters_path

    if result.diagnostics is not None and not result.diagnostics.empty:
        diagnostics_path = run_dir / f"diagnostics_{family}.csv"
        result.diagnostics.to_csv(diagnostics_path, index=False)
        artifacts[f"diagnostics_{family}"] = diagnostics_path

    return artifacts


def write_all_artifacts(
    config: EvalConfig,
    dataset: EvalDataset,
    families: dict[str, FamilyResult],
    slices: dict[str, Any],
    run_id: str,
    base_path: Path | None = None,
) -> dict[str, Path]:
    """Write all run artifacts to disk.

    Args:
        config: Evaluation configuration
        dataset: Train/test partition used for the run
        families: Family key -> FamilyResult
        slices: Family key -> sliced metrics
        run_id: Unique run identifier
        base_path: Base directory for runs

    Returns:
        Dictionary of artifact name -> path
    """
    run_dir = create_run_dir(run_id, base_path)
    artifacts = {}

    # Write config
    config_path = run_dir / "config.json"
    config_path.write_text(config.to_json())
    artifacts["config"] = config_path

    # Write metadata
    meta = _create_metadata(config, run_id, dataset)
    meta_path = run_dir / "meta.json"
    meta_path.write_text(json.dumps(meta, indent=2))
    artifacts["meta"] = meta_path

    # Write per-family tables
    for result in families.values():
        artifacts.update(write_family_artifacts(result, run_dir))

    # Write comparison
    artifacts["comparison"] = write_comparison_summary(run_id, families, base_path)

    # Write slices
    if any(slices.values()):
        slices_path = run_dir / "slices.json"
        slices_path.write_text(json.dumps(slices, indent=2))
        artifacts["slices"] = slices_path

    # Write failures
    failures = [f for result in families.values() for f in result.failures]
    if failures:
        failures_path = run_dir / "failures.json"
        failures_path.write_text(json.dumps(failures, indent=2))
        artifacts["failures"] = failures_path

    return artifacts


def _finite_or_none(value: Any) -> float | None:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def build_comparison(families: dict[str, FamilyResult]) -> dict[str, Any]:
    """Rank every scored model across families.

    Lower is better for RMSE; higher is better for S-score and correlation.
    Models with an undefined correlation are left out of that ranking.

    Args:
        families: Family key -> FamilyResult

    Returns:
        Dictionary with per-model metrics, rankings and each family's best
        model by RMSE
    """
    comparison: dict[str, Any] = {
        "models": {},
        "ranking": {},
        "best_by_family": {},
    }

    rmse_values = {}
    sscore_values = {}
    cor_values = {}

    for family, result in families.items():
        for row in result.performance.to_dict("records"):
            model_id = row["model_name"]
            entry = {
                "family": family,
                "group_name": row["group_name"],
                "predictors": row["predictors"],
                "rmse": _finite_or_none(row["rmse"]),
                "cor": _finite_or_none(row["cor"]),
                "sscore": _finite_or_none(row["sscore"]),
            }
            comparison["models"][model_id] = entry

            if entry["rmse"] is not None:
                rmse_values[model_id] = entry["rmse"]
            if entry["sscore"] is not None:
                sscore_values[model_id] = entry["sscore"]
            if entry["cor"] is not None:
                cor_values[model_id] = entry["cor"]

        if not result.performance.empty:
            best = result.performance.loc[result.performance["rmse"].idxmin()]
            comparison["best_by_family"][family] = best["model_name"]

    if rmse_values:
        comparison["ranking"]["by_rmse"] = sorted(rmse_values, key=lambda m: rmse_values[m])
    if sscore_values:
        comparison["ranking"]["by_sscore"] = sorted(
            sscore_values, key=lambda m: sscore_values[m], reverse=True
        )
    if cor_values:
        comparison["ranking"]["by_cor"] = sorted(
            cor_values, key=lambda m: cor_values[m], reverse=True
        )

    return comparison


def write_comparison_summary(
    run_id: str,
    families: dict[str, FamilyResult],
    base_path: Path | None = None,
) -> Path:
    """Write a comparison summary aggregating metrics from all families.

    Args:
        run_id: Unique run identifier
        families: Family key -> FamilyResult
        base_path: Base directory for runs

    Returns:
        Path to the comparison summary file
    """
    run_dir = create_run_dir(run_id, base_path)

    comparison = {
        "run_id": run_id,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        **build_comparison(families),
    }

    comparison_path = run_dir / "comparison.json"
    comparison_path.write_text(json.dumps(comparison, indent=2))

    return comparison_path


def _create_metadata(config: EvalConfig, run_id: str, dataset: EvalDataset) -> dict[str, Any]:
    """Create run metadata dictionary."""
    from strikerate.eval.config import create_run_metadata

    meta = {
        "run_id": run_id,
        "run_name": config.run_name,
        "families": list(config.families),
        "n_panel": len(dataset.full),
        "n_train": dataset.n_train,
        "n_test": dataset.n_test,
    }
    meta.update(create_run_metadata())
    return meta


def load_run(run_id: str, base_path: Path | None = None) -> dict[str, Any]:
    """Load artifacts from a completed run.

    Args:
        run_id: Run identifier
        base_path: Base directory for runs

    Returns:
        Dictionary with config, metadata, comparison, slices, failures and
        a "families" mapping of family key -> {predictions, performance,
        parameters, diagnostics} DataFrames
    """
    if base_path is None:
        base_path = Path("runs")

    run_dir = Path(base_path) / run_id
    if not run_dir.exists():
        raise FileNotFoundError(f"Run not found: {run_dir}")

    result: dict[str, Any] = {"run_id": run_id, "run_dir": run_dir, "families": {}}

    # Load config
    config_path = run_dir / "config.json"
    if config_path.exists():
        from strikerate.eval.config import EvalConfig
        result["config"] = EvalConfig.load(config_path)

    # Load JSON summaries
    for name in ("meta", "comparison", "slices", "failures"):
        path = run_dir / f"{name}.json"
        if path.exists():
            result[name] = json.loads(path.read_text())

    # Load per-family tables
    for predictions_path in sorted(run_dir.glob("predictions_*.parquet")):
        family = predictions_path.stem[len("predictions_"):]
        tables = {
            "predictions": pd.read_parquet(predictions_path).set_index(ROW_COLUMN),
        }
        for kind in ("performance", "parameters", "diagnostics"):
            path = run_dir / f"{kind}_{family}.csv"
            if path.exists():
                tables[kind] = pd.read_csv(path)
        result["families"][family] = tables

    return result


def list_runs(base_path: Path | None = None) -> list[dict[str, Any]]:
    """List all available runs.

    Args:
        base_path: Base directory for runs

    Returns:
        List of run info dictionaries with run_id, timestamp, run_name
        and families, newest first
    """
    if base_path is None:
        base_path = Path("runs")

    base_path = Path(base_path)
    if not base_path.exists():
        return []

    runs = []
    for run_dir in sorted(base_path.iterdir(), reverse=True):
        if run_dir.is_dir():
            info = {"run_id": run_dir.name}

            # Try to load metadata
            meta_path = run_dir / "meta.json"
            if meta_path.exists():
                try:
                    meta = json.loads(meta_path.read_text())
                    info["timestamp"] = meta.get("timestamp_utc")
                    info["run_name"] = meta.get("run_name")
                    info["families"] = meta.get("families", [])
                except json.JSONDecodeError:
                    pass

            runs.append(info)

    return runs
