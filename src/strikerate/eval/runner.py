"""Evaluation runner - main orchestration for strike-rate model comparison.

This module provides the main entry point for running evaluations:
1. Load config
2. Load and validate the panel
3. Split train/test
4. Fit each model family over its covariate schedule
5. Generate predictions on the test partition
6. Compute skill metrics
7. Write artifacts

Every model is fitted in isolation: a failure in one fit is logged with its
family and covariate subset, recorded, and leaves a gap in that family's
tables without stopping sibling fits. Loading and I/O errors are not
isolated.
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence

import numpy as np
import pandas as pd

from strikerate.schemas.panel import RESPONSE

if TYPE_CHECKING:
    from strikerate.eval.bayes import PosteriorSampler
    from strikerate.eval.config import ChenConfig, EvalConfig
    from strikerate.eval.data import EvalDataset
    from strikerate.eval.metrics import SkillScores
    from strikerate.eval.models import FittedModel, ModelFamily
    from strikerate.eval.schedule import CovariateSubset

logger = logging.getLogger(__name__)

PERFORMANCE_COLUMNS = [
    "model_name",
    "fitting_function",
    "distribution",
    "predictors",
    "group_name",
    "rmse",
    "cor",
    "sscore",
]

PARAMETER_COLUMNS = ["model_label", "predictors", "functional_form"]

OBSERVED = "observed"


@dataclass
class FamilyResult:
    """Tables and fits for one model family.

    Attributes:
        family: Family key ("linear", "glm", "bayes", "chen")
        predictions: Test-row predictions, one column per model id plus
            "observed", indexed like the test partition
        performance: PerformanceTable, one row per scored model
        parameters: ParameterTable, one row per fitted model
        fits: FittedModel records in numbering order
        failures: One record per failed fit
        diagnostics: Family-specific fit diagnostics
    """
    family: str
    predictions: pd.DataFrame
    performance: pd.DataFrame
    parameters: pd.DataFrame
    fits: list[FittedModel] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    diagnostics: pd.DataFrame | None = None

    @property
    def model_ids(self) -> list[str]:
        return [c for c in self.predictions.columns if c != OBSERVED]


@dataclass
class EvalResult:
    """Result container for an evaluation run.

    Attributes:
        run_id: Unique run identifier
        config: Evaluation configuration used
        dataset: Train/test partition the models were scored on
        families: Family key -> FamilyResult, in run order
        slices: Family key -> sliced metrics
        artifacts: Dictionary of artifact paths
    """
    run_id: str
    config: EvalConfig
    dataset: EvalDataset
    families: dict[str, FamilyResult]
    slices: dict[str, dict[str, Any]]
    artifacts: dict[str, Path]

    @property
    def failures(self) -> list[dict[str, Any]]:
        return [f for res in self.families.values() for f in res.failures]


def performance_record(fitted: FittedModel, skill: SkillScores) -> dict[str, Any]:
    """One PerformanceTable row."""
    return {
        "model_name": fitted.model_id,
        "fitting_function": fitted.fitting_function,
        "distribution": fitted.distribution,
        "predictors": fitted.predictors,
        "group_name": fitted.family,
        "rmse": skill.rmse,
        "cor": np.nan if skill.cor is None else skill.cor,
        "sscore": skill.sscore,
    }


def parameter_record(fitted: FittedModel) -> dict[str, Any]:
    """One ParameterTable row; coefficients fill letter columns a, b, c, ..."""
    row: dict[str, Any] = {
        "model_label": fitted.model_id,
        "predictors": fitted.predictors,
        "functional_form": fitted.functional_form,
    }
    for letter, coef in zip(string.ascii_lowercase, fitted.coefficients):
        row[letter] = coef.formatted()
    return row


def _parameter_table(fits: Sequence[FittedModel]) -> pd.DataFrame:
    # Column set is the union; shorter models leave trailing letters null
    rows = [parameter_record(f) for f in fits]
    n_letters = max((len(f.coefficients) for f in fits), default=0)
    columns = PARAMETER_COLUMNS + list(string.ascii_lowercase[:n_letters])
    return pd.DataFrame(rows, columns=columns)


def _failure(
    family: str,
    model_id: str,
    predictors: str,
    exc: BaseException,
) -> dict[str, Any]:
    logger.error(
        "Fit failed: family=%s model=%s predictors=[%s]: %s: %s",
        family, model_id, predictors, type(exc).__name__, exc,
    )
    return {
        "family": family,
        "model_id": model_id,
        "predictors": predictors,
        "error_type": type(exc).__name__,
        "message": str(exc),
    }


def _assemble(
    family: str,
    dataset: EvalDataset,
    predictions: dict[str, np.ndarray],
    scored: list[tuple[FittedModel, SkillScores]],
    fits: list[FittedModel],
    failures: list[dict[str, Any]],
    diagnostics: pd.DataFrame | None = None,
) -> FamilyResult:
    pred_df = pd.DataFrame(index=dataset.test.index)
    pred_df[OBSERVED] = dataset.test[RESPONSE].to_numpy(dtype=float)
    for model_id, values in predictions.items():
        pred_df[model_id] = values

    performance = pd.DataFrame(
        [performance_record(f, s) for f, s in scored],
        columns=PERFORMANCE_COLUMNS,
    )

    return FamilyResult(
        family=family,
        predictions=pred_df,
        performance=performance,
        parameters=_parameter_table(fits),
        fits=fits,
        failures=failures,
        diagnostics=diagnostics,
    )


def evaluate_schedule(
    family_key: str,
    strategy: ModelFamily,
    dataset: EvalDataset,
    schedule: Sequence[CovariateSubset],
    nbins: int = 15,
    verbose: bool = True,
) -> FamilyResult:
    """Fit one family over a covariate schedule and score it on test.

    For each subset, standardization stats are fitted on the training rows
    for that subset's covariates only and applied to both partitions. The
    dataset itself is never modified.

    Args:
        family_key: Family key for the result
        strategy: ModelFamily implementation
        dataset: Train/test partition
        schedule: Covariate subsets, fitted in order
        nbins: S-score histogram bins
        verbose: Whether to print progress

    Returns:
        FamilyResult
    """
    from strikerate.eval.metrics import compute_skill
    from strikerate.eval.standardize import Standardizer

    observed = dataset.test[RESPONSE].to_numpy(dtype=float)
    predictions: dict[str, np.ndarray] = {}
    scored: list[tuple[FittedModel, SkillScores]] = []
    fits: list[FittedModel] = []
    failures: list[dict[str, Any]] = []

    for subset in schedule:
        model_id = subset.model_id(strategy.prefix)
        if verbose:
            print(f"[eval]   {model_id:<4} {subset.label}")
        try:
            train, test = dataset.train, dataset.test
            if strategy.standardize:
                stats = Standardizer.fit(train, subset.columns)
                train = Standardizer.apply(stats, train)
                test = Standardizer.apply(stats, test)

            fitted = strategy.fit(train, subset.columns, model_id)
            pred = np.asarray(strategy.predict(fitted, test), dtype=float)
            skill = compute_skill(observed, pred, nbins=nbins, allow_undefined_cor=True)
        except Exception as exc:
            failures.append(_failure(strategy.group_name, model_id, subset.label, exc))
            continue

        if skill.cor is None:
            logger.warning("%s: correlation undefined (constant predictions)", model_id)
        predictions[model_id] = pred
        scored.append((fitted, skill))
        fits.append(fitted)

    return _assemble(family_key, dataset, predictions, scored, fits, failures)


def _fit_diagnostics(fits: Sequence[FittedModel], keys: Sequence[str]) -> pd.DataFrame:
    rows = []
    for fitted in fits:
        row = {"model_name": fitted.model_id, "predictors": fitted.predictors}
        row.update({k: fitted.extras.get(k) for k in keys})
        rows.append(row)
    return pd.DataFrame(rows, columns=["model_name", "predictors"] + list(keys))


def evaluate_chen(
    dataset: EvalDataset,
    chen: ChenConfig,
    nbins: int = 50,
    verbose: bool = True,
) -> FamilyResult:
    """Fit the CAPE x P parametric models, the bin model and the ensemble.

    C1-C4 and NP are fitted independently on raw cxp. C5 is built only
    when all of its members succeeded. C4 always appears in the parameter
    table but is scored and tabulated only with chen.report_linear_fit.

    Args:
        dataset: Train/test partition
        chen: Family configuration
        nbins: S-score histogram bins
        verbose: Whether to print progress

    Returns:
        FamilyResult
    """
    from strikerate.eval.metrics import compute_skill
    from strikerate.eval.nonparametric import NonParametricBinFamily
    from strikerate.eval.parametric import (
        ENSEMBLE_MEMBERS,
        EXCLUDED_FROM_ENSEMBLE,
        ParametricPowerLawFamily,
        ensemble_mean,
        ensemble_record,
    )

    parametric = ParametricPowerLawFamily(log_eps=chen.log_eps)
    binned = NonParametricBinFamily(n_bins=chen.n_bins)
    train, test = dataset.train, dataset.test
    observed = test[RESPONSE].to_numpy(dtype=float)

    all_preds: dict[str, np.ndarray] = {}
    fitted_by_id: dict[str, FittedModel] = {}
    failures: list[dict[str, Any]] = []
    n_fallback: dict[str, int] = {}

    def attempt(model_id: str, group: str, step: Callable[[], tuple[FittedModel, np.ndarray]]) -> None:
        if verbose:
            print(f"[eval]   {model_id}")
        try:
            fitted, pred = step()
        except Exception as exc:
            failures.append(_failure(group, model_id, "CAPE x P", exc))
            return
        fitted_by_id[model_id] = fitted
        all_preds[model_id] = np.asarray(pred, dtype=float)

    for model_id, fit_fn in parametric.fitters().items():
        def step(fit_fn=fit_fn, model_id=model_id):
            fitted = fit_fn(train)
            pred, n_fallback[model_id] = parametric.predict_with_fallback(fitted, test)
            return fitted, pred
        attempt(model_id, parametric.group_name, step)

    def np_step():
        fitted = binned.fit(train, "NP")
        pred, n_fallback["NP"] = binned.predict_with_fallback(fitted, test)
        return fitted, pred
    attempt("NP", binned.group_name, np_step)
    if n_fallback.get("NP"):
        logger.info("NP: %d of %d test rows used the train-mean fallback", n_fallback["NP"], len(test))

    missing = [m for m in ENSEMBLE_MEMBERS if m not in all_preds]
    if missing:
        failures.append(_failure(
            parametric.group_name, "C5", "CAPE x P",
            KeyError(f"ensemble members failed: {missing}"),
        ))
    else:
        if verbose:
            print("[eval]   C5 = mean(" + ", ".join(ENSEMBLE_MEMBERS) + ")")
        fitted_by_id["C5"] = ensemble_record("C5")
        all_preds["C5"] = ensemble_mean(all_preds)

    reported = ["C1", "C2", "C3", "C4", "C5", "NP"]
    if not chen.report_linear_fit:
        reported = [m for m in reported if m not in EXCLUDED_FROM_ENSEMBLE]

    predictions: dict[str, np.ndarray] = {}
    scored: list[tuple[FittedModel, SkillScores]] = []
    for model_id in reported:
        if model_id not in all_preds:
            continue
        try:
            skill = compute_skill(observed, all_preds[model_id], nbins=nbins, allow_undefined_cor=True)
        except Exception as exc:
            failures.append(_failure(fitted_by_id[model_id].family, model_id, "CAPE x P", exc))
            continue
        predictions[model_id] = all_preds[model_id]
        scored.append((fitted_by_id[model_id], skill))

    order = ["C1", "C2", "C3", "C4", "C5", "NP"]
    fits = [fitted_by_id[m] for m in order if m in fitted_by_id]

    diagnostics = _fit_diagnostics(fits, ["n_excluded", "n_empty_bins", "x_min", "x_max"])
    diagnostics["n_fallback"] = [n_fallback.get(f.model_id) for f in fits]
    diagnostics["in_ensemble"] = [f.model_id in ENSEMBLE_MEMBERS for f in fits]

    return _assemble("chen", dataset, predictions, scored, fits, failures, diagnostics)


def evaluate_family(
    family_key: str,
    dataset: EvalDataset,
    config: EvalConfig,
    sampler: PosteriorSampler | None = None,
    verbose: bool = True,
) -> FamilyResult:
    """Evaluate one configured family.

    Args:
        family_key: "linear", "glm", "bayes" or "chen"
        dataset: Train/test partition
        config: Evaluation configuration
        sampler: Posterior sampler for the Bayesian family (default: PyMC
            configured from config.sampler)
        verbose: Whether to print progress

    Returns:
        FamilyResult
    """
    from strikerate.eval.bayes import PyMCSampler, diagnostics_frame
    from strikerate.eval.models import create_family
    from strikerate.eval.schedule import SCHEDULE, bayes_schedule

    nbins = config.scoring.sscore_bins

    if family_key == "chen":
        return evaluate_chen(dataset, config.chen, nbins=config.scoring.sscore_bins_chen, verbose=verbose)

    if family_key == "bayes":
        sc = config.sampler
        if sampler is None:
            sampler = PyMCSampler(
                draws=sc.draws,
                tune=sc.tune,
                chains=sc.chains,
                cores=sc.cores,
                seed=sc.seed,
                target_accept=sc.target_accept,
            )
        strategy = create_family("bayes", sampler=sampler, rhat_max=sc.rhat_max, ess_min=sc.ess_min)
        result = evaluate_schedule(family_key, strategy, dataset, bayes_schedule(), nbins, verbose)
        result.diagnostics = diagnostics_frame(result.fits)
        return result

    strategy = create_family(family_key)
    result = evaluate_schedule(family_key, strategy, dataset, SCHEDULE, nbins, verbose)
    if family_key == "glm":
        result.diagnostics = _fit_diagnostics(
            result.fits, ["n_obs", "n_excluded", "converged", "aic", "deviance", "scale"],
        )
    else:
        result.diagnostics = _fit_diagnostics(result.fits, ["n_obs", "r_squared", "aic"])
    return result


def run_evaluation(
    config: EvalConfig,
    panel: pd.DataFrame | Path | str | None = None,
    sampler: PosteriorSampler | None = None,
    run_id: str | None = None,
    output_dir: Path | None = None,
    verbose: bool = True,
    write_artifacts: bool = True,
) -> EvalResult:
    """Run a complete strike-rate model comparison.

    This is the main entry point for the evaluation framework.

    Args:
        config: Evaluation configuration
        panel: Panel DataFrame or path (default: config.panel_path)
        sampler: Optional posterior sampler for the Bayesian family
        run_id: Optional run identifier (auto-generated if not provided)
        output_dir: Optional output directory
        verbose: Whether to print progress
        write_artifacts: Whether to write the run directory

    Returns:
        EvalResult with per-family tables, slices and artifact paths
    """
    from strikerate.eval.config import generate_run_id
    from strikerate.eval.data import load_panel, prepare_dataset, print_data_summary
    from strikerate.eval.metrics import print_metrics_summary
    from strikerate.eval.report import write_all_artifacts
    from strikerate.eval.slicing import compute_metrics_by_slice

    # Generate run ID if not provided
    if run_id is None:
        run_id = generate_run_id()

    if panel is None:
        if config.panel_path is None:
            raise ValueError("No panel given and config.panel_path is not set")
        panel = config.panel_path

    if verbose:
        print(f"\n{'=' * 60}")
        print(f"STRIKE RATE EVALUATION: {run_id}")
        print(f"{'=' * 60}")
        print(f"Run name: {config.run_name}")
        print(f"Families: {', '.join(config.families)}")
        print()

    # Step 1: Load and split
    if verbose:
        print("[eval] Loading panel...")

    panel_df = load_panel(panel, drop_nonpositive_response=config.drop_nonpositive_response)
    dataset = prepare_dataset(panel_df, config.split)

    if verbose:
        print_data_summary(dataset)

    # Step 2: Fit, predict and score each family
    families: dict[str, FamilyResult] = {}
    for family_key in config.families:
        if verbose:
            print(f"\n[eval] Fitting family: {family_key}")
        result = evaluate_family(family_key, dataset, config, sampler=sampler, verbose=verbose)
        families[family_key] = result
        if verbose:
            print_metrics_summary(family_key, result.performance)
            if result.failures:
                print(f"  {len(result.failures)} fit(s) failed: "
                      + ", ".join(f["model_id"] for f in result.failures))

    # Step 3: Sliced metrics
    slices = {
        key: compute_metrics_by_slice(res.predictions, dataset.test)
        for key, res in families.items()
    }

    # Step 4: Write artifacts
    artifacts: dict[str, Path] = {}
    if write_artifacts:
        if verbose:
            print("[eval] Writing artifacts...")
        artifacts = write_all_artifacts(
            config=config,
            dataset=dataset,
            families=families,
            slices=slices,
            run_id=run_id,
            base_path=output_dir,
        )
        if verbose:
            print(f"\nRun complete: {run_id}")
            print(f"Artifacts: {artifacts['config'].parent}")

    return EvalResult(
        run_id=run_id,
        config=config,
        dataset=dataset,
        families=families,
        slices=slices,
        artifacts=artifacts,
    )
