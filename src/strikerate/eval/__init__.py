"""Model comparison framework for lightning strike-rate prediction.

This module provides the batch evaluation pipeline:
    panel → train/test split → per-model standardization → model families
    → test predictions → RMSE / correlation / S-score

Key components:
    - EvalConfig: Configuration for evaluation runs
    - RandomSplit / Standardizer: leakage-free data preparation
    - LinearFamily, GammaGLMFamily, BayesianGammaFamily: fitted over the
      covariate schedule
    - ParametricPowerLawFamily, NonParametricBinFamily: CAPE x P models
    - SkillScores: RMSE, correlation, S-score

Example usage:
    from strikerate.eval import EvalConfig, run_evaluation

    config = EvalConfig.load("configs/eval_conus_v1.json")
    result = run_evaluation(config)
"""

from strikerate.eval.bayes import (
    BayesianGammaFamily,
    GammaRegressionSpec,
    PosteriorSampler,
    PosteriorSummary,
    PyMCSampler,
)
from strikerate.eval.config import EvalConfig, generate_run_id
from strikerate.eval.data import EvalDataset, load_panel, prepare_dataset
from strikerate.eval.metrics import (
    SkillScores,
    compute_skill,
    correlation,
    rmse,
    s_score,
)
from strikerate.eval.models import (
    Coefficient,
    FittedModel,
    GammaGLMFamily,
    LinearFamily,
    ModelFamily,
    create_family,
)
from strikerate.eval.nonparametric import BinTable, NonParametricBinFamily
from strikerate.eval.parametric import ParametricPowerLawFamily, ensemble_mean
from strikerate.eval.report import (
    create_run_dir,
    list_runs,
    load_run,
    write_all_artifacts,
)
from strikerate.eval.runner import EvalResult, FamilyResult, run_evaluation
from strikerate.eval.schedule import SCHEDULE, CovariateSubset, bayes_schedule
from strikerate.eval.slicing import compute_metrics_by_slice
from strikerate.eval.splits import RandomSplit, create_split
from strikerate.eval.standardize import StandardizationStats, Standardizer

__all__ = [
    # Config
    "EvalConfig",
    "generate_run_id",
    # Data
    "EvalDataset",
    "load_panel",
    "prepare_dataset",
    # Splits
    "create_split",
    "RandomSplit",
    # Standardization
    "Standardizer",
    "StandardizationStats",
    # Schedule
    "SCHEDULE",
    "CovariateSubset",
    "bayes_schedule",
    # Models
    "ModelFamily",
    "FittedModel",
    "Coefficient",
    "LinearFamily",
    "GammaGLMFamily",
    "create_family",
    "BayesianGammaFamily",
    "GammaRegressionSpec",
    "PosteriorSampler",
    "PosteriorSummary",
    "PyMCSampler",
    "ParametricPowerLawFamily",
    "ensemble_mean",
    "NonParametricBinFamily",
    "BinTable",
    # Metrics
    "SkillScores",
    "compute_skill",
    "rmse",
    "correlation",
    "s_score",
    "compute_metrics_by_slice",
    # Report
    "create_run_dir",
    "write_all_artifacts",
    "load_run",
    "list_runs",
    # Runner
    "EvalResult",
    "FamilyResult",
    "run_evaluation",
]
