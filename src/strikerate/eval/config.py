"""Evaluation configuration management.

This module defines the EvalConfig dataclass for strike-rate model
comparison runs. All configuration is frozen at run start and dumped to
runs/<run_id>/config.json.
"""

from __future__ import annotations

import json
import subprocess
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

FAMILIES = ("linear", "glm", "bayes", "chen")


@dataclass
class SplitConfig:
    """Configuration for the random train/test partition.

    Attributes:
        train_frac: Fraction of panel rows used for training
        seed: Seed for the index sample (numpy PCG64)
    """
    train_frac: float = 0.80
    seed: int = 123


@dataclass
class ScoringConfig:
    """Configuration for the shared skill metrics.

    Attributes:
        sscore_bins: Histogram bins for the S-score (linear/GLM/Bayesian tables)
        sscore_bins_chen: Histogram bins for the CAPE x P family tables
    """
    sscore_bins: int = 15
    sscore_bins_chen: int = 50


@dataclass
class SamplerConfig:
    """Configuration for the MCMC posterior sampler.

    Attributes:
        draws: Posterior draws per chain
        tune: Tuning (warm-up) iterations per chain
        chains: Number of independent chains
        cores: Processes used to run chains in parallel
        seed: Sampler random seed
        target_accept: NUTS target acceptance rate
        rhat_max: Largest acceptable R-hat before warning
        ess_min: Smallest acceptable bulk ESS before warning
    """
    draws: int = 1000
    tune: int = 1000
    chains: int = 4
    cores: int = 1
    seed: int = 123
    target_accept: float = 0.9
    rhat_max: float = 1.01
    ess_min: float = 400.0


@dataclass
class ChenConfig:
    """Configuration for the CAPE x P parametric and bin models.

    Attributes:
        n_bins: Equal-width bins for the non-parametric lookup table
        log_eps: Offset added to strikes before the log-log fit
        report_linear_fit: Include C4 in prediction/performance tables
    """
    n_bins: int = 50
    log_eps: float = 1e-4
    report_linear_fit: bool = False


@dataclass
class EvalConfig:
    """Configuration for a strike-rate model comparison run.

    All parameters are frozen at run start to ensure reproducibility.

    Attributes:
        run_name: Human-readable name for this run
        panel_path: Optional path to the observation panel (csv or parquet)
        families: Model families to evaluate, in run order
        drop_nonpositive_response: Drop rows with strikes <= 0 from the whole
            panel at load time (the Gamma families skip them regardless)
        split: Train/test partition configuration
        scoring: Skill metric configuration
        sampler: MCMC configuration for the Bayesian family
        chen: CAPE x P family configuration
    """

    run_name: str
    panel_path: str | None = None
    families: list[str] = field(default_factory=lambda: list(FAMILIES))
    drop_nonpositive_response: bool = False

    split: SplitConfig = field(default_factory=SplitConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    chen: ChenConfig = field(default_factory=ChenConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # Convert nested dicts to dataclasses if needed
        if isinstance(self.split, dict):
            self.split = SplitConfig(**self.split)
        if isinstance(self.scoring, dict):
            self.scoring = ScoringConfig(**self.scoring)
        if isinstance(self.sampler, dict):
            self.sampler = SamplerConfig(**self.sampler)
        if isinstance(self.chen, dict):
            self.chen = ChenConfig(**self.chen)
        self._validate()

    def _validate(self) -> None:
        """Validate all configuration parameters."""
        errors = []

        if not self.run_name:
            errors.append("run_name must not be empty")

        if not self.families:
            errors.append("families must not be empty")
        unknown = [f for f in self.families if f not in FAMILIES]
        if unknown:
            errors.append(f"Unknown families {unknown}; expected subset of {list(FAMILIES)}")
        if len(set(self.families)) != len(self.families):
            errors.append(f"families contains duplicates: {self.families}")

        if not 0.0 < self.split.train_frac < 1.0:
            errors.append(
                f"split.train_frac must be in (0, 1), got {self.split.train_frac}"
            )

        for name in ("sscore_bins", "sscore_bins_chen"):
            if getattr(self.scoring, name) < 1:
                errors.append(f"scoring.{name} must be >= 1")

        if self.sampler.draws < 1 or self.sampler.tune < 0:
            errors.append("sampler.draws must be >= 1 and sampler.tune >= 0")
        if self.sampler.chains < 1 or self.sampler.cores < 1:
            errors.append("sampler.chains and sampler.cores must be >= 1")
        if not 0.0 < self.sampler.target_accept < 1.0:
            errors.append(
                f"sampler.target_accept must be in (0, 1), got {self.sampler.target_accept}"
            )

        if self.chen.n_bins < 1:
            errors.append(f"chen.n_bins must be >= 1, got {self.chen.n_bins}")
        if self.chen.log_eps <= 0:
            errors.append(f"chen.log_eps must be positive, got {self.chen.log_eps}")

        if errors:
            raise ValueError("EvalConfig validation failed:\n  - " + "\n  - ".join(errors))

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for JSON serialization."""
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        """Serialize config to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Path | str) -> Path:
        """Save config to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json())
        return path

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> EvalConfig:
        """Create config from dictionary."""
        return cls(**d.copy())

    @classmethod
    def from_json(cls, json_str: str) -> EvalConfig:
        """Create config from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def load(cls, path: Path | str) -> EvalConfig:
        """Load config from JSON file."""
        path = Path(path)
        return cls.from_json(path.read_text())


def generate_run_id() -> str:
    """Generate a unique run ID based on timestamp."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def get_git_commit() -> str | None:
    """Get the current git commit hash, if available."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()[:8]
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    return None


def create_run_metadata() -> dict[str, Any]:
    """Create metadata for the current run."""
    return {
        "git_commit": get_git_commit(),
        "python_version": sys.version,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }
