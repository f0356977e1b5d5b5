#!/usr/bin/env python3
"""CLI for running strike-rate model comparisons.

Usage:
    python scripts/eval_strike_rate.py --config configs/eval_conus_v1.json

    python scripts/eval_strike_rate.py \
        --panel data/processed/panel.parquet \
        --families linear,glm,chen \
        --run-id my_eval_run

For full options:
    python scripts/eval_strike_rate.py --help
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from strikerate.config import panel_path, runs_root
from strikerate.eval.config import FAMILIES, EvalConfig, generate_run_id
from strikerate.eval.runner import run_evaluation


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Fit and compare lightning strike-rate models.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run from config file
  python scripts/eval_strike_rate.py --config configs/eval_conus_v1.json

  # Classical families only, on a specific panel
  python scripts/eval_strike_rate.py --panel data/processed/panel.csv --families linear,glm,chen

  # Shorter MCMC for a quick look
  python scripts/eval_strike_rate.py --families bayes --draws 300 --tune 300 --chains 2
        """,
    )

    # Config file (takes precedence)
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to JSON config file (command line values override it)",
    )

    # Data arguments
    parser.add_argument(
        "--panel",
        type=Path,
        help="Path to the observation panel, .csv or .parquet "
             "(default: data/processed/panel.parquet)",
    )
    parser.add_argument(
        "--families",
        help=f"Comma-separated families to run (default: {','.join(FAMILIES)})",
    )
    parser.add_argument(
        "--drop-nonpositive",
        action="store_true",
        help="Drop rows with strikes <= 0 from the panel for every family "
             "(the Gamma families always skip them)",
    )

    # Sampler arguments
    parser.add_argument(
        "--draws",
        type=int,
        help="Posterior draws per chain (default: 1000)",
    )
    parser.add_argument(
        "--tune",
        type=int,
        help="Tuning iterations per chain (default: 1000)",
    )
    parser.add_argument(
        "--chains",
        type=int,
        help="Number of MCMC chains (default: 4)",
    )
    parser.add_argument(
        "--cores",
        type=int,
        help="Processes used to run chains (default: 1)",
    )

    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the train/test split and the sampler (default: 123)",
    )

    # Output arguments
    parser.add_argument(
        "--run-id",
        help="Run identifier (default: auto-generated timestamp)",
    )
    parser.add_argument(
        "--run-name",
        help="Human-readable run name",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Base directory for run outputs (default: runs/)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )

    return parser.parse_args()


def build_config(args: argparse.Namespace) -> EvalConfig:
    """Create the run config from a file and/or command line arguments."""
    if args.config:
        config = EvalConfig.load(args.config)
    else:
        config = EvalConfig(run_name=args.run_name or "strike_rate_eval")

    if args.run_name:
        config.run_name = args.run_name
    if args.panel:
        config.panel_path = str(args.panel)
    elif config.panel_path is None:
        config.panel_path = str(panel_path())
    if args.families:
        config.families = [f.strip() for f in args.families.split(",") if f.strip()]
    if args.drop_nonpositive:
        config.drop_nonpositive_response = True

    for name in ("draws", "tune", "chains", "cores"):
        value = getattr(args, name)
        if value is not None:
            setattr(config.sampler, name, value)
    if args.seed is not None:
        config.split.seed = args.seed
        config.sampler.seed = args.seed

    # Re-run validation after overrides
    config._validate()
    return config


def main() -> int:
    """Main entry point."""
    args = parse_args()
    verbose = not args.quiet

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # Generate run ID
    run_id = args.run_id or generate_run_id()

    # Determine output directory
    output_dir = args.output_dir
    if output_dir is None:
        output_dir = runs_root()

    # Run evaluation
    try:
        result = run_evaluation(
            config=config,
            run_id=run_id,
            output_dir=output_dir,
            verbose=verbose,
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if result.failures:
        print(
            f"{len(result.failures)} model fit(s) failed; see failures.json",
            file=sys.stderr,
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
