#!/usr/bin/env python3
"""Run the whole workshop end to end.

Usage:
    python scripts/run_workshop.py --simulate          # fresh simulated data first
    python scripts/run_workshop.py --json

Stages run in order (clean -> describe -> analyse); each reads the files
the previous one wrote.  Stops at the first failing stage.

Exit codes: 0 = all stages ok, 1 = a stage failed.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from washlab.config import DEFAULT_CONFIG, WorkshopConfig, load_config  # noqa: E402
from washlab.simulate import write_simulated_data  # noqa: E402
from washlab.stages import (  # noqa: E402
    run_analysis_stage,
    run_clean_stage,
    run_describe_stage,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_workshop")


def run_workshop(cfg: WorkshopConfig, simulate: bool = False, seed: int = 42) -> dict:
    """Run all stages and return their summaries keyed by stage name."""
    if simulate:
        write_simulated_data(cfg.raw_dir, cfg, seed=seed)

    results = {}
    for stage in (run_clean_stage, run_describe_stage, run_analysis_stage):
        summary = stage(cfg)
        results[summary.stage] = summary.to_dict()
    return results


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run all workshop stages")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Workshop YAML config")
    parser.add_argument("--simulate", action="store_true", help="Write simulated raw data first")
    parser.add_argument("--seed", type=int, default=42, help="Simulation seed")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Print summaries as JSON")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        results = run_workshop(cfg, simulate=args.simulate, seed=args.seed)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Workshop run failed: %s", exc)
        sys.exit(1)

    if args.json_output:
        print(json.dumps(results, indent=2, default=str))
    sys.exit(0)


if __name__ == "__main__":
    main()
