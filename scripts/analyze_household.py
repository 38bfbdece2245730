#!/usr/bin/env python3
"""Stage 3: merge lab outcomes with the household survey and model them.

Usage:
    python scripts/analyze_household.py
    python scripts/analyze_household.py --survey data/raw/survey.csv --strict

Runs one t-test per configured exposure and a linear regression of the
household log10 E. coli concentration on the configured covariates.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from washlab.config import DEFAULT_CONFIG, load_config  # noqa: E402
from washlab.stages import run_analysis_stage  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("analyze_household")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Merge lab data with survey and run models")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Workshop YAML config")
    parser.add_argument("--proc-dir", type=Path, default=None, help="Processed table directory")
    parser.add_argument("--survey", type=Path, default=None, help="Raw survey CSV")
    parser.add_argument("--tables-dir", type=Path, default=None, help="Output table directory")
    parser.add_argument("--strict", action="store_true", help="Fail on survey validation errors")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Print stage summary as JSON")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        summary = run_analysis_stage(
            cfg, args.proc_dir, args.survey, args.tables_dir, strict=args.strict,
        )
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Analysis stage failed: %s", exc)
        sys.exit(1)

    if args.json_output:
        print(json.dumps(summary.to_dict(), indent=2))
    sys.exit(0)


if __name__ == "__main__":
    main()
