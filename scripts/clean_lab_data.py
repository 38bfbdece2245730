#!/usr/bin/env python3
"""Stage 1: validate and clean the microbiology and TAC data.

Usage:
    python scripts/clean_lab_data.py
    python scripts/clean_lab_data.py --raw-dir data/raw --out-dir data/processed
    python scripts/clean_lab_data.py --strict     # stop on validation errors

Expects micro.csv (required) and tac.csv (optional) in the raw directory.

Exit codes: 0 = ok, 1 = missing input or validation failure in --strict mode.
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
from washlab.stages import run_clean_stage  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("clean_lab_data")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Clean microbiology and TAC lab data")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Workshop YAML config")
    parser.add_argument("--raw-dir", type=Path, default=None, help="Raw CSV directory")
    parser.add_argument("--out-dir", type=Path, default=None, help="Processed output directory")
    parser.add_argument("--strict", action="store_true", help="Fail on validation errors")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Print stage summary as JSON")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        summary = run_clean_stage(cfg, args.raw_dir, args.out_dir, strict=args.strict)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Cleaning failed: %s", exc)
        sys.exit(1)

    if args.json_output:
        print(json.dumps(summary.to_dict(), indent=2))
    logger.info("%d errors, %d warnings in raw data", summary.errors, summary.warnings)
    sys.exit(0)


if __name__ == "__main__":
    main()
