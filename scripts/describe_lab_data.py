#!/usr/bin/env python3
"""Stage 2: prevalence and burden tables plus figures.

Usage:
    python scripts/describe_lab_data.py
    python scripts/describe_lab_data.py --proc-dir data/processed --tables-dir outputs/tables

Reads the cleaned tables written by clean_lab_data.py.
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
from washlab.stages import run_describe_stage  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("describe_lab_data")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Describe cleaned lab data")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Workshop YAML config")
    parser.add_argument("--proc-dir", type=Path, default=None, help="Processed table directory")
    parser.add_argument("--tables-dir", type=Path, default=None, help="Output table directory")
    parser.add_argument("--figures-dir", type=Path, default=None, help="Output figure directory")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Print stage summary as JSON")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        summary = run_describe_stage(cfg, args.proc_dir, args.tables_dir, args.figures_dir)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Describe stage failed: %s", exc)
        sys.exit(1)

    if args.json_output:
        print(json.dumps(summary.to_dict(), indent=2))
    sys.exit(0)


if __name__ == "__main__":
    main()
