#!/usr/bin/env python3
"""Write the simulated raw data the workshop runs on.

Usage:
    python scripts/simulate_data.py                    # 120 households into data/raw/
    python scripts/simulate_data.py --households 300 --seed 7
    python scripts/simulate_data.py --with-errors      # add data-entry problems

Writes survey.csv, micro.csv and tac.csv.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src/ to path so we can import washlab package.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from washlab.config import DEFAULT_CONFIG, load_config  # noqa: E402
from washlab.simulate import write_simulated_data  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("simulate")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Simulate workshop raw data")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Workshop YAML config")
    parser.add_argument("--out-dir", type=Path, default=None, help="Output directory (default: config raw_dir)")
    parser.add_argument("--households", type=int, default=120, help="Number of households")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--with-errors", action="store_true", help="Inject data-entry problems")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        out_dir = args.out_dir or cfg.raw_dir
        paths = write_simulated_data(
            out_dir, cfg,
            n_households=args.households,
            seed=args.seed,
            inject_errors=args.with_errors,
        )
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Simulation failed: %s", exc)
        sys.exit(1)
    for name, path in paths.items():
        logger.info("%s -> %s", name, path)


if __name__ == "__main__":
    main()
