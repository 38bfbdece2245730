"""CSV loaders for raw lab and survey data, plus processed-table helpers.

Three raw sources:
  1. Microbiology plate sheet (Quanti-Tray well counts per sample/target)
  2. TAC export (Ct per sample/gene, long format)
  3. Household survey (one row per household)

All loaders normalise column names and types so that downstream modules
can rely on a fixed schema.  Processed tables are written as CSV with a
JSON manifest alongside.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

MICRO_COLS = [
    "sample_id",
    "household_id",
    "sample_type",
    "target",
    "large_wells",
    "small_wells",
    "dilution",
    "sample_volume_ml",
    "sample_mass_g",
    "eluent_volume_ml",
    "wet_mass_g",
    "dry_mass_g",
]

# Columns that must be present; the rest are filled with NaN when absent.
_MICRO_REQUIRED = {"sample_id", "household_id", "sample_type", "target", "large_wells", "small_wells"}
_MICRO_NUMERIC = MICRO_COLS[4:]

TAC_COLS = ["sample_id", "card_id", "target", "ct"]

SURVEY_REQUIRED = ["household_id"]

# Identifiers stay text when processed tables are read back.
_ID_DTYPES = {"sample_id": str, "household_id": str, "card_id": str}

# Common spreadsheet headings mapped to canonical names.
_COL_ALIASES = {
    "sampleid": "sample_id",
    "hhid": "household_id",
    "hh_id": "household_id",
    "type": "sample_type",
    "organism": "target",
    "gene": "target",
    "large": "large_wells",
    "small": "small_wells",
    "cq": "ct",
    "card": "card_id",
}


def normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case, strip and snake-case column names, then apply aliases."""
    df = df.copy()
    df.columns = [
        str(c).strip().lower().replace(" ", "_").replace("-", "_") for c in df.columns
    ]
    return df.rename(columns=_COL_ALIASES)


def _require(df: pd.DataFrame, required: Iterable[str], path: Path) -> None:
    missing = sorted(set(required) - set(df.columns))
    if missing:
        raise ValueError(f"{path} missing columns: {missing}. Got: {list(df.columns)}")


def _strip_ids(df: pd.DataFrame, cols: Iterable[str]) -> None:
    for col in cols:
        if col in df.columns:
            df[col] = df[col].where(df[col].isna(), df[col].astype(str).str.strip())


# ---------------------------------------------------------------------------
# Raw loaders
# ---------------------------------------------------------------------------


def load_micro_csv(path: Path) -> pd.DataFrame:
    """Load the raw microbiology sheet.

    Returns
    -------
    pd.DataFrame
        Columns in ``MICRO_COLS`` order.  Well counts and volumes/masses are
        float64 (NaN where blank or unparseable).  ``sample_type`` and
        ``target`` are lower-case.
    """
    df = normalise_columns(pd.read_csv(path, dtype=str))
    _require(df, _MICRO_REQUIRED, path)

    for col in MICRO_COLS:
        if col not in df.columns:
            df[col] = np.nan
    _strip_ids(df, ("sample_id", "household_id", "sample_type", "target"))
    df["sample_type"] = df["sample_type"].str.lower()
    df["target"] = df["target"].str.lower()
    for col in _MICRO_NUMERIC:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    # Undiluted unless stated.
    df["dilution"] = df["dilution"].fillna(1.0)

    df = df[MICRO_COLS].reset_index(drop=True)
    logger.info("Loaded microbiology sheet: %d rows from %s", len(df), Path(path).name)
    return df


def load_tac_csv(path: Path) -> pd.DataFrame:
    """Load a long-format TAC export.

    The ``ct`` column is kept as text; ``washlab.tac.parse_ct`` turns it
    into numbers so that non-detect tokens can be recognised.
    """
    df = normalise_columns(pd.read_csv(path, dtype=str, keep_default_na=False))
    _require(df, ("sample_id", "target", "ct"), path)
    if "card_id" not in df.columns:
        df["card_id"] = "card1"
    _strip_ids(df, ("sample_id", "card_id", "target"))
    df["ct"] = df["ct"].astype(str).str.strip()
    df = df[TAC_COLS].reset_index(drop=True)
    logger.info(
        "Loaded TAC export: %d rows, %d samples, %d targets",
        len(df), df["sample_id"].nunique(), df["target"].nunique(),
    )
    return df


def load_survey_csv(path: Path) -> pd.DataFrame:
    """Load the household survey.  Values other than the ID stay as text."""
    df = normalise_columns(pd.read_csv(path, dtype=str))
    _require(df, SURVEY_REQUIRED, path)
    _strip_ids(df, ("household_id",))
    logger.info("Loaded survey: %d households from %s", len(df), Path(path).name)
    return df


# ---------------------------------------------------------------------------
# Processed tables
# ---------------------------------------------------------------------------


def compute_manifest(df: pd.DataFrame) -> Dict:
    """SHA-256 of the CSV bytes plus shape and column list."""
    csv_bytes = df.to_csv(index=False).encode("utf-8")
    return {
        "sha256": hashlib.sha256(csv_bytes).hexdigest(),
        "n_rows": len(df),
        "n_columns": len(df.columns),
        "columns": list(df.columns),
    }


def save_table(df: pd.DataFrame, out_dir: Path, name: str) -> Tuple[Path, Dict]:
    """Write ``{name}.csv`` and ``{name}_manifest.json`` under out_dir.

    Returns
    -------
    (csv_path, manifest_dict)
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / f"{name}.csv"
    manifest_path = out_dir / f"{name}_manifest.json"

    manifest = compute_manifest(df)
    df.to_csv(csv_path, index=False)
    with open(manifest_path, "w") as f:
        json.dump(manifest, f, indent=2)

    logger.info("Saved %s (%d rows, SHA-256: %s)", csv_path.name, len(df), manifest["sha256"][:12])
    return csv_path, manifest


def load_table(name: str, proc_dir: Path) -> pd.DataFrame:
    """Load a processed table written by ``save_table``."""
    p = Path(proc_dir) / f"{name}.csv"
    if not p.exists():
        raise FileNotFoundError(f"Processed table not found: {p}")
    return pd.read_csv(p, dtype=_ID_DTYPES)
