"""Most Probable Number (MPN) estimation for Quanti-Tray counts.

The tray holds two well sizes.  Given the number of positive large and
small wells, the MPN per 100 mL is the maximum-likelihood concentration
under a Poisson model:

    sum_i  p_i v_i / (exp(lambda v_i) - 1)  =  sum_i (n_i - p_i) v_i

where n_i, p_i, v_i are the well count, positives and well volume (mL) of
size i, and lambda is organisms per mL.

Counts are normally converted through a lookup table (the vendor's, or one
built here from the same likelihood).  Combinations missing from a
supplied table are linearly interpolated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from scipy.optimize import brentq

from washlab.config import TrayGeometry

logger = logging.getLogger(__name__)

TABLE_COLS = ["large", "small", "mpn"]

# Bracket for lambda (organisms per mL) in the root search.
_LAMBDA_MIN = 1e-9
_LAMBDA_MAX = 1e3


def _score(lam: float, positives: np.ndarray, totals: np.ndarray, volumes: np.ndarray) -> float:
    with np.errstate(over="ignore"):
        pos_term = np.sum(positives * volumes / np.expm1(lam * volumes))
    return float(pos_term - np.sum((totals - positives) * volumes))


def _check_counts(large: int, small: int, geometry: TrayGeometry) -> None:
    if not 0 <= large <= geometry.large_wells:
        raise ValueError(
            f"Large-well count {large} outside [0, {geometry.large_wells}]"
        )
    if not 0 <= small <= geometry.small_wells:
        raise ValueError(
            f"Small-well count {small} outside [0, {geometry.small_wells}]"
        )


def quanti_tray_mpn(
    large: int,
    small: int,
    geometry: TrayGeometry = TrayGeometry(),
) -> float:
    """MPN per 100 mL for one tray reading.

    Zero positive wells returns 0.0 (report as below the lower limit).
    All wells positive returns ``geometry.upper_limit``.  Other results are
    rounded to one decimal and capped at the upper limit.

    Raises ValueError for counts outside the tray geometry.
    """
    large, small = int(large), int(small)
    _check_counts(large, small, geometry)

    if large == 0 and small == 0:
        return 0.0
    if large == geometry.large_wells and small == geometry.small_wells:
        return geometry.upper_limit

    positives = np.array([large, small], dtype=float)
    totals = np.array([geometry.large_wells, geometry.small_wells], dtype=float)
    volumes = np.array([geometry.large_well_volume_ml, geometry.small_well_volume_ml])

    lam = brentq(_score, _LAMBDA_MIN, _LAMBDA_MAX, args=(positives, totals, volumes), xtol=1e-12)
    return min(round(100.0 * lam, 1), geometry.upper_limit)


def censor_status(large: float, small: float, geometry: TrayGeometry = TrayGeometry()) -> str:
    """'left' for no positives, 'right' for a saturated tray, else 'none'."""
    if large == 0 and small == 0:
        return "left"
    if large >= geometry.large_wells and small >= geometry.small_wells:
        return "right"
    return "none"


# ---------------------------------------------------------------------------
# Lookup table
# ---------------------------------------------------------------------------


def build_mpn_table(geometry: TrayGeometry = TrayGeometry()) -> pd.DataFrame:
    """Full (large, small) -> MPN table for the tray geometry."""
    records = [
        {"large": lg, "small": sm, "mpn": quanti_tray_mpn(lg, sm, geometry)}
        for lg in range(geometry.large_wells + 1)
        for sm in range(geometry.small_wells + 1)
    ]
    table = pd.DataFrame(records, columns=TABLE_COLS)
    logger.info("Built MPN table: %d combinations", len(table))
    return table


def load_mpn_table(path: Path) -> pd.DataFrame:
    """Load a lookup table CSV with columns large, small, mpn.

    Extra columns are ignored.  Rows are sorted by (large, small) and
    duplicate combinations dropped (first kept).
    """
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    missing = set(TABLE_COLS) - set(df.columns)
    if missing:
        raise ValueError(f"MPN table {path} missing columns: {sorted(missing)}")
    df = df[TABLE_COLS].dropna()
    df["large"] = df["large"].astype(int)
    df["small"] = df["small"].astype(int)
    df["mpn"] = df["mpn"].astype(float)
    df = (
        df.sort_values(["large", "small"])
        .drop_duplicates(subset=["large", "small"])
        .reset_index(drop=True)
    )
    logger.info("Loaded MPN table: %d combinations from %s", len(df), Path(path).name)
    return df


def save_mpn_table(table: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table[TABLE_COLS].to_csv(path, index=False)
    return path


def _interp_row(row: pd.DataFrame, small: float) -> float:
    exact = row.loc[row["small"] == small, "mpn"]
    if not exact.empty:
        return float(exact.iloc[0])
    return float(np.interp(small, row["small"].values, row["mpn"].values))


def lookup_mpn(large: float, small: float, table: pd.DataFrame) -> float:
    """Look up MPN per 100 mL for a well reading.

    Missing small-well counts are interpolated within the large-well row;
    a missing large-well row is interpolated between its neighbours.
    NaN counts return NaN.

    Raises ValueError if the large-well count lies outside the table.
    """
    if pd.isna(large) or pd.isna(small):
        return float("nan")

    row = table[table["large"] == large]
    if not row.empty:
        return _interp_row(row, small)

    larges = np.sort(table["large"].unique())
    below = larges[larges < large]
    above = larges[larges > large]
    if below.size == 0 or above.size == 0:
        raise ValueError(
            f"Large-well count {large} outside MPN table range "
            f"[{larges.min()}, {larges.max()}]"
        )
    lo, hi = below[-1], above[0]
    v_lo = _interp_row(table[table["large"] == lo], small)
    v_hi = _interp_row(table[table["large"] == hi], small)
    return float(np.interp(large, [lo, hi], [v_lo, v_hi]))


def apply_mpn(
    df: pd.DataFrame,
    table: Optional[pd.DataFrame] = None,
    geometry: TrayGeometry = TrayGeometry(),
) -> pd.DataFrame:
    """Add ``mpn_per_100ml`` and ``censor`` columns from well counts.

    Parameters
    ----------
    df : pd.DataFrame
        Must contain ``large_wells`` and ``small_wells``.
    table : pd.DataFrame or None
        Lookup table; built from ``geometry`` when None.
    """
    if table is None:
        table = build_mpn_table(geometry)

    out = df.copy()
    pairs = list(zip(out["large_wells"], out["small_wells"]))
    out["mpn_per_100ml"] = [lookup_mpn(lg, sm, table) for lg, sm in pairs]
    out["censor"] = [
        censor_status(lg, sm, geometry) if not (pd.isna(lg) or pd.isna(sm)) else None
        for lg, sm in pairs
    ]
    n_missing = out["mpn_per_100ml"].isna().sum()
    if n_missing:
        logger.warning("%d rows without a usable well count; MPN left missing", n_missing)
    return out

