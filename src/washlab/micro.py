"""Microbiology cleaning: MPN -> concentration in reporting units -> log10.

Concentration rules per sample matrix (MPN is per 100 mL of tray volume):

  water : MPN/100mL * dilution * 100 / sample_volume_ml      -> MPN/100mL
  hands : MPN/100 * eluent_volume_ml * dilution              -> MPN/2hands
  soil  : MPN/100 * eluent_volume_ml * dilution
          / (sample_mass_g * (1 - moisture_fraction))        -> MPN/dry_g
  food  : MPN/100 * eluent_volume_ml * dilution / sample_mass_g -> MPN/g

The per-sample limit of detection is the tray lower limit pushed through
the same conversion, so non-detects can be substituted on the log scale.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from washlab.config import WorkshopConfig
from washlab.mpn import apply_mpn, build_mpn_table

logger = logging.getLogger(__name__)

UNITS = {
    "water": "MPN/100mL",
    "hands": "MPN/2hands",
    "soil": "MPN/dry_g",
    "food": "MPN/g",
}

CLEAN_MICRO_COLS = [
    "sample_id",
    "household_id",
    "sample_type",
    "matrix",
    "target",
    "large_wells",
    "small_wells",
    "mpn_per_100ml",
    "censor",
    "moisture_fraction",
    "concentration",
    "lod",
    "unit",
    "log10_conc",
    "detected",
]


def moisture_fraction(wet: pd.Series, dry: pd.Series) -> pd.Series:
    """(wet - dry) / wet.  NaN outside [0, 1): wet <= 0, dry <= 0 or dry > wet."""
    wet = pd.to_numeric(wet, errors="coerce")
    dry = pd.to_numeric(dry, errors="coerce")
    frac = (wet - dry) / wet
    bad = (wet <= 0) | (dry <= 0) | (dry > wet)
    return frac.mask(bad)


def conversion_factor(df: pd.DataFrame) -> pd.Series:
    """Multiplier from MPN/100mL to the matrix reporting unit.

    Expects a ``matrix`` column plus the volume/mass columns of the raw
    sheet; soil rows also need ``moisture_fraction``.
    """
    dilution = df["dilution"].fillna(1.0)
    eluent = df["eluent_volume_ml"]
    mass = df["sample_mass_g"]
    factor = pd.Series(np.nan, index=df.index, dtype=float)

    water = df["matrix"] == "water"
    sample_vol = df.loc[water, "sample_volume_ml"].fillna(100.0)
    factor[water] = dilution[water] * 100.0 / sample_vol

    hands = df["matrix"] == "hands"
    factor[hands] = eluent[hands] / 100.0 * dilution[hands]

    soil = df["matrix"] == "soil"
    dry_mass = mass[soil] * (1.0 - df.loc[soil, "moisture_fraction"])
    factor[soil] = eluent[soil] / 100.0 * dilution[soil] / dry_mass

    food = df["matrix"] == "food"
    factor[food] = eluent[food] / 100.0 * dilution[food] / mass[food]

    # Zero or negative denominators give inf/negative factors.
    return factor.where(np.isfinite(factor) & (factor > 0))


def adjust_concentration(df: pd.DataFrame, cfg: WorkshopConfig) -> pd.DataFrame:
    """Add moisture_fraction, concentration, lod and unit.

    ``df`` needs ``matrix`` and ``mpn_per_100ml`` next to the raw sheet
    columns.  The lod is the tray lower limit through the same conversion.
    """
    out = df.copy()
    out["moisture_fraction"] = moisture_fraction(out["wet_mass_g"], out["dry_mass_g"])
    factor = conversion_factor(out)
    out["concentration"] = out["mpn_per_100ml"] * factor
    out["lod"] = cfg.tray.lower_limit * factor
    out["unit"] = out["matrix"].map(UNITS)
    return out


def log_transform(
    conc: pd.Series,
    lod: pd.Series,
    censor: pd.Series,
    convention: str = "half_lod",
) -> pd.Series:
    """log10 concentrations with a non-detect convention.

    half_lod : non-detects -> log10(lod / 2)
    lod      : non-detects -> log10(lod)
    plus_one : log10(conc + 1) everywhere (non-detects are 0 -> 0.0)

    Right-censored values keep log10 of the upper-limit concentration.
    """
    conc = pd.to_numeric(conc, errors="coerce").astype(float)
    lod = pd.to_numeric(lod, errors="coerce").astype(float)
    left = (censor == "left").fillna(False).astype(bool)

    if convention == "plus_one":
        return np.log10(conc.where(~left, 0.0) + 1.0)

    if convention == "half_lod":
        substitute = lod / 2.0
    elif convention == "lod":
        substitute = lod
    else:
        raise ValueError(f"Unknown log convention: {convention}")

    with np.errstate(divide="ignore", invalid="ignore"):
        logged = np.log10(conc.where(conc > 0))
        logged = logged.where(~left, np.log10(substitute))
    return logged


def clean_micro(
    raw: pd.DataFrame,
    cfg: WorkshopConfig,
    table: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Clean the raw microbiology sheet into log10 concentrations.

    Parameters
    ----------
    raw : pd.DataFrame
        Output of ``lab_loader.load_micro_csv``.
    cfg : WorkshopConfig
    table : pd.DataFrame or None
        MPN lookup table.  Built from ``cfg.tray`` when None.

    Returns
    -------
    pd.DataFrame
        Columns in ``CLEAN_MICRO_COLS`` order, one row per sample/target,
        sorted by (household_id, sample_type, target).
    """
    df = raw.copy()

    df["matrix"] = df["sample_type"].map(
        {name: st.matrix for name, st in cfg.sample_types.items()}
    )
    unknown = df["matrix"].isna()
    if unknown.any():
        logger.warning(
            "Dropping %d rows with unknown sample types: %s",
            int(unknown.sum()), sorted(df.loc[unknown, "sample_type"].dropna().unique()),
        )
        df = df[~unknown].copy()

    bad_target = ~df["target"].isin(cfg.culture_targets)
    if bad_target.any():
        logger.warning(
            "Dropping %d rows with unknown culture targets: %s",
            int(bad_target.sum()), sorted(df.loc[bad_target, "target"].dropna().unique()),
        )
        df = df[~bad_target].copy()

    # Impossible well counts cannot be looked up.
    out_of_range = ~(
        df["large_wells"].between(0, cfg.tray.large_wells)
        & df["small_wells"].between(0, cfg.tray.small_wells)
    ) & df["large_wells"].notna() & df["small_wells"].notna()
    if out_of_range.any():
        logger.warning("%d rows with well counts outside the tray; set to missing", int(out_of_range.sum()))
        df.loc[out_of_range, ["large_wells", "small_wells"]] = np.nan

    if table is None:
        table = build_mpn_table(cfg.tray)
    df = apply_mpn(df.reset_index(drop=True), table, cfg.tray)

    df = adjust_concentration(df, cfg)
    df["log10_conc"] = log_transform(df["concentration"], df["lod"], df["censor"], cfg.log_convention)
    df["detected"] = df["mpn_per_100ml"].gt(0).astype("boolean").mask(df["mpn_per_100ml"].isna())

    n_unusable = df["concentration"].isna().sum()
    if n_unusable:
        logger.warning("%d samples without a usable concentration", n_unusable)

    df = df[CLEAN_MICRO_COLS].sort_values(["household_id", "sample_type", "target"])
    df = df.reset_index(drop=True)
    logger.info(
        "Cleaned microbiology: %d rows, %d detected, %d non-detects",
        len(df), int(df["detected"].sum()), int((df["censor"] == "left").sum()),
    )
    return df


def esbl_proportion(clean: pd.DataFrame) -> pd.DataFrame:
    """ESBL E. coli as a fraction of total E. coli per sample.

    Defined only where both targets were detected.  Ratios above 1 (ESBL
    count exceeding total, which is measurement noise) are capped at 1.0
    and flagged in ``ratio_capped``.

    Returns
    -------
    pd.DataFrame
        Columns: sample_id, household_id, sample_type, ecoli, esbl_ecoli,
        esbl_fraction, ratio_capped.
    """
    cols = ["sample_id", "household_id", "sample_type", "ecoli", "esbl_ecoli", "esbl_fraction", "ratio_capped"]
    detected = clean[clean["detected"].fillna(False).astype(bool)]
    if detected.empty:
        return pd.DataFrame(columns=cols)

    wide = detected.pivot_table(
        index=["sample_id", "household_id", "sample_type"],
        columns="target",
        values="concentration",
        aggfunc="first",
    ).reset_index()
    wide.columns.name = None
    for target in ("ecoli", "esbl_ecoli"):
        if target not in wide.columns:
            wide[target] = np.nan
    wide = wide.dropna(subset=["ecoli", "esbl_ecoli"])

    ratio = wide["esbl_ecoli"] / wide["ecoli"]
    wide["ratio_capped"] = ratio > 1.0
    wide["esbl_fraction"] = ratio.clip(upper=1.0)
    if wide["ratio_capped"].any():
        logger.warning("%d samples with ESBL above total E. coli; capped at 1.0", int(wide["ratio_capped"].sum()))
    return wide[cols].reset_index(drop=True)
