"""Descriptive prevalence and burden statistics.

Prevalence intervals are Wilson score intervals.  Burden is summarised on
the log10 scale; the geometric mean is 10 ** mean(log10).
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

PREVALENCE_COLS = ["n", "positives", "prevalence", "ci_low", "ci_high"]

_TRUE_TEXT = {"true", "1", "1.0", "yes"}
_FALSE_TEXT = {"false", "0", "0.0", "no"}


def as_indicator(values: pd.Series) -> pd.Series:
    """Coerce a presence column (bool, 0/1, nullable or CSV text) to 1.0/0.0/NaN."""
    text = values.astype(str).str.strip().str.lower()
    out = pd.Series(np.nan, index=values.index, dtype=float)
    out[text.isin(_TRUE_TEXT)] = 1.0
    out[text.isin(_FALSE_TEXT)] = 0.0
    return out


def wilson_interval(positives: float, n: float, confidence: float = 0.95):
    """Wilson score interval for a binomial proportion.  (nan, nan) when n == 0."""
    if n <= 0:
        return float("nan"), float("nan")
    z = stats.norm.ppf(1 - (1 - confidence) / 2)
    p = positives / n
    denom = 1 + z ** 2 / n
    centre = (p + z ** 2 / (2 * n)) / denom
    half = z * np.sqrt(p * (1 - p) / n + z ** 2 / (4 * n ** 2)) / denom
    return max(0.0, centre - half), min(1.0, centre + half)


def _as_list(by: Union[str, Sequence[str], None]) -> List[str]:
    if by is None:
        return []
    if isinstance(by, str):
        return [by]
    return list(by)


def prevalence(
    df: pd.DataFrame,
    indicator: str,
    by: Union[str, Sequence[str], None] = None,
    confidence: float = 0.95,
) -> pd.DataFrame:
    """Proportion positive with a Wilson interval, optionally per group.

    Rows with a missing indicator are excluded from n.

    Returns
    -------
    pd.DataFrame
        Group columns followed by ``PREVALENCE_COLS``.
    """
    keys = _as_list(by)
    work = df[keys].copy()
    work["_ind"] = as_indicator(df[indicator])
    work = work.dropna(subset=["_ind"])

    def _row(grp: pd.DataFrame) -> dict:
        n = len(grp)
        pos = int(grp["_ind"].sum())
        low, high = wilson_interval(pos, n, confidence)
        return {
            "n": n,
            "positives": pos,
            "prevalence": pos / n if n else float("nan"),
            "ci_low": low,
            "ci_high": high,
        }

    if not keys:
        return pd.DataFrame([_row(work)], columns=PREVALENCE_COLS)

    records = []
    for group_key, grp in work.groupby(keys, sort=True):
        if not isinstance(group_key, tuple):
            group_key = (group_key,)
        records.append({**dict(zip(keys, group_key)), **_row(grp)})
    return pd.DataFrame(records, columns=keys + PREVALENCE_COLS)


def burden_summary(
    df: pd.DataFrame,
    value: str = "log10_conc",
    by: Union[str, Sequence[str], None] = None,
    detected: Optional[str] = "detected",
) -> pd.DataFrame:
    """Summary of a log10 value column, optionally per group.

    Returns
    -------
    pd.DataFrame
        Group columns, then n, n_detected, mean, sd, median, q1, q3,
        geo_mean.  ``n`` counts non-missing values.
    """
    keys = _as_list(by)
    work = df[keys].copy()
    work["_v"] = pd.to_numeric(df[value], errors="coerce")
    work["_d"] = as_indicator(df[detected]) if detected else np.nan
    work = work.dropna(subset=["_v"])

    def _row(grp: pd.DataFrame) -> dict:
        v = grp["_v"]
        return {
            "n": len(v),
            "n_detected": int(grp["_d"].sum()) if detected else np.nan,
            "mean": v.mean(),
            "sd": v.std(ddof=1),
            "median": v.median(),
            "q1": v.quantile(0.25),
            "q3": v.quantile(0.75),
            "geo_mean": 10 ** v.mean(),
        }

    cols = ["n", "n_detected", "mean", "sd", "median", "q1", "q3", "geo_mean"]
    if not keys:
        return pd.DataFrame([_row(work)], columns=cols)
    records = []
    for group_key, grp in work.groupby(keys, sort=True):
        if not isinstance(group_key, tuple):
            group_key = (group_key,)
        records.append({**dict(zip(keys, group_key)), **_row(grp)})
    return pd.DataFrame(records, columns=keys + cols)


# ---------------------------------------------------------------------------
# TAC pathogen tables
# ---------------------------------------------------------------------------


def pathogen_columns(pathogens: pd.DataFrame) -> List[str]:
    """Pathogen indicator columns of a ``tac.call_pathogens`` table."""
    meta = {"sample_id", "household_id", "sample_type", "n_pathogens"}
    return [c for c in pathogens.columns if c not in meta]


def pathogen_prevalence(
    pathogens: pd.DataFrame,
    by: Union[str, Sequence[str], None] = "sample_type",
) -> pd.DataFrame:
    """Long prevalence table: one row per (group, pathogen)."""
    keys = _as_list(by)
    cols = pathogen_columns(pathogens)
    long = pathogens.melt(
        id_vars=keys, value_vars=cols, var_name="pathogen", value_name="present",
    )
    return prevalence(long, "present", by=keys + ["pathogen"])


def pathogen_count_distribution(
    pathogens: pd.DataFrame,
    by: Union[str, Sequence[str], None] = "sample_type",
) -> pd.DataFrame:
    """Number of samples with 0, 1, 2, ... pathogens, with proportions."""
    keys = _as_list(by)
    counts = (
        pathogens.groupby(keys + ["n_pathogens"]).size().rename("n_samples").reset_index()
        if keys
        else pathogens.groupby("n_pathogens").size().rename("n_samples").reset_index()
    )
    totals = counts.groupby(keys)["n_samples"].transform("sum") if keys else counts["n_samples"].sum()
    counts["proportion"] = counts["n_samples"] / totals
    return counts


def codetection_matrix(pathogens: pd.DataFrame) -> pd.DataFrame:
    """Pairwise counts of samples positive for both pathogens.

    The diagonal holds each pathogen's positive count.
    """
    cols = pathogen_columns(pathogens)
    x = pathogens[cols].apply(as_indicator).fillna(0.0)
    mat = x.T.dot(x).astype(int)
    mat.index.name = "pathogen"
    return mat


def check_prevalence_bounds(table: pd.DataFrame) -> None:
    """Raise ValueError unless prevalence and CI bounds lie in [0, 1]."""
    for col in ("prevalence", "ci_low", "ci_high"):
        if col not in table.columns:
            continue
        vals = table[col].dropna()
        bad = vals[(vals < 0) | (vals > 1)]
        if not bad.empty:
            raise ValueError(f"{col} outside [0, 1] in rows {bad.index.tolist()[:10]}")
    if {"ci_low", "prevalence", "ci_high"} <= set(table.columns):
        t = table.dropna(subset=["ci_low", "prevalence", "ci_high"])
        bad = t[(t["ci_low"] > t["prevalence"] + 1e-12) | (t["prevalence"] > t["ci_high"] + 1e-12)]
        if not bad.empty:
            raise ValueError(f"Interval does not contain prevalence in rows {bad.index.tolist()[:10]}")
