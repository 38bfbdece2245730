"""TaqMan Array Card (TAC) cleaning and pathogen calls.

Steps, in order:
  1. Parse Ct values; non-detect tokens become NaN.
  2. Gene call: detected when Ct < cutoff (strict).
  3. Blank (NTC) contamination: a gene detected in a blank on a card makes
     that gene's calls on the same card missing.
  4. Sample validity: every internal-control gene must be detected.
  5. Quantity: log10 copies from the gene's standard curve.
  6. Pathogen calls from gene rules.  A rule is a list of gene sets; the
     pathogen is positive when all genes of any one set are detected.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from washlab.config import TacSettings

logger = logging.getLogger(__name__)

# Instrument exports use several spellings for "no amplification".
NON_DETECT_TOKENS = {"", "undetermined", "und", "na", "n/a", "nan", "no ct", "noct", "-", "neg"}

GENE_COLS = [
    "sample_id",
    "card_id",
    "target",
    "ct",
    "is_blank",
    "detected",
    "contaminated",
    "valid",
    "log10_copies",
]


def parse_ct(values: pd.Series) -> pd.Series:
    """Numeric Ct; non-detect tokens, junk and non-positive values -> NaN."""
    text = values.astype(str).str.strip().str.lower()
    ct = pd.to_numeric(text.where(~text.isin(NON_DETECT_TOKENS)), errors="coerce")
    return ct.where(ct > 0)


def call_genes(genes: pd.DataFrame, cutoff: float) -> pd.DataFrame:
    """Add a boolean ``detected`` column (Ct strictly below cutoff)."""
    out = genes.copy()
    out["detected"] = (out["ct"] < cutoff).astype("boolean")
    return out


def flag_contamination(
    genes: pd.DataFrame,
    blank_prefix: str,
    internal_controls: Sequence[str] = (),
) -> pd.DataFrame:
    """Mark and blank out calls for genes detected in a card's blank.

    Adds ``is_blank`` and ``contaminated``.  Contaminated sample calls have
    ``detected`` set to missing.  Blank rows themselves keep their calls.
    Internal controls are spiked into blanks too, so their amplification
    there is expected and never marks the card.
    """
    out = genes.copy()
    out["is_blank"] = out["sample_id"].astype(str).str.startswith(blank_prefix)

    hits = out[out["is_blank"] & out["detected"].fillna(False).astype(bool)]
    control_hits = hits["target"].isin(internal_controls)
    if control_hits.any():
        logger.info(
            "Internal controls amplified in %d blanks (expected)",
            hits.loc[control_hits, "sample_id"].nunique(),
        )
    hits = hits[~control_hits]
    bad_pairs = set(zip(hits["card_id"], hits["target"]))
    out["contaminated"] = False

    if bad_pairs:
        keys = pd.MultiIndex.from_frame(out[["card_id", "target"]])
        out["contaminated"] = keys.isin(list(bad_pairs)) & ~out["is_blank"].to_numpy()
        logger.warning(
            "Blank contamination on %d card/gene pairs: %s",
            len(bad_pairs), sorted(bad_pairs)[:10],
        )
        out.loc[out["contaminated"], "detected"] = pd.NA
    return out


def flag_invalid_samples(
    genes: pd.DataFrame,
    internal_controls: List[str],
) -> pd.DataFrame:
    """Add ``valid``: every internal-control gene detected for the sample.

    A sample with a control row missing altogether is invalid.  With no
    internal controls configured, every sample is valid.
    """
    out = genes.copy()
    if not internal_controls:
        out["valid"] = True
        return out

    ctrl = out[out["target"].isin(internal_controls)]
    passed = (
        ctrl[ctrl["detected"].fillna(False).astype(bool)]
        .groupby("sample_id")["target"]
        .nunique()
    )
    valid_ids = set(passed[passed == len(set(internal_controls))].index)
    out["valid"] = out["sample_id"].isin(valid_ids)

    blank = out["is_blank"] if "is_blank" in out.columns else pd.Series(False, index=out.index)
    invalid = sorted(set(out.loc[~out["valid"] & ~blank, "sample_id"]))
    if invalid:
        logger.warning("%d samples failed internal controls: %s", len(invalid), invalid[:10])
    return out


def estimate_log10_copies(genes: pd.DataFrame, tac: TacSettings) -> pd.Series:
    """log10 copies = (Ct - intercept) / slope for detected genes."""
    slopes = genes["target"].map(lambda g: tac.curve_for(g).slope)
    intercepts = genes["target"].map(lambda g: tac.curve_for(g).intercept)
    copies = (genes["ct"] - intercepts) / slopes
    return copies.where(genes["detected"].fillna(False).astype(bool))


def _and(frame: pd.DataFrame) -> pd.Series:
    # 0 if any gene is negative, 1 if all positive, else undecidable.
    any_zero = (frame == 0).any(axis=1)
    all_one = (frame == 1).all(axis=1)
    return pd.Series(np.where(any_zero, 0.0, np.where(all_one, 1.0, np.nan)), index=frame.index)


def _or(frame: pd.DataFrame) -> pd.Series:
    any_one = (frame == 1).any(axis=1)
    all_zero = (frame == 0).all(axis=1)
    return pd.Series(np.where(any_one, 1.0, np.where(all_zero, 0.0, np.nan)), index=frame.index)


def call_pathogens(
    genes: pd.DataFrame,
    rules: Dict[str, List[List[str]]],
) -> pd.DataFrame:
    """Pathogen presence per sample from gene calls.

    Parameters
    ----------
    genes : pd.DataFrame
        Long gene table with sample_id, target, detected.  Only the rows to
        be called should be passed (valid, non-blank samples).
    rules : dict of pathogen -> list of gene sets

    Returns
    -------
    pd.DataFrame
        One row per sample_id, one nullable Int64 column per pathogen
        (1 positive, 0 negative, <NA> undecidable), plus ``n_pathogens``.
    """
    if genes.empty:
        return pd.DataFrame(columns=["sample_id", *rules.keys(), "n_pathogens"])

    det = genes["detected"]
    calls = genes.assign(call=np.where(det.isna(), np.nan, det.fillna(False).astype(bool).astype(float)))
    wide = calls.pivot_table(index="sample_id", columns="target", values="call", aggfunc="max")
    # Samples whose calls are all missing drop out of pivot_table.
    wide = wide.reindex(sorted(genes["sample_id"].unique()))

    result = pd.DataFrame(index=wide.index)
    for pathogen, rule in rules.items():
        group_calls = pd.DataFrame(index=wide.index)
        for i, group in enumerate(rule):
            cols = wide.reindex(columns=group)
            group_calls[i] = _and(cols)
        result[pathogen] = _or(group_calls).astype("Int64")

    result["n_pathogens"] = result[list(rules)].sum(axis=1, skipna=True).astype(int)
    result = result.reset_index()
    result.columns.name = None
    return result


def attach_sample_info(pathogens: pd.DataFrame, samples: pd.DataFrame) -> pd.DataFrame:
    """Join household_id and sample_type onto the pathogen table.

    ``samples`` is any table carrying sample_id, household_id, sample_type
    (e.g. the raw microbiology sheet); duplicates per sample are ignored.
    """
    info = samples[["sample_id", "household_id", "sample_type"]].drop_duplicates("sample_id")
    out = pathogens.merge(info, on="sample_id", how="left", validate="many_to_one")
    unmatched = out["household_id"].isna().sum()
    if unmatched:
        logger.warning("%d TAC samples not found in the sample register", unmatched)
    front = ["sample_id", "household_id", "sample_type"]
    return out[front + [c for c in out.columns if c not in front]]


def clean_tac(raw: pd.DataFrame, tac: TacSettings) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Run the full TAC cleaning sequence.

    Parameters
    ----------
    raw : pd.DataFrame
        Output of ``lab_loader.load_tac_csv``.
    tac : TacSettings

    Returns
    -------
    genes : pd.DataFrame
        Long table in ``GENE_COLS`` order, blanks included.
    pathogens : pd.DataFrame
        Output of ``call_pathogens`` for valid, non-blank samples.
    """
    genes = raw.copy()
    genes["ct"] = parse_ct(genes["ct"])

    dupes = genes.duplicated(subset=["sample_id", "card_id", "target"], keep="first")
    if dupes.any():
        logger.warning("Dropping %d duplicate sample/card/gene rows", int(dupes.sum()))
        genes = genes[~dupes]

    genes = call_genes(genes, tac.ct_cutoff)
    genes = flag_contamination(genes, tac.blank_prefix, tac.internal_controls)
    genes = flag_invalid_samples(genes, tac.internal_controls)
    genes["log10_copies"] = estimate_log10_copies(genes, tac)
    genes = genes[GENE_COLS].sort_values(["sample_id", "target"]).reset_index(drop=True)

    unknown = sorted(
        set(genes["target"]) - set(tac.pathogen_genes) - set(tac.internal_controls)
    )
    if unknown:
        logger.info("Genes without a pathogen rule (kept, not called): %s", unknown)

    callable_rows = genes[genes["valid"] & ~genes["is_blank"]]
    pathogens = call_pathogens(callable_rows, tac.pathogens)
    logger.info(
        "Cleaned TAC: %d samples called, %d invalid, %d blanks",
        len(pathogens),
        genes.loc[~genes["valid"] & ~genes["is_blank"], "sample_id"].nunique(),
        genes.loc[genes["is_blank"], "sample_id"].nunique(),
    )
    return genes, pathogens
