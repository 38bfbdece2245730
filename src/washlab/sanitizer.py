"""Integrity checks on raw lab and survey data.

Checks run before cleaning:
  - Duplicate keys (sample/target, sample/card/gene, household)
  - Missing sample or household IDs
  - Well counts outside the tray geometry
  - Dry mass above wet mass, moisture outside [0, 1)
  - Unknown sample types, culture targets or TAC genes
  - ESBL positive wells exceeding total E. coli wells on the same sample
  - Ct values outside (0, 45]

Outputs a per-dataset report listing all issues found.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from washlab.config import WorkshopConfig
from washlab.tac import parse_ct

logger = logging.getLogger(__name__)

# Highest Ct an instrument run reports.
MAX_CT = 45.0

# Cap on per-row issues listed for one check.
_MAX_ROWS = 10


@dataclass
class Issue:
    """A single data quality issue."""

    dataset: str
    severity: str  # "error" | "warning"
    check: str
    detail: str
    row_index: Optional[int] = None
    key: Optional[str] = None


@dataclass
class ValidationReport:
    """Aggregated issues for one dataset."""

    dataset: str
    n_rows: int = 0
    issues: List[Issue] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "warning")

    @property
    def is_clean(self) -> bool:
        return self.error_count == 0

    def summary(self) -> str:
        if self.is_clean and self.warning_count == 0:
            return f"{self.dataset}: CLEAN ({self.n_rows} rows)"
        return (
            f"{self.dataset}: {self.error_count} errors, "
            f"{self.warning_count} warnings ({self.n_rows} rows)"
        )

    def add(self, severity: str, check: str, detail: str, **kwargs) -> None:
        self.issues.append(Issue(self.dataset, severity, check, detail, **kwargs))


def _row_issues(
    report: ValidationReport,
    df: pd.DataFrame,
    mask: pd.Series,
    severity: str,
    check: str,
    describe,
    key_col: str = "sample_id",
) -> None:
    """One issue per offending row (first _MAX_ROWS), plus a count if truncated."""
    bad_idx = df.index[mask.fillna(False).astype(bool)].tolist()
    for idx in bad_idx[:_MAX_ROWS]:
        report.add(
            severity, check, describe(df.loc[idx]),
            row_index=int(idx), key=str(df.at[idx, key_col]),
        )
    if len(bad_idx) > _MAX_ROWS:
        report.add(severity, check, f"... and {len(bad_idx) - _MAX_ROWS} more rows")


def _check_missing_ids(report: ValidationReport, df: pd.DataFrame, cols) -> None:
    for col in cols:
        if col not in df.columns:
            continue
        n = int(df[col].isna().sum())
        if n:
            report.add("error", f"missing_{col}", f"{n} rows without {col}.")


# ---------------------------------------------------------------------------
# Microbiology
# ---------------------------------------------------------------------------


def validate_micro(raw: pd.DataFrame, cfg: WorkshopConfig) -> ValidationReport:
    """Run integrity checks on the raw microbiology sheet."""
    report = ValidationReport(dataset="microbiology", n_rows=len(raw))
    if raw.empty:
        report.add("error", "empty", "Microbiology sheet is empty.")
        return report

    _check_missing_ids(report, raw, ("sample_id", "household_id"))

    dupes = raw[raw.duplicated(subset=["sample_id", "target"], keep=False)]
    if len(dupes) > 0:
        report.add(
            "error", "duplicate_sample_target",
            f"{len(dupes)} rows share sample_id/target: "
            f"{sorted(dupes['sample_id'].astype(str).unique())[:10]}",
        )

    unknown_types = sorted(set(raw["sample_type"].dropna()) - set(cfg.sample_types))
    if unknown_types:
        report.add("warning", "unknown_sample_type", f"Not in config (rows dropped): {unknown_types}")

    unknown_targets = sorted(set(raw["target"].dropna()) - set(cfg.culture_targets))
    if unknown_targets:
        report.add("warning", "unknown_target", f"Not in config (rows dropped): {unknown_targets}")

    for col, limit in (("large_wells", cfg.tray.large_wells), ("small_wells", cfg.tray.small_wells)):
        vals = raw[col]
        _row_issues(
            report, raw, (vals < 0) | (vals > limit), "error", f"{col}_out_of_range",
            lambda r, c=col, lim=limit: f"{c}={r[c]} outside [0, {lim}]",
        )
        n_nan = int(vals.isna().sum())
        if n_nan:
            report.add("warning", f"{col}_missing", f"{n_nan} rows without {col}.")

    _row_issues(
        report, raw, raw["dry_mass_g"] > raw["wet_mass_g"], "error", "dry_above_wet",
        lambda r: f"dry_mass_g={r['dry_mass_g']} > wet_mass_g={r['wet_mass_g']}",
    )
    # Moisture = (wet - dry) / wet must lie in [0, 1); dry > wet is reported above.
    wet, dry = raw["wet_mass_g"], raw["dry_mass_g"]
    moisture_bad = wet.notna() & dry.notna() & ~(dry > wet) & ((wet <= 0) | (dry <= 0))
    _row_issues(
        report, raw, moisture_bad, "error", "moisture_out_of_range",
        lambda r: f"wet_mass_g={r['wet_mass_g']}, dry_mass_g={r['dry_mass_g']} "
                  f"give moisture outside [0, 1)",
    )

    matrix = raw["sample_type"].map({n: st.matrix for n, st in cfg.sample_types.items()})
    soil = matrix == "soil"
    no_moisture = soil & (raw["wet_mass_g"].isna() | raw["dry_mass_g"].isna())
    _row_issues(
        report, raw, no_moisture, "warning", "soil_moisture_missing",
        lambda r: "soil sample without moisture tin masses",
    )
    needs_eluent = matrix.isin(["hands", "soil", "food"]) & raw["eluent_volume_ml"].isna()
    _row_issues(
        report, raw, needs_eluent, "error", "eluent_volume_missing",
        lambda r: f"{r['sample_type']} sample without eluent_volume_ml",
    )
    needs_mass = matrix.isin(["soil", "food"]) & ~(raw["sample_mass_g"] > 0)
    _row_issues(
        report, raw, needs_mass, "error", "sample_mass_invalid",
        lambda r: f"{r['sample_type']} sample_mass_g={r['sample_mass_g']}",
    )

    report.issues.extend(_check_esbl_vs_total(raw))
    return report


def _check_esbl_vs_total(raw: pd.DataFrame) -> List[Issue]:
    """ESBL trays with more positive wells than the total E. coli tray."""
    issues: List[Issue] = []
    wells = raw.pivot_table(
        index="sample_id", columns="target",
        values=["large_wells", "small_wells"], aggfunc="first",
    )
    if ("large_wells", "ecoli") not in wells.columns or ("large_wells", "esbl_ecoli") not in wells.columns:
        return issues
    total = wells[("large_wells", "ecoli")] + wells[("small_wells", "ecoli")]
    esbl = wells[("large_wells", "esbl_ecoli")] + wells[("small_wells", "esbl_ecoli")]
    for sample_id in esbl.index[esbl > total][:_MAX_ROWS]:
        issues.append(Issue(
            dataset="microbiology",
            severity="warning",
            check="esbl_exceeds_total",
            detail=f"ESBL wells {esbl[sample_id]:.0f} > E. coli wells {total[sample_id]:.0f}",
            key=str(sample_id),
        ))
    return issues


# ---------------------------------------------------------------------------
# TAC
# ---------------------------------------------------------------------------


def validate_tac(raw: pd.DataFrame, cfg: WorkshopConfig) -> ValidationReport:
    """Run integrity checks on the raw TAC export."""
    report = ValidationReport(dataset="tac", n_rows=len(raw))
    if raw.empty:
        report.add("error", "empty", "TAC export is empty.")
        return report

    _check_missing_ids(report, raw.replace("", pd.NA), ("sample_id", "target"))

    dupes = raw[raw.duplicated(subset=["sample_id", "card_id", "target"], keep=False)]
    if len(dupes) > 0:
        report.add(
            "error", "duplicate_sample_gene",
            f"{len(dupes)} rows share sample_id/card_id/target: "
            f"{sorted(dupes['sample_id'].astype(str).unique())[:10]}",
        )

    known = set(cfg.tac.pathogen_genes) | set(cfg.tac.internal_controls)
    unknown = sorted(set(raw["target"]) - known)
    if unknown:
        report.add("warning", "unknown_gene", f"Genes without a pathogen rule: {unknown}")

    ct = parse_ct(raw["ct"])
    _row_issues(
        report, raw, ct > MAX_CT, "error", "ct_out_of_range",
        lambda r: f"{r['target']} Ct={r['ct']} above {MAX_CT}",
    )
    text = raw["ct"].astype(str).str.strip()
    unparsed = ct.isna() & pd.to_numeric(text, errors="coerce").notna()
    _row_issues(
        report, raw, unparsed, "error", "ct_non_positive",
        lambda r: f"{r['target']} Ct={r['ct']} is not positive",
    )

    blanks = raw["sample_id"].astype(str).str.startswith(cfg.tac.blank_prefix)
    cards = set(raw["card_id"])
    cards_with_blank = set(raw.loc[blanks, "card_id"])
    no_blank = sorted(cards - cards_with_blank)
    if no_blank:
        report.add("warning", "card_without_blank", f"Cards without an NTC: {no_blank[:10]}")

    for ctrl in cfg.tac.internal_controls:
        samples = set(raw.loc[~blanks, "sample_id"])
        with_ctrl = set(raw.loc[~blanks & (raw["target"] == ctrl), "sample_id"])
        lacking = sorted(samples - with_ctrl)
        if lacking:
            report.add(
                "error", "internal_control_missing",
                f"{len(lacking)} samples without {ctrl}: {lacking[:10]}",
            )
    return report


# ---------------------------------------------------------------------------
# Survey
# ---------------------------------------------------------------------------


def validate_survey(raw: pd.DataFrame) -> ValidationReport:
    """Run integrity checks on the raw household survey."""
    report = ValidationReport(dataset="survey", n_rows=len(raw))
    if raw.empty:
        report.add("error", "empty", "Survey is empty.")
        return report

    _check_missing_ids(report, raw, ("household_id",))

    dupes = raw[raw["household_id"].duplicated(keep=False) & raw["household_id"].notna()]
    if len(dupes) > 0:
        report.add(
            "error", "duplicate_household",
            f"{len(dupes)} rows share household_id: "
            f"{sorted(dupes['household_id'].astype(str).unique())[:10]}",
        )

    for col in ("members", "rooms"):
        if col not in raw.columns:
            continue
        vals = pd.to_numeric(raw[col], errors="coerce")
        _row_issues(
            report, raw, vals <= 0, "warning", f"{col}_non_positive",
            lambda r, c=col: f"{c}={r[c]}", key_col="household_id",
        )
    return report


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def format_report(reports: Dict[str, ValidationReport]) -> str:
    """Format all reports as a human-readable string."""
    lines: List[str] = []
    lines.append("=" * 60)
    lines.append("DATA VALIDATION REPORT")
    lines.append("=" * 60)

    total_errors = 0
    total_warnings = 0

    for name in sorted(reports.keys()):
        r = reports[name]
        total_errors += r.error_count
        total_warnings += r.warning_count
        lines.append(f"\n--- {r.summary()} ---")
        for issue in r.issues:
            prefix = "ERROR" if issue.severity == "error" else "WARN "
            key_str = f" [{issue.key}]" if issue.key else ""
            lines.append(f"  [{prefix}] {issue.check}{key_str}: {issue.detail}")

    lines.append(f"\n{'=' * 60}")
    lines.append(
        f"TOTAL: {total_errors} errors, {total_warnings} warnings "
        f"across {len(reports)} datasets"
    )
    if total_errors > 0:
        lines.append("ACTION: Review errors; affected rows are dropped or left missing.")
    else:
        lines.append("STATUS: No blocking errors. Warnings should be reviewed.")
    lines.append("=" * 60)

    return "\n".join(lines)
