"""Stage runners for the three workshop steps.

Each stage reads its inputs from disk and writes its outputs to disk; the
stages share nothing in memory.  Scripts in ``scripts/`` are thin argparse
wrappers around these functions.

Usage
-----
>>> from washlab.config import load_config
>>> cfg = load_config()
>>> run_clean_stage(cfg)
>>> run_describe_stage(cfg)
>>> run_analysis_stage(cfg)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from washlab.analysis import (
    describe_groups,
    fit_linear_model,
    household_exposure_table,
    merge_lab_survey,
    regression_table,
    run_ttests,
)
from washlab.config import WorkshopConfig
from washlab.descriptive import (
    burden_summary,
    check_prevalence_bounds,
    codetection_matrix,
    pathogen_count_distribution,
    pathogen_prevalence,
    prevalence,
)
from washlab.lab_loader import (
    load_micro_csv,
    load_survey_csv,
    load_table,
    load_tac_csv,
    save_table,
)
from washlab.micro import clean_micro, esbl_proportion
from washlab.mpn import build_mpn_table, load_mpn_table
from washlab.plots import generate_all_plots
from washlab.sanitizer import (
    ValidationReport,
    format_report,
    validate_micro,
    validate_survey,
    validate_tac,
)
from washlab.survey import clean_survey
from washlab.tac import attach_sample_info, clean_tac

logger = logging.getLogger(__name__)

MICRO_FILE = "micro.csv"
TAC_FILE = "tac.csv"
SURVEY_FILE = "survey.csv"


@dataclass
class StageSummary:
    """What a stage read, wrote and found."""

    stage: str
    outputs: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    errors: int = 0
    warnings: int = 0
    notes: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "outputs": list(self.outputs),
            "counts": dict(self.counts),
            "errors": self.errors,
            "warnings": self.warnings,
            "notes": dict(self.notes),
        }


def _write_report(reports: Dict[str, ValidationReport], out_dir: Path, name: str) -> Path:
    text = format_report(reports)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{name}.txt"
    path.write_text(text + "\n")
    logger.info("Validation report written to %s", path)
    return path


# ---------------------------------------------------------------------------
# Stage 1: clean
# ---------------------------------------------------------------------------


def run_clean_stage(
    cfg: WorkshopConfig,
    raw_dir: Optional[Path] = None,
    out_dir: Optional[Path] = None,
    strict: bool = False,
) -> StageSummary:
    """Validate and clean the microbiology sheet and (if present) the TAC export.

    Writes micro_clean, esbl_fraction, tac_genes_clean, tac_pathogens and
    validation_lab.txt under ``out_dir``.

    Raises
    ------
    FileNotFoundError
        If the microbiology sheet is missing.
    ValueError
        In strict mode, if validation finds errors.
    """
    raw_dir = Path(raw_dir or cfg.raw_dir)
    out_dir = Path(out_dir or cfg.processed_dir)
    summary = StageSummary(stage="clean")

    micro_path = raw_dir / MICRO_FILE
    if not micro_path.exists():
        raise FileNotFoundError(f"Microbiology sheet not found: {micro_path}")
    micro_raw = load_micro_csv(micro_path)

    tac_path = raw_dir / TAC_FILE
    tac_raw = load_tac_csv(tac_path) if tac_path.exists() else None
    if tac_raw is None:
        logger.warning("No TAC export at %s; molecular cleaning skipped", tac_path)

    reports = {"microbiology": validate_micro(micro_raw, cfg)}
    if tac_raw is not None:
        reports["tac"] = validate_tac(tac_raw, cfg)
    report_path = _write_report(reports, out_dir, "validation_lab")
    summary.outputs.append(str(report_path))
    summary.errors = sum(r.error_count for r in reports.values())
    summary.warnings = sum(r.warning_count for r in reports.values())
    if strict and summary.errors:
        raise ValueError(
            f"Validation found {summary.errors} errors; see {report_path}"
        )

    table = load_mpn_table(cfg.mpn_table) if cfg.mpn_table else build_mpn_table(cfg.tray)
    micro = clean_micro(micro_raw, cfg, table)
    path, _ = save_table(micro, out_dir, "micro_clean")
    summary.outputs.append(str(path))
    summary.counts["micro_rows"] = len(micro)

    esbl = esbl_proportion(micro)
    path, _ = save_table(esbl, out_dir, "esbl_fraction")
    summary.outputs.append(str(path))

    if tac_raw is not None:
        genes, pathogens = clean_tac(tac_raw, cfg.tac)
        pathogens = attach_sample_info(pathogens, micro_raw)
        for df, name in ((genes, "tac_genes_clean"), (pathogens, "tac_pathogens")):
            path, _ = save_table(df, out_dir, name)
            summary.outputs.append(str(path))
        summary.counts["tac_samples"] = len(pathogens)

    logger.info("Clean stage done: %s", summary.counts)
    return summary


# ---------------------------------------------------------------------------
# Stage 2: describe
# ---------------------------------------------------------------------------


def describe_tables(
    micro: pd.DataFrame,
    esbl: Optional[pd.DataFrame] = None,
    pathogens: Optional[pd.DataFrame] = None,
) -> Dict[str, pd.DataFrame]:
    """All descriptive tables, keyed by output name."""
    tables: Dict[str, pd.DataFrame] = {
        "culture_prevalence": prevalence(micro, "detected", by=["sample_type", "target"]),
        "culture_burden": burden_summary(micro, "log10_conc", by=["sample_type", "target"]),
    }
    if esbl is not None and not esbl.empty:
        tables["esbl_fraction_summary"] = (
            esbl.groupby("sample_type")["esbl_fraction"]
            .agg(["count", "mean", "median", "min", "max"])
            .reset_index()
        )
    if pathogens is not None and not pathogens.empty:
        by = "sample_type" if pathogens["sample_type"].notna().any() else None
        tables["pathogen_prevalence"] = pathogen_prevalence(pathogens, by=by)
        tables["pathogen_counts"] = pathogen_count_distribution(pathogens, by=by)
        tables["pathogen_codetection"] = codetection_matrix(pathogens).reset_index()

    for name in ("culture_prevalence", "pathogen_prevalence"):
        if name in tables:
            check_prevalence_bounds(tables[name])
    return tables


def run_describe_stage(
    cfg: WorkshopConfig,
    proc_dir: Optional[Path] = None,
    tables_dir: Optional[Path] = None,
    figures_dir: Optional[Path] = None,
) -> StageSummary:
    """Prevalence/burden tables and figures from the cleaned lab tables."""
    proc_dir = Path(proc_dir or cfg.processed_dir)
    tables_dir = Path(tables_dir or cfg.tables_dir)
    figures_dir = Path(figures_dir or cfg.figures_dir)
    summary = StageSummary(stage="describe")

    micro = load_table("micro_clean", proc_dir)
    esbl = _load_optional("esbl_fraction", proc_dir)
    pathogens = _load_optional("tac_pathogens", proc_dir)

    tables = describe_tables(micro, esbl, pathogens)
    for name, df in tables.items():
        path, _ = save_table(df, tables_dir, name)
        summary.outputs.append(str(path))

    figures = generate_all_plots(tables, micro, pathogens, figures_dir)
    summary.outputs.extend(str(p) for p in figures)
    summary.counts = {"tables": len(tables), "figures": len(figures)}
    logger.info("Describe stage done: %d tables, %d figures", len(tables), len(figures))
    return summary


def _load_optional(name: str, proc_dir: Path) -> Optional[pd.DataFrame]:
    try:
        return load_table(name, proc_dir)
    except FileNotFoundError:
        logger.info("Optional table %s not found in %s", name, proc_dir)
        return None


# ---------------------------------------------------------------------------
# Stage 3: merge and analyse
# ---------------------------------------------------------------------------


def run_analysis_stage(
    cfg: WorkshopConfig,
    proc_dir: Optional[Path] = None,
    survey_path: Optional[Path] = None,
    tables_dir: Optional[Path] = None,
    strict: bool = False,
) -> StageSummary:
    """Clean the survey, merge with lab outcomes, run t-tests and OLS.

    The outcome is the household log10 concentration of
    ``cfg.analysis.outcome_target`` in ``cfg.analysis.outcome_sample_type``.
    When TAC results exist, pathogen counts per sample are also compared
    across exposures.
    """
    proc_dir = Path(proc_dir or cfg.processed_dir)
    survey_path = Path(survey_path or cfg.raw_dir / SURVEY_FILE)
    tables_dir = Path(tables_dir or cfg.tables_dir)
    summary = StageSummary(stage="analyse")
    settings = cfg.analysis

    if not survey_path.exists():
        raise FileNotFoundError(f"Survey not found: {survey_path}")
    survey_raw = load_survey_csv(survey_path)
    report = validate_survey(survey_raw)
    report_path = _write_report({"survey": report}, proc_dir, "validation_survey")
    summary.outputs.append(str(report_path))
    summary.errors, summary.warnings = report.error_count, report.warning_count
    if strict and report.error_count:
        raise ValueError(f"Survey validation found {report.error_count} errors; see {report_path}")

    survey = clean_survey(survey_raw, cfg.survey)
    path, _ = save_table(survey, proc_dir, "survey_clean")
    summary.outputs.append(str(path))

    micro = load_table("micro_clean", proc_dir)
    outcome = household_exposure_table(micro, settings.outcome_sample_type, settings.outcome_target)
    merged, merge_report = merge_lab_survey(outcome, survey)
    summary.notes["merge"] = merge_report.to_dict()
    path, _ = save_table(merged, tables_dir, "analysis_dataset")
    summary.outputs.append(str(path))

    ttests = run_ttests(merged, "log10_conc", settings.exposures)
    path, _ = save_table(ttests, tables_dir, "ttests")
    summary.outputs.append(str(path))

    groups = describe_groups(merged, "log10_conc", settings.exposures)
    if groups:
        group_table = pd.concat(
            [t.assign(exposure=name) for name, t in groups.items()], ignore_index=True,
        )[["exposure", "level", "count", "mean", "std"]]
        path, _ = save_table(group_table, tables_dir, "group_means")
        summary.outputs.append(str(path))

    result = fit_linear_model(merged, "log10_conc", settings.covariates)
    path, _ = save_table(regression_table(result), tables_dir, "regression")
    summary.outputs.append(str(path))
    logger.info("\n%s", result.summary())
    summary.notes["r_squared"] = result.r_squared

    pathogens = _load_optional("tac_pathogens", proc_dir)
    if pathogens is not None and not pathogens.empty:
        tac_merged, _ = merge_lab_survey(pathogens, survey)
        pathogen_tests = run_ttests(tac_merged, "n_pathogens", settings.exposures)
        path, _ = save_table(pathogen_tests, tables_dir, "pathogen_ttests")
        summary.outputs.append(str(path))

    summary.counts = {
        "households": len(survey),
        "analysed": merge_report.n_matched,
        "ttests": len(ttests),
        "regression_n": result.n,
    }
    logger.info("Analysis stage done: %s", summary.counts)
    return summary
