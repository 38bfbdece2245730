"""Workshop configuration.

Loads configs/workshop_v1.yaml and exposes typed settings used by the
cleaning, descriptive and analysis stages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = REPO_ROOT / "configs" / "workshop_v1.yaml"

# Sample matrices with a concentration adjustment rule in ``washlab.micro``.
MATRICES = ("water", "hands", "soil", "food")

LOG_CONVENTIONS = ("half_lod", "lod", "plus_one")


@dataclass(frozen=True)
class SampleType:
    """One collected sample type and its reporting matrix."""

    name: str
    matrix: str
    label: str = ""


@dataclass(frozen=True)
class TrayGeometry:
    """Quanti-Tray well layout and reporting limits (per 100 mL)."""

    large_wells: int = 49
    large_well_volume_ml: float = 1.86
    small_wells: int = 48
    small_well_volume_ml: float = 0.186
    lower_limit: float = 1.0
    upper_limit: float = 2419.6


@dataclass(frozen=True)
class StandardCurve:
    """qPCR standard curve: Ct = slope * log10(copies) + intercept."""

    slope: float = -3.32
    intercept: float = 38.0


@dataclass
class TacSettings:
    """TAC calling rules."""

    ct_cutoff: float = 35.0
    blank_prefix: str = "NTC"
    internal_controls: List[str] = field(default_factory=list)
    default_curve: StandardCurve = field(default_factory=StandardCurve)
    curves: Dict[str, StandardCurve] = field(default_factory=dict)
    pathogens: Dict[str, List[List[str]]] = field(default_factory=dict)

    def curve_for(self, gene: str) -> StandardCurve:
        return self.curves.get(gene, self.default_curve)

    @property
    def pathogen_genes(self) -> List[str]:
        genes = {g for rule in self.pathogens.values() for group in rule for g in group}
        return sorted(genes)


@dataclass
class SurveySettings:
    yes_values: List[str] = field(default_factory=lambda: ["yes", "y", "1", "true"])
    no_values: List[str] = field(default_factory=lambda: ["no", "n", "0", "false"])
    boolean_columns: List[str] = field(default_factory=list)
    animal_columns: List[str] = field(default_factory=list)
    improved_water: List[str] = field(default_factory=list)
    improved_sanitation: List[str] = field(default_factory=list)


@dataclass
class AnalysisSettings:
    outcome_sample_type: str = "drinking_water"
    outcome_target: str = "ecoli"
    exposures: List[str] = field(default_factory=list)
    covariates: List[str] = field(default_factory=list)


@dataclass
class WorkshopConfig:
    """Parsed workshop configuration."""

    sample_types: Dict[str, SampleType]
    tray: TrayGeometry
    log_convention: str
    culture_targets: List[str]
    tac: TacSettings
    survey: SurveySettings
    analysis: AnalysisSettings
    raw_dir: Path = REPO_ROOT / "data" / "raw"
    processed_dir: Path = REPO_ROOT / "data" / "processed"
    tables_dir: Path = REPO_ROOT / "outputs" / "tables"
    figures_dir: Path = REPO_ROOT / "outputs" / "figures"
    mpn_table: Optional[Path] = None

    def matrix_of(self, sample_type: str) -> Optional[str]:
        info = self.sample_types.get(sample_type)
        return info.matrix if info is not None else None


def _resolve(path_value: Optional[str], base: Path) -> Optional[Path]:
    if path_value is None:
        return None
    p = Path(path_value)
    return p if p.is_absolute() else base / p


def _section(cls, values: Optional[dict], section: str):
    """Build a settings dataclass from a YAML mapping, rejecting unknown keys."""
    values = values or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown keys in {section}: {unknown}. Expected some of {sorted(known)}")
    return cls(**values)


def load_config(path: Path = DEFAULT_CONFIG) -> WorkshopConfig:
    """Load and validate the workshop YAML.

    Relative paths in the ``paths`` section resolve against the repo root.

    Raises ValueError if required sections are missing or values are invalid.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    required = ("sample_types", "mpn", "tac")
    missing = [k for k in required if k not in raw]
    if missing:
        raise ValueError(f"Config {path} missing required sections: {missing}")

    sample_types: Dict[str, SampleType] = {}
    for name, info in raw["sample_types"].items():
        matrix = info.get("matrix")
        if matrix not in MATRICES:
            raise ValueError(
                f"Sample type '{name}' has unknown matrix '{matrix}'. "
                f"Expected one of {MATRICES}"
            )
        sample_types[name] = SampleType(name=name, matrix=matrix, label=info.get("label", name))

    mpn = raw["mpn"]
    tray = TrayGeometry(
        large_wells=int(mpn.get("large_wells", 49)),
        large_well_volume_ml=float(mpn.get("large_well_volume_ml", 1.86)),
        small_wells=int(mpn.get("small_wells", 48)),
        small_well_volume_ml=float(mpn.get("small_well_volume_ml", 0.186)),
        lower_limit=float(mpn.get("lower_limit", 1.0)),
        upper_limit=float(mpn.get("upper_limit", 2419.6)),
    )

    log_convention = raw.get("log_convention", "half_lod")
    if log_convention not in LOG_CONVENTIONS:
        raise ValueError(
            f"Unknown log_convention '{log_convention}'. Expected one of {LOG_CONVENTIONS}"
        )

    tac_raw = raw["tac"]
    cutoff = float(tac_raw.get("ct_cutoff", 35.0))
    if cutoff <= 0:
        raise ValueError(f"tac.ct_cutoff must be positive, got {cutoff}")
    default_curve = _section(StandardCurve, tac_raw.get("default_curve"), "tac.default_curve")
    curves = {
        gene: _section(StandardCurve, c, f"tac.curves.{gene}")
        for gene, c in (tac_raw.get("curves") or {}).items()
    }
    pathogens = {
        name: [list(group) for group in rule]
        for name, rule in (tac_raw.get("pathogens") or {}).items()
    }
    tac = TacSettings(
        ct_cutoff=cutoff,
        blank_prefix=str(tac_raw.get("blank_prefix", "NTC")),
        internal_controls=list(tac_raw.get("internal_controls", [])),
        default_curve=default_curve,
        curves=curves,
        pathogens=pathogens,
    )
    for gene in curves:
        if gene not in tac.pathogen_genes:
            logger.warning("Standard curve for gene %s not used by any pathogen rule", gene)

    survey = _section(SurveySettings, raw.get("survey"), "survey")
    analysis = _section(AnalysisSettings, raw.get("analysis"), "analysis")
    if analysis.outcome_sample_type not in sample_types:
        raise ValueError(
            f"analysis.outcome_sample_type '{analysis.outcome_sample_type}' "
            f"is not a configured sample type"
        )

    paths = raw.get("paths") or {}
    cfg = WorkshopConfig(
        sample_types=sample_types,
        tray=tray,
        log_convention=log_convention,
        culture_targets=list(raw.get("culture_targets", ["ecoli", "esbl_ecoli"])),
        tac=tac,
        survey=survey,
        analysis=analysis,
        mpn_table=_resolve(mpn.get("table"), REPO_ROOT),
    )
    for key in ("raw_dir", "processed_dir", "tables_dir", "figures_dir"):
        if key in paths:
            setattr(cfg, key, _resolve(paths[key], REPO_ROOT))
    return cfg
