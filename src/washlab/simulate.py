"""Simulated raw data for the workshop.

Produces a household survey, a Quanti-Tray microbiology sheet and a TAC
export with built-in exposure effects (animals, sanitation, water source,
soap) so that the analysis stage has something to find.  All draws come
from a single ``numpy.random.default_rng(seed)``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from washlab.config import WorkshopConfig

logger = logging.getLogger(__name__)

WATER_SOURCES = ["piped", "borehole", "protected_well", "unprotected_well", "surface_water"]
SANITATION = ["flush_toilet", "vip_latrine", "pit_latrine_slab", "pit_latrine_open", "open_defecation"]

SAMPLE_CODES = {"drinking_water": "W", "hands": "H", "soil": "S", "food": "F"}

# Baseline log10 E. coli per reporting unit.
_BASE_LOG10 = {"water": 1.2, "hands": 2.5, "soil": 3.0, "food": 1.5}

# Processing parameters per matrix: (sample_volume_ml, sample_mass_g, eluent_volume_ml, dilution).
_PROCESSING = {
    "water": (100.0, np.nan, np.nan, 1.0),
    "hands": (np.nan, np.nan, 350.0, 1.0),
    "soil": (np.nan, 5.0, 50.0, 100.0),
    "food": (np.nan, 10.0, 100.0, 10.0),
}

# Per-pathogen sample prevalence before exposure effects.
DEFAULT_PATHOGEN_PREVALENCE = {
    "EAEC": 0.30,
    "ETEC": 0.20,
    "tEPEC": 0.10,
    "STEC": 0.08,
    "Shigella_EIEC": 0.05,
    "Campylobacter": 0.15,
    "Salmonella": 0.04,
    "Giardia": 0.12,
    "Cryptosporidium": 0.06,
    "Norovirus_GII": 0.05,
    "Rotavirus": 0.03,
    "Adenovirus_40_41": 0.07,
}

# Zoonotic pathogens, more common where animals are kept.
ZOONOTIC = ("STEC", "Campylobacter", "Cryptosporidium", "Salmonella")


def _yes_no(flags: np.ndarray) -> np.ndarray:
    return np.where(flags, "yes", "no")


def simulate_households(n: int = 120, seed: int = 42) -> pd.DataFrame:
    """Household survey with one row per household."""
    rng = np.random.default_rng(seed)
    members = rng.integers(2, 11, size=n)
    rooms = rng.integers(1, 5, size=n)
    wealth = rng.normal(0, 1, size=n).round(3)

    # Wealthier households lean toward improved water and sanitation.
    p_improved = 1 / (1 + np.exp(-(0.3 + 0.9 * wealth)))
    water_improved = rng.random(n) < p_improved
    sanitation_improved = rng.random(n) < p_improved
    water = np.where(
        water_improved,
        rng.choice(WATER_SOURCES[:3], size=n),
        rng.choice(WATER_SOURCES[3:], size=n),
    )
    sanitation = np.where(
        sanitation_improved,
        rng.choice(SANITATION[:3], size=n),
        rng.choice(SANITATION[3:], size=n),
    )

    return pd.DataFrame({
        "household_id": [f"HH{i + 1:03d}" for i in range(n)],
        "members": members,
        "rooms": rooms,
        "water_source": water,
        "sanitation": sanitation,
        "handwashing_station": _yes_no(rng.random(n) < 0.5),
        "soap_present": _yes_no(rng.random(n) < 0.4),
        "owns_cattle": _yes_no(rng.random(n) < 0.35),
        "owns_poultry": _yes_no(rng.random(n) < 0.55),
        "owns_goats": _yes_no(rng.random(n) < 0.30),
        "wealth_index": wealth,
    })


def _household_effects(households: pd.DataFrame) -> pd.DataFrame:
    h = households.set_index("household_id")
    animals = (h[["owns_cattle", "owns_goats"]] == "yes").any(axis=1)
    improved_san = h["sanitation"].isin(SANITATION[:3])
    improved_water = h["water_source"].isin(WATER_SOURCES[:3])
    soap = h["soap_present"] == "yes"
    return pd.DataFrame({
        "animals": animals,
        "improved_san": improved_san,
        "improved_water": improved_water,
        "soap": soap,
    })


def _true_log10(matrix: str, eff: pd.Series, rng: np.random.Generator) -> float:
    mu = _BASE_LOG10[matrix]
    mu += 0.6 * eff["animals"] - 0.4 * eff["improved_san"]
    if matrix == "water":
        mu -= 0.7 * eff["improved_water"]
    if matrix == "hands":
        mu -= 0.5 * eff["soap"]
    return mu + rng.normal(0, 0.7)


def _read_tray(mpn_100ml: float, cfg: WorkshopConfig, rng: np.random.Generator):
    lam = max(mpn_100ml, 0.0) / 100.0
    p_large = 1 - np.exp(-lam * cfg.tray.large_well_volume_ml)
    p_small = 1 - np.exp(-lam * cfg.tray.small_well_volume_ml)
    return (
        int(rng.binomial(cfg.tray.large_wells, p_large)),
        int(rng.binomial(cfg.tray.small_wells, p_small)),
    )


def simulate_micro(
    households: pd.DataFrame,
    cfg: WorkshopConfig,
    seed: int = 43,
) -> pd.DataFrame:
    """Quanti-Tray sheet: every household x sample type x culture target."""
    rng = np.random.default_rng(seed)
    effects = _household_effects(households)
    records = []

    for hh in households["household_id"]:
        eff = effects.loc[hh]
        for sample_type, st in cfg.sample_types.items():
            vol, mass, eluent, dilution = _PROCESSING[st.matrix]
            moisture = rng.uniform(0.05, 0.30) if st.matrix == "soil" else np.nan
            wet = 10.0 if st.matrix == "soil" else np.nan
            dry = round(wet * (1 - moisture), 3) if st.matrix == "soil" else np.nan

            # Unit conversion inverted to find the tray concentration.
            if st.matrix == "water":
                factor = dilution * 100.0 / vol
            elif st.matrix == "hands":
                factor = eluent / 100.0 * dilution
            elif st.matrix == "soil":
                factor = eluent / 100.0 * dilution / (mass * (1 - moisture))
            else:
                factor = eluent / 100.0 * dilution / mass

            log_ecoli = _true_log10(st.matrix, eff, rng)
            log_esbl = log_ecoli - rng.uniform(0.5, 2.0)
            code = SAMPLE_CODES.get(sample_type, sample_type[:1].upper())
            for target, log_conc in (("ecoli", log_ecoli), ("esbl_ecoli", log_esbl)):
                large, small = _read_tray(10 ** log_conc / factor, cfg, rng)
                records.append({
                    "sample_id": f"{hh}-{code}",
                    "household_id": hh,
                    "sample_type": sample_type,
                    "target": target,
                    "large_wells": large,
                    "small_wells": small,
                    "dilution": dilution,
                    "sample_volume_ml": vol,
                    "sample_mass_g": mass,
                    "eluent_volume_ml": eluent,
                    "wet_mass_g": wet,
                    "dry_mass_g": dry,
                })
    return pd.DataFrame(records)


def simulate_tac(
    households: pd.DataFrame,
    cfg: WorkshopConfig,
    sample_types: Sequence[str] = ("drinking_water", "soil"),
    prevalence: Optional[Dict[str, float]] = None,
    contamination_rate: float = 0.05,
    control_failure_rate: float = 0.03,
    samples_per_card: int = 7,
    seed: int = 44,
) -> pd.DataFrame:
    """Long TAC export: one row per sample x gene, one NTC per card."""
    rng = np.random.default_rng(seed)
    prevalence = {**DEFAULT_PATHOGEN_PREVALENCE, **(prevalence or {})}
    effects = _household_effects(households)
    genes = cfg.tac.pathogen_genes
    controls = cfg.tac.internal_controls

    samples = [
        (f"{hh}-{SAMPLE_CODES.get(st, st[:1].upper())}", hh)
        for hh in households["household_id"]
        for st in sample_types
    ]

    def _ct_detect() -> str:
        return f"{min(rng.normal(28.0, 3.0), cfg.tac.ct_cutoff - 0.5):.2f}"

    records = []
    n_cards = int(np.ceil(len(samples) / samples_per_card))
    for c in range(n_cards):
        card_id = f"C{c + 1:03d}"
        batch = samples[c * samples_per_card:(c + 1) * samples_per_card]
        for sample_id, hh in batch:
            animals = bool(effects.loc[hh, "animals"])
            positive_genes = set()
            for pathogen, rule in cfg.tac.pathogens.items():
                p = prevalence.get(pathogen, 0.1)
                if animals and pathogen in ZOONOTIC:
                    p = min(1.0, 2.0 * p)
                if rng.random() < p:
                    positive_genes.update(rule[0])
            for gene in genes:
                if gene in positive_genes:
                    ct = _ct_detect()
                elif rng.random() < 0.02:
                    ct = f"{rng.uniform(cfg.tac.ct_cutoff, 40.0):.2f}"
                else:
                    ct = "Undetermined"
                records.append({"sample_id": sample_id, "card_id": card_id, "target": gene, "ct": ct})
            failed = rng.random() < control_failure_rate
            for i, ctrl in enumerate(controls):
                ct = "Undetermined" if failed and i == len(controls) - 1 else f"{rng.normal(30.0, 1.0):.2f}"
                records.append({"sample_id": sample_id, "card_id": card_id, "target": ctrl, "ct": ct})

        # Blanks carry the spiked controls; pathogen genes stay negative
        # unless the card is contaminated.
        blank_id = f"{cfg.tac.blank_prefix}-{card_id}"
        contaminated_gene = rng.choice(genes) if rng.random() < contamination_rate else None
        for gene in genes:
            ct = _ct_detect() if gene == contaminated_gene else "Undetermined"
            records.append({"sample_id": blank_id, "card_id": card_id, "target": gene, "ct": ct})
        for ctrl in controls:
            ct = f"{rng.normal(30.0, 1.0):.2f}"
            records.append({"sample_id": blank_id, "card_id": card_id, "target": ctrl, "ct": ct})

    return pd.DataFrame(records)


def write_simulated_data(
    out_dir: Path,
    cfg: WorkshopConfig,
    n_households: int = 120,
    seed: int = 42,
    inject_errors: bool = False,
) -> Dict[str, Path]:
    """Write survey.csv, micro.csv and tac.csv under out_dir.

    With ``inject_errors`` a few realistic data-entry problems are added
    (a duplicated survey household, an impossible well count, a lab
    household missing from the survey) for the validation exercise.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    households = simulate_households(n_households, seed)
    micro = simulate_micro(households, cfg, seed + 1)
    tac = simulate_tac(households, cfg, seed=seed + 2)
    survey = households

    if inject_errors:
        survey = pd.concat([survey, survey.iloc[[0]]], ignore_index=True)
        micro.loc[0, "small_wells"] = cfg.tray.small_wells + 12
        survey = survey[survey["household_id"] != households["household_id"].iloc[-1]]

    paths = {
        "survey": out_dir / "survey.csv",
        "micro": out_dir / "micro.csv",
        "tac": out_dir / "tac.csv",
    }
    survey.to_csv(paths["survey"], index=False)
    micro.to_csv(paths["micro"], index=False)
    tac.to_csv(paths["tac"], index=False)
    logger.info(
        "Simulated %d households: %d micro rows, %d TAC rows -> %s",
        n_households, len(micro), len(tac), out_dir,
    )
    return paths
