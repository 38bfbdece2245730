"""Tests for the simulated workshop data."""

import sys
import tempfile
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.config import load_config
from washlab.lab_loader import load_micro_csv, load_survey_csv, load_tac_csv
from washlab.simulate import (
    simulate_households,
    simulate_micro,
    simulate_tac,
    write_simulated_data,
)
from washlab.tac import clean_tac

CFG = load_config()


def test_households_shape_and_ids():
    hh = simulate_households(25, seed=1)
    assert len(hh) == 25
    assert hh["household_id"].iloc[0] == "HH001"
    assert hh["household_id"].is_unique
    assert set(hh["owns_cattle"]) <= {"yes", "no"}
    assert (hh["rooms"] >= 1).all()


def test_households_reproducible():
    pd.testing.assert_frame_equal(simulate_households(10, seed=3), simulate_households(10, seed=3))


def test_micro_covers_every_sample_and_target():
    hh = simulate_households(10, seed=1)
    micro = simulate_micro(hh, CFG, seed=2)
    assert len(micro) == 10 * len(CFG.sample_types) * len(CFG.culture_targets)
    assert micro["large_wells"].between(0, CFG.tray.large_wells).all()
    assert micro["small_wells"].between(0, CFG.tray.small_wells).all()
    soil = micro[micro["sample_type"] == "soil"]
    assert (soil["dry_mass_g"] < soil["wet_mass_g"]).all()


def test_tac_has_blank_per_card_and_controls():
    hh = simulate_households(10, seed=1)
    tac = simulate_tac(hh, CFG, samples_per_card=7, seed=5)
    cards = tac["card_id"].unique()
    assert len(cards) == 3  # 20 samples, 7 per card
    blanks = tac[tac["sample_id"].str.startswith("NTC")]
    assert set(blanks["card_id"]) == set(cards)
    per_sample = tac.groupby("sample_id")["target"].nunique()
    assert (per_sample == len(CFG.tac.pathogen_genes) + len(CFG.tac.internal_controls)).all()


def test_write_simulated_data_round_trips_through_loaders():
    with tempfile.TemporaryDirectory() as tmpdir:
        paths = write_simulated_data(Path(tmpdir), CFG, n_households=12, seed=9)
        survey = load_survey_csv(paths["survey"])
        micro = load_micro_csv(paths["micro"])
        tac = load_tac_csv(paths["tac"])
    assert len(survey) == 12
    assert set(micro["household_id"]) == set(survey["household_id"])
    assert "Undetermined" in set(tac["ct"])


def test_injected_errors():
    with tempfile.TemporaryDirectory() as tmpdir:
        paths = write_simulated_data(Path(tmpdir), CFG, n_households=12, seed=9, inject_errors=True)
        survey = load_survey_csv(paths["survey"])
        micro = load_micro_csv(paths["micro"])
    assert survey["household_id"].duplicated().any()
    assert "HH012" not in set(survey["household_id"])
    assert (micro["small_wells"] > CFG.tray.small_wells).any()


def test_blank_controls_amplify_without_losing_cards():
    hh = simulate_households(10, seed=1)
    tac = simulate_tac(hh, CFG, samples_per_card=7, seed=5)
    controls = CFG.tac.internal_controls
    blank_ctrl = tac[tac["sample_id"].str.startswith("NTC") & tac["target"].isin(controls)]
    assert pd.to_numeric(blank_ctrl["ct"], errors="coerce").lt(CFG.tac.ct_cutoff).all()

    genes, pathogens = clean_tac(tac, CFG.tac)
    assert not genes.loc[genes["target"].isin(controls), "contaminated"].any()
    # 20 samples; only the rare simulated control failures drop out.
    assert len(pathogens) >= 15
