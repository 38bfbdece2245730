"""Tests for household survey cleaning."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.config import load_config
from washlab.survey import clean_survey, to_boolean


SETTINGS = load_config().survey


def _make_raw() -> pd.DataFrame:
    return pd.DataFrame({
        "household_id": ["HH003", "HH001", "HH002", "HH001", None],
        "members": ["6", "4", "x", "9", "3"],
        "rooms": ["2", "0", "1", "3", "1"],
        "water_source": ["Piped ", "surface_water", None, "borehole", "piped"],
        "sanitation": ["pit_latrine_open", "VIP_Latrine", "flush_toilet", "open_defecation", "flush_toilet"],
        "handwashing_station": ["Yes", "no", "", "yes", "yes"],
        "soap_present": ["1", "0", "maybe", "1", "1"],
        "owns_cattle": ["no", "yes", "no", "no", "no"],
        "owns_poultry": ["no", "no", None, "no", "no"],
        "owns_goats": ["no", "no", "no", "no", "no"],
        "wealth_index": ["0.5", "-1.2", "0.1", "2.0", "0.0"],
    })


def test_to_boolean():
    values = pd.Series(["Yes", " n ", "TRUE", "0", "maybe", None])
    out = to_boolean(values, SETTINGS)
    assert out.tolist()[:4] == [True, False, True, False]
    assert pd.isna(out.iloc[4])
    assert pd.isna(out.iloc[5])


class TestCleanSurvey:
    def _clean(self):
        return clean_survey(_make_raw(), SETTINGS).set_index("household_id")

    def test_duplicates_and_missing_ids_dropped(self):
        out = self._clean()
        assert list(out.index) == ["HH001", "HH002", "HH003"]
        # First HH001 record kept.
        assert out.loc["HH001", "members"] == 4

    def test_numeric_coercion(self):
        out = self._clean()
        assert np.isnan(out.loc["HH002", "members"])
        assert out.loc["HH001", "wealth_index"] == pytest.approx(-1.2)

    def test_crowding(self):
        out = self._clean()
        assert out.loc["HH003", "crowding"] == pytest.approx(3.0)
        # Zero rooms cannot give a ratio.
        assert np.isnan(out.loc["HH001", "crowding"])

    def test_owns_animals(self):
        out = self._clean()
        assert out.loc["HH001", "owns_animals"] == True  # noqa: E712
        assert out.loc["HH003", "owns_animals"] == False  # noqa: E712
        # No animal said yes but poultry is unknown.
        assert pd.isna(out.loc["HH002", "owns_animals"])

    def test_improved_water_and_sanitation(self):
        out = self._clean()
        assert out.loc["HH003", "water_source"] == "piped"
        assert out.loc["HH003", "improved_water"] == True  # noqa: E712
        assert out.loc["HH001", "improved_water"] == False  # noqa: E712
        assert pd.isna(out.loc["HH002", "improved_water"])
        assert out.loc["HH001", "improved_sanitation"] == True  # noqa: E712
        assert out.loc["HH003", "improved_sanitation"] == False  # noqa: E712

    def test_boolean_columns(self):
        out = self._clean()
        assert out.loc["HH003", "handwashing_station"] == True  # noqa: E712
        assert pd.isna(out.loc["HH002", "soap_present"])
