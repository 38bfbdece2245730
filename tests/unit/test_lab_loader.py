"""Tests for raw CSV loaders and processed-table helpers."""

import json
import sys
import tempfile
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.lab_loader import (
    MICRO_COLS,
    TAC_COLS,
    compute_manifest,
    load_micro_csv,
    load_survey_csv,
    load_table,
    load_tac_csv,
    normalise_columns,
    save_table,
)


def _write(tmpdir: str, name: str, text: str) -> Path:
    path = Path(tmpdir) / name
    path.write_text(text)
    return path


# ---------------------------------------------------------------------------
# Column handling
# ---------------------------------------------------------------------------

def test_normalise_columns_applies_aliases():
    df = pd.DataFrame(columns=["Sample ID", "HHID", "Type", "Organism", "Large", "small-wells"])
    out = normalise_columns(df)
    assert list(out.columns) == [
        "sample_id", "household_id", "sample_type", "target", "large_wells", "small_wells",
    ]


# ---------------------------------------------------------------------------
# Microbiology sheet
# ---------------------------------------------------------------------------

class TestLoadMicroCSV:
    def test_loads_and_types(self):
        text = (
            "Sample ID,HHID,Type,Organism,Large,Small,Dilution,sample_volume_ml\n"
            " HH001-W ,HH001,Drinking_Water,EColi,12,3,,100\n"
            "HH001-H,HH001,hands,ecoli,n/a,0,10,\n"
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            df = load_micro_csv(_write(tmpdir, "micro.csv", text))
        assert list(df.columns) == MICRO_COLS
        assert df["sample_id"].tolist() == ["HH001-W", "HH001-H"]
        assert df["sample_type"].tolist() == ["drinking_water", "hands"]
        assert df["target"].tolist() == ["ecoli", "ecoli"]
        assert df["large_wells"].iloc[0] == 12.0
        assert pd.isna(df["large_wells"].iloc[1])
        # Blank dilution means undiluted.
        assert df["dilution"].tolist() == [1.0, 10.0]
        assert df["eluent_volume_ml"].isna().all()

    def test_missing_required_column_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "micro.csv", "sample_id,household_id,sample_type,target\nA,B,hands,ecoli\n")
            with pytest.raises(ValueError, match="large_wells"):
                load_micro_csv(path)


# ---------------------------------------------------------------------------
# TAC export
# ---------------------------------------------------------------------------

class TestLoadTacCSV:
    def test_ct_kept_as_text(self):
        text = "Sample_ID,Card,Gene,Cq\nS1,C1,eae,25.1\nS1,C1,stx1,NA\nS1,C1,bfpA,\n"
        with tempfile.TemporaryDirectory() as tmpdir:
            df = load_tac_csv(_write(tmpdir, "tac.csv", text))
        assert list(df.columns) == TAC_COLS
        assert df["ct"].tolist() == ["25.1", "NA", ""]

    def test_default_card(self):
        text = "sample_id,target,ct\nS1,eae,25.1\n"
        with tempfile.TemporaryDirectory() as tmpdir:
            df = load_tac_csv(_write(tmpdir, "tac.csv", text))
        assert df["card_id"].tolist() == ["card1"]


def test_load_survey_requires_household_id():
    with tempfile.TemporaryDirectory() as tmpdir:
        ok = load_survey_csv(_write(tmpdir, "s.csv", "HH_ID,members\n HH001 ,4\n"))
        assert ok["household_id"].tolist() == ["HH001"]
        assert ok["members"].tolist() == ["4"]
        with pytest.raises(ValueError, match="household_id"):
            load_survey_csv(_write(tmpdir, "bad.csv", "id,members\n1,4\n"))


# ---------------------------------------------------------------------------
# Processed tables
# ---------------------------------------------------------------------------

class TestProcessedTables:
    def test_save_writes_manifest(self):
        df = pd.DataFrame({"household_id": ["001", "002"], "value": [1.5, 2.5]})
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path, manifest = save_table(df, Path(tmpdir) / "proc", "demo")
            assert csv_path.exists()
            saved = json.loads((Path(tmpdir) / "proc" / "demo_manifest.json").read_text())
            assert saved == manifest
            assert manifest["n_rows"] == 2
            assert manifest["columns"] == ["household_id", "value"]
            assert len(manifest["sha256"]) == 64

    def test_load_keeps_ids_as_text(self):
        df = pd.DataFrame({"household_id": ["001", "002"], "value": [1.5, 2.5]})
        with tempfile.TemporaryDirectory() as tmpdir:
            save_table(df, Path(tmpdir), "demo")
            back = load_table("demo", Path(tmpdir))
        assert back["household_id"].tolist() == ["001", "002"]

    def test_manifest_changes_with_content(self):
        a = pd.DataFrame({"x": [1, 2]})
        b = pd.DataFrame({"x": [1, 3]})
        assert compute_manifest(a)["sha256"] != compute_manifest(b)["sha256"]

    def test_missing_table_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(FileNotFoundError):
                load_table("nope", Path(tmpdir))
