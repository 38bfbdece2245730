"""Tests for workshop configuration loading."""

import sys
import tempfile
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.config import DEFAULT_CONFIG, REPO_ROOT, StandardCurve, load_config


def _write_yaml(raw: dict) -> Path:
    f = tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False)
    yaml.safe_dump(raw, f)
    f.close()
    return Path(f.name)


def _minimal() -> dict:
    with open(DEFAULT_CONFIG) as f:
        return yaml.safe_load(f)


def test_default_config_loads():
    cfg = load_config()
    assert set(cfg.sample_types) == {"drinking_water", "hands", "soil", "food"}
    assert cfg.matrix_of("soil") == "soil"
    assert cfg.matrix_of("unknown") is None
    assert cfg.tray.large_wells == 49
    assert cfg.tray.small_wells == 48
    assert cfg.tray.upper_limit == 2419.6
    assert cfg.mpn_table is None
    assert cfg.log_convention == "half_lod"
    assert cfg.tac.ct_cutoff == 35.0
    assert cfg.tac.internal_controls == ["MS2", "PhHV"]
    assert cfg.tac.pathogens["tEPEC"] == [["eae", "bfpA"]]
    assert cfg.raw_dir == REPO_ROOT / "data" / "raw"


def test_pathogen_genes_and_curves():
    cfg = load_config()
    genes = cfg.tac.pathogen_genes
    assert "stx1" in genes and "stx2" in genes
    assert genes == sorted(genes)
    assert cfg.tac.curve_for("NoroGII") == StandardCurve(slope=-3.45, intercept=39.2)
    assert cfg.tac.curve_for("ipaH") == cfg.tac.default_curve


def test_yes_values_stay_text():
    cfg = load_config()
    assert "1" in cfg.survey.yes_values
    assert "owns_cattle" in cfg.survey.animal_columns


def test_unknown_matrix_raises():
    raw = _minimal()
    raw["sample_types"]["soil"]["matrix"] = "sediment"
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match="unknown matrix"):
        load_config(path)
    path.unlink()


def test_unknown_log_convention_raises():
    raw = _minimal()
    raw["log_convention"] = "zero"
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match="log_convention"):
        load_config(path)
    path.unlink()


def test_unknown_section_key_raises():
    raw = _minimal()
    raw["survey"]["colour"] = "blue"
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match=r"survey: \['colour'\]"):
        load_config(path)
    path.unlink()


def test_unknown_curve_key_raises():
    raw = _minimal()
    raw["tac"]["default_curve"]["efficiency"] = 0.95
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match="tac.default_curve"):
        load_config(path)
    path.unlink()


def test_missing_section_raises():
    raw = _minimal()
    del raw["tac"]
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match="missing required sections"):
        load_config(path)
    path.unlink()


def test_outcome_sample_type_must_exist():
    raw = _minimal()
    raw["analysis"]["outcome_sample_type"] = "stool"
    path = _write_yaml(raw)
    with pytest.raises(ValueError, match="outcome_sample_type"):
        load_config(path)
    path.unlink()


def test_relative_paths_resolve_against_repo_root():
    raw = _minimal()
    raw["paths"]["raw_dir"] = "elsewhere/raw"
    path = _write_yaml(raw)
    cfg = load_config(path)
    assert cfg.raw_dir == REPO_ROOT / "elsewhere" / "raw"
    path.unlink()
