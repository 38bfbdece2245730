"""End-to-end tests for the three workshop stages on simulated data."""

import dataclasses
import json
import sys
import tempfile
from pathlib import Path

import pandas as pd
import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.config import DEFAULT_CONFIG, load_config
from washlab.simulate import write_simulated_data
from washlab.stages import (
    describe_tables,
    run_analysis_stage,
    run_clean_stage,
    run_describe_stage,
)

SCRIPTS_DIR = Path(__file__).resolve().parents[2] / "scripts"
sys.path.insert(0, str(SCRIPTS_DIR))

from run_workshop import main as run_workshop_main, run_workshop  # noqa: E402


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _tmp_config(tmpdir: str):
    root = Path(tmpdir)
    return dataclasses.replace(
        load_config(),
        raw_dir=root / "raw",
        processed_dir=root / "processed",
        tables_dir=root / "tables",
        figures_dir=root / "figures",
    )


def _run_all(cfg, n_households: int = 40, inject_errors: bool = False):
    write_simulated_data(cfg.raw_dir, cfg, n_households=n_households, seed=11, inject_errors=inject_errors)
    clean = run_clean_stage(cfg)
    describe = run_describe_stage(cfg)
    analyse = run_analysis_stage(cfg)
    return clean, describe, analyse


# ---------------------------------------------------------------------------
# Stage 1
# ---------------------------------------------------------------------------

class TestCleanStage:
    def test_writes_processed_tables(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            write_simulated_data(cfg.raw_dir, cfg, n_households=20, seed=5)
            summary = run_clean_stage(cfg)
            for name in ("micro_clean", "esbl_fraction", "tac_genes_clean", "tac_pathogens"):
                assert (cfg.processed_dir / f"{name}.csv").exists()
                assert (cfg.processed_dir / f"{name}_manifest.json").exists()
            assert (cfg.processed_dir / "validation_lab.txt").exists()
            assert summary.counts["micro_rows"] == 20 * 4 * 2
            assert summary.errors == 0

    def test_missing_micro_sheet_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            with pytest.raises(FileNotFoundError):
                run_clean_stage(cfg)

    def test_tac_optional(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            paths = write_simulated_data(cfg.raw_dir, cfg, n_households=10, seed=5)
            paths["tac"].unlink()
            summary = run_clean_stage(cfg)
            assert "tac_samples" not in summary.counts
            assert not (cfg.processed_dir / "tac_pathogens.csv").exists()

    def test_strict_mode_fails_on_errors(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            write_simulated_data(cfg.raw_dir, cfg, n_households=10, seed=5, inject_errors=True)
            with pytest.raises(ValueError, match="Validation found"):
                run_clean_stage(cfg, strict=True)
            summary = run_clean_stage(cfg)
            assert summary.errors >= 1


# ---------------------------------------------------------------------------
# Stages 2 and 3
# ---------------------------------------------------------------------------

class TestFullRun:
    def test_all_outputs_written(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            _, describe, analyse = _run_all(cfg)

            for name in ("culture_prevalence", "culture_burden", "pathogen_prevalence",
                         "pathogen_counts", "pathogen_codetection", "analysis_dataset",
                         "ttests", "regression", "pathogen_ttests"):
                assert (cfg.tables_dir / f"{name}.csv").exists(), name
            assert (cfg.figures_dir / "culture_prevalence.png").exists()
            assert describe.counts["figures"] >= 3
            assert analyse.counts["households"] == 40
            assert analyse.counts["analysed"] == 40

    def test_prevalence_tables_bounded(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            _run_all(cfg)
            for name in ("culture_prevalence", "pathogen_prevalence"):
                table = pd.read_csv(cfg.tables_dir / f"{name}.csv")
                assert table["prevalence"].between(0, 1).all()
                assert (table["ci_low"] <= table["prevalence"] + 1e-12).all()
                assert (table["prevalence"] <= table["ci_high"] + 1e-12).all()

    def test_merge_keeps_one_row_per_household(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            _, _, analyse = _run_all(cfg, inject_errors=True)
            dataset = pd.read_csv(cfg.tables_dir / "analysis_dataset.csv", dtype={"household_id": str})
            assert dataset["household_id"].is_unique
            assert len(dataset) == 40
            merge = analyse.notes["merge"]
            assert merge["unmatched_lab_ids"] == ["HH040"]
            assert analyse.errors >= 1

    def test_regression_terms(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            _run_all(cfg)
            table = pd.read_csv(cfg.tables_dir / "regression.csv")
            terms = set(table["term"])
            assert {"intercept", "owns_animals", "improved_sanitation", "crowding", "wealth_index"} <= terms
            assert any(t.startswith("water_source_") for t in terms)

    def test_analysis_strict_mode(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            write_simulated_data(cfg.raw_dir, cfg, n_households=30, seed=11, inject_errors=True)
            run_clean_stage(cfg)
            with pytest.raises(ValueError, match="Survey validation"):
                run_analysis_stage(cfg, strict=True)

    def test_describe_requires_clean_stage(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            with pytest.raises(FileNotFoundError):
                run_describe_stage(cfg)


def test_describe_tables_without_tac():
    micro = pd.DataFrame({
        "sample_type": ["soil", "soil", "hands"],
        "target": ["ecoli"] * 3,
        "log10_conc": [1.0, 2.0, 0.5],
        "detected": [True, False, True],
    })
    tables = describe_tables(micro)
    assert set(tables) == {"culture_prevalence", "culture_burden"}


# ---------------------------------------------------------------------------
# Runner script
# ---------------------------------------------------------------------------

def _write_config(tmpdir: str) -> Path:
    with open(DEFAULT_CONFIG) as f:
        raw = yaml.safe_load(f)
    root = Path(tmpdir)
    raw["paths"] = {
        "raw_dir": str(root / "raw"),
        "processed_dir": str(root / "processed"),
        "tables_dir": str(root / "tables"),
        "figures_dir": str(root / "figures"),
    }
    path = root / "workshop.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(raw, f)
    return path


class TestRunWorkshop:
    def test_run_workshop_returns_summaries(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = _tmp_config(tmpdir)
            results = run_workshop(cfg, simulate=True, seed=3)
            assert list(results) == ["clean", "describe", "analyse"]
            json.dumps(results, default=str)

    def test_main_exit_codes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = _write_config(tmpdir)
            with pytest.raises(SystemExit) as exc:
                run_workshop_main(["--config", str(config_path)])
            assert exc.value.code == 1

            with pytest.raises(SystemExit) as exc:
                run_workshop_main(["--config", str(config_path), "--simulate", "--seed", "5"])
            assert exc.value.code == 0

    def test_bad_config_exits_with_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = _write_config(tmpdir)
            with open(config_path) as f:
                raw = yaml.safe_load(f)
            raw["log_convention"] = "zero"
            with open(config_path, "w") as f:
                yaml.safe_dump(raw, f)
            with pytest.raises(SystemExit) as exc:
                run_workshop_main(["--config", str(config_path)])
            assert exc.value.code == 1

            with pytest.raises(SystemExit) as exc:
                run_workshop_main(["--config", str(Path(tmpdir) / "missing.yaml")])
            assert exc.value.code == 1
