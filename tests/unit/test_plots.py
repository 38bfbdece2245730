"""Smoke tests for the descriptive figures."""

import sys
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from washlab.descriptive import pathogen_prevalence, prevalence
from washlab.plots import (
    generate_all_plots,
    plot_concentration_boxplot,
    plot_pathogen_count_histogram,
    plot_pathogen_heatmap,
    plot_prevalence_bars,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_micro(n: int = 40, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    sample_types = rng.choice(["drinking_water", "soil"], size=n)
    units = np.where(sample_types == "soil", "MPN/dry_g", "MPN/100mL")
    return pd.DataFrame({
        "sample_type": sample_types,
        "target": rng.choice(["ecoli", "esbl_ecoli"], size=n),
        "log10_conc": rng.normal(1.5, 1.0, size=n),
        "detected": rng.random(n) < 0.6,
        "unit": units,
    })


def _make_pathogens(n: int = 30, seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    df = pd.DataFrame({
        "sample_id": [f"S{i}" for i in range(n)],
        "household_id": [f"HH{i // 2}" for i in range(n)],
        "sample_type": rng.choice(["drinking_water", "soil"], size=n),
        "EAEC": (rng.random(n) < 0.3).astype(int),
        "Giardia": (rng.random(n) < 0.2).astype(int),
    })
    df["n_pathogens"] = df["EAEC"] + df["Giardia"]
    return df


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestFigures:
    def test_prevalence_bars_save(self):
        prev = prevalence(_make_micro(), "detected", by=["sample_type", "target"])
        with tempfile.TemporaryDirectory() as tmp:
            path = plot_prevalence_bars(prev, "sample_type", hue="target", output_dir=Path(tmp))
            assert path is not None
            assert path.exists()
            assert path.suffix == ".png"

    def test_boxplot_named_by_target(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = plot_concentration_boxplot(_make_micro(), "ecoli", output_dir=Path(tmp))
            assert path.name == "box_ecoli.png"
            assert path.exists()

    def test_heatmap_and_histogram(self):
        pathogens = _make_pathogens()
        prev = pathogen_prevalence(pathogens, by="sample_type")
        with tempfile.TemporaryDirectory() as tmp:
            heat = plot_pathogen_heatmap(prev, Path(tmp))
            hist = plot_pathogen_count_histogram(pathogens, Path(tmp))
            assert heat.exists()
            assert hist.exists()

    def test_no_output_dir_returns_none(self):
        prev = prevalence(_make_micro(), "detected", by="sample_type")
        assert plot_prevalence_bars(prev, "sample_type") is None


def test_generate_all_plots():
    micro = _make_micro()
    pathogens = _make_pathogens()
    tables = {
        "culture_prevalence": prevalence(micro, "detected", by=["sample_type", "target"]),
        "pathogen_prevalence": pathogen_prevalence(pathogens, by="sample_type"),
    }
    with tempfile.TemporaryDirectory() as tmp:
        paths = generate_all_plots(tables, micro, pathogens, Path(tmp))
        names = sorted(p.name for p in paths)
        assert names == [
            "box_ecoli.png",
            "box_esbl_ecoli.png",
            "culture_prevalence.png",
            "pathogen_counts.png",
            "pathogen_heatmap.png",
        ]
        assert all(p.exists() for p in paths)


def test_generate_all_plots_without_tac():
    micro = _make_micro()
    tables = {"culture_prevalence": prevalence(micro, "detected", by=["sample_type", "target"])}
    with tempfile.TemporaryDirectory() as tmp:
        paths = generate_all_plots(tables, micro, None, Path(tmp))
        assert "pathogen_heatmap.png" not in {p.name for p in paths}
        assert len(paths) == 3
