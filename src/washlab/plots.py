"""Figures for the descriptive stage.

Every function returns the path of the PNG written, or None when no
output directory is given.  matplotlib is imported lazily with the Agg
backend so the module loads on headless machines.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _pyplot():
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    return plt


def _save(fig, output_dir: Optional[Path], filename: str) -> Optional[Path]:
    plt = _pyplot()
    path = None
    if output_dir is not None:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / filename
        fig.savefig(path, dpi=100)
        logger.info("Saved figure: %s", path)
    plt.close(fig)
    return path


def plot_prevalence_bars(
    prev: pd.DataFrame,
    category: str,
    hue: Optional[str] = None,
    title: str = "Prevalence",
    output_dir: Optional[Path] = None,
    filename: str = "prevalence.png",
) -> Optional[Path]:
    """Bar chart of prevalence with Wilson interval error bars.

    Parameters
    ----------
    prev : pd.DataFrame
        Output of ``descriptive.prevalence`` grouped by ``category`` (and
        ``hue`` when given).
    """
    plt = _pyplot()

    categories = list(pd.unique(prev[category]))
    hues = list(pd.unique(prev[hue])) if hue else [None]
    width = 0.8 / len(hues)
    x = np.arange(len(categories))

    fig, ax = plt.subplots(figsize=(max(6, 1.2 * len(categories)), 5))
    for i, h in enumerate(hues):
        sub = prev if h is None else prev[prev[hue] == h]
        sub = sub.set_index(category).reindex(categories)
        yerr = np.vstack([
            (sub["prevalence"] - sub["ci_low"]).fillna(0).values,
            (sub["ci_high"] - sub["prevalence"]).fillna(0).values,
        ])
        ax.bar(
            x + (i - (len(hues) - 1) / 2) * width,
            sub["prevalence"].fillna(0).values,
            width,
            yerr=yerr,
            capsize=3,
            label=str(h) if h is not None else None,
        )
    ax.set_xticks(x)
    ax.set_xticklabels(categories, rotation=30, ha="right")
    ax.set_ylim(0, 1)
    ax.set_ylabel("Prevalence")
    ax.set_title(title)
    if hue:
        ax.legend(title=hue)
    ax.grid(True, axis="y", alpha=0.3)
    fig.tight_layout()
    return _save(fig, output_dir, filename)


def plot_concentration_boxplot(
    micro: pd.DataFrame,
    target: str,
    value: str = "log10_conc",
    by: str = "sample_type",
    output_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Boxplot of log10 concentration per sample type for one culture target.

    Sample types have different units, so each box is labelled with its unit.
    """
    plt = _pyplot()

    sub = micro[micro["target"] == target].dropna(subset=[value])
    groups = sorted(sub[by].unique())
    data = [sub.loc[sub[by] == g, value].values for g in groups]
    labels = []
    for g in groups:
        units = sub.loc[sub[by] == g, "unit"].dropna().unique() if "unit" in sub.columns else []
        labels.append(f"{g}\n({units[0]})" if len(units) else str(g))

    fig, ax = plt.subplots(figsize=(max(6, 1.5 * len(groups)), 5))
    if data:
        ax.boxplot(data, showfliers=True)
        ax.set_xticks(range(1, len(labels) + 1))
        ax.set_xticklabels(labels)
    ax.set_ylabel(f"{value}")
    ax.set_title(f"{target}: {value} by {by}")
    ax.grid(True, axis="y", alpha=0.3)
    fig.tight_layout()
    return _save(fig, output_dir, f"box_{target}.png")


def plot_pathogen_heatmap(
    prev: pd.DataFrame,
    output_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Heatmap of pathogen prevalence (rows) by sample type (columns)."""
    plt = _pyplot()

    table = prev.pivot(index="pathogen", columns="sample_type", values="prevalence")

    fig, ax = plt.subplots(figsize=(2 + 1.2 * len(table.columns), 1 + 0.45 * len(table.index)))
    im = ax.imshow(table.values, aspect="auto", cmap="YlOrRd", vmin=0, vmax=1)
    ax.set_xticks(range(len(table.columns)))
    ax.set_xticklabels(table.columns, rotation=30, ha="right")
    ax.set_yticks(range(len(table.index)))
    ax.set_yticklabels(table.index)
    for i in range(table.shape[0]):
        for j in range(table.shape[1]):
            v = table.values[i, j]
            if not np.isnan(v):
                ax.text(j, i, f"{v:.2f}", ha="center", va="center", fontsize=8)
    ax.set_title("Pathogen prevalence by sample type")
    fig.colorbar(im, ax=ax, label="prevalence")
    fig.tight_layout()
    return _save(fig, output_dir, "pathogen_heatmap.png")


def plot_pathogen_count_histogram(
    pathogens: pd.DataFrame,
    output_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Histogram of the number of pathogens detected per sample."""
    plt = _pyplot()

    counts = pathogens["n_pathogens"].dropna().astype(int)
    max_n = int(counts.max()) if not counts.empty else 0
    bins = np.arange(-0.5, max_n + 1.5, 1.0)

    fig, ax = plt.subplots(figsize=(7, 5))
    ax.hist(counts, bins=bins, edgecolor="black")
    ax.set_xticks(range(max_n + 1))
    ax.set_xlabel("Pathogens detected per sample")
    ax.set_ylabel("Samples")
    ax.set_title("Pathogen burden per sample")
    ax.grid(True, axis="y", alpha=0.3)
    fig.tight_layout()
    return _save(fig, output_dir, "pathogen_counts.png")


def generate_all_plots(
    tables: Dict[str, pd.DataFrame],
    micro: pd.DataFrame,
    pathogens: Optional[pd.DataFrame],
    output_dir: Path,
) -> List[Path]:
    """Write every descriptive figure.

    Parameters
    ----------
    tables : dict
        Descriptive tables keyed as in ``stages.run_describe_stage``
        (``culture_prevalence``, ``pathogen_prevalence``).
    micro : pd.DataFrame
        Clean microbiology table.
    pathogens : pd.DataFrame or None
        Clean pathogen table; TAC figures are skipped when None.
    """
    paths: List[Path] = []

    culture = tables.get("culture_prevalence")
    if culture is not None and not culture.empty:
        p = plot_prevalence_bars(
            culture, "sample_type", hue="target",
            title="E. coli and ESBL E. coli prevalence",
            output_dir=output_dir, filename="culture_prevalence.png",
        )
        if p:
            paths.append(p)

    for target in sorted(micro["target"].dropna().unique()):
        p = plot_concentration_boxplot(micro, target, output_dir=output_dir)
        if p:
            paths.append(p)

    if pathogens is not None and not pathogens.empty:
        prev = tables.get("pathogen_prevalence")
        if prev is not None and not prev.empty and "sample_type" in prev.columns:
            p = plot_pathogen_heatmap(prev, output_dir)
            if p:
                paths.append(p)
        p = plot_pathogen_count_histogram(pathogens, output_dir)
        if p:
            paths.append(p)

    return paths
