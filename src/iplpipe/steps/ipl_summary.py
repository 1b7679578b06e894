"""Layer-level summaries of the iGluSnFR IPL dataset.

Produces, under ``<output_dir>/ipl_summary``:

1. polarity vs IPL depth for reliable WT/KO control ROIs
2. z-score heatmaps of the top 50% most reliable ROIs in each
   genotype x layer x condition group
3. mean +/- SEM shade plots for the same 8 groups (all ROIs)
4. reliability and fundamental power vs depth for the 4 base groups
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config import Settings, resolve_output_dir
from ..population import RoiPopulation, load_population
from ..utils.depth_bins import DepthProfile, depth_profile
from ..utils.groups import (
    BASE_GROUPS,
    LAYER_CONDITION_GROUPS,
    Condition,
    Genotype,
    GroupKey,
    classify_population,
)
from ..utils.nanstats import nanmean_sem
from ..utils.ranking import select_reliable
from ..utils.zscore import population_zscores

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayerGroupTraces:
    """Z-scored traces of one genotype x layer x condition group."""

    group: GroupKey
    roi_indices: np.ndarray
    ranked: np.ndarray
    heatmap: np.ndarray
    mean: np.ndarray
    sem: np.ndarray


def polarity_profiles(
    population: RoiPopulation,
    edges: Sequence[float],
    stim_index: int = 0,
    thresholds: Optional[Dict[Genotype, float]] = None,
    divider: float = 0.5,
) -> Dict[str, DepthProfile]:
    """Polarity vs depth for WT and KO control ROIs above their reliability threshold."""
    stim_index = population.check_stim_index(stim_index)
    if thresholds is None:
        thresholds = {Genotype.WT: 0.4, Genotype.KO: 0.4}
    groups = classify_population(population, divider)
    reliability = population.reliability[:, stim_index]
    polarity = population.polarity[:, stim_index]

    out = {}
    for genotype in Genotype:
        key = GroupKey(genotype, Condition.CTRL)
        with np.errstate(invalid="ignore"):
            reliable = groups[key.name] & (reliability > thresholds[genotype])
        out[key.name] = depth_profile(polarity, population.depth, edges, reliable)
        logger.debug("%s: %d reliable ROIs", key.name, int(reliable.sum()))
    return out


def metric_profiles(
    population: RoiPopulation,
    edges: Sequence[float],
    stim_index: int = 0,
) -> Dict[str, Dict[str, DepthProfile]]:
    """Reliability and power vs depth for each of the 4 base groups."""
    stim_index = population.check_stim_index(stim_index)
    groups = classify_population(population)
    metrics = {
        "reliability": population.reliability[:, stim_index],
        "power": population.power[:, stim_index],
    }
    return {
        metric: {
            key.name: depth_profile(values, population.depth, edges, groups[key.name])
            for key in BASE_GROUPS
        }
        for metric, values in metrics.items()
    }


def layer_group_traces(
    population: RoiPopulation,
    zscores: Optional[np.ndarray] = None,
    stim_index: int = 0,
    divider: float = 0.5,
    top_fraction: float = 0.5,
) -> Dict[str, LayerGroupTraces]:
    """Heatmap matrices and shade-plot statistics for the 8 layer groups.

    Heatmaps hold the most reliable ``top_fraction`` of each group in
    reliability order; the shade-plot mean/SEM use every ROI of the group.
    """
    stim_index = population.check_stim_index(stim_index)
    if zscores is None:
        zscores = population_zscores(population, stim_index)
    groups = classify_population(population, divider)
    reliability = population.reliability[:, stim_index]

    out = {}
    for key in LAYER_CONDITION_GROUPS:
        mask = groups[key.name]
        ranked = select_reliable(mask, reliability, top_fraction)
        members = zscores[mask]
        mean, sem = nanmean_sem(members, axis=0)
        out[key.name] = LayerGroupTraces(
            group=key,
            roi_indices=np.flatnonzero(mask),
            ranked=ranked,
            heatmap=zscores[ranked],
            mean=np.asarray(mean),
            sem=np.asarray(sem),
        )
    return out


def profiles_frame(profiles: Dict[str, DepthProfile], metric: str) -> pd.DataFrame:
    rows = []
    for name, prof in profiles.items():
        for center, m, s, n in zip(prof.centers, prof.mean, prof.sem, prof.counts):
            rows.append(
                {
                    "metric": metric,
                    "group": name,
                    "depth_center_pct": 100.0 * center,
                    "mean": m,
                    "sem": s,
                    "n_rois": int(n),
                }
            )
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Plotting
# ---------------------------------------------------------------------------


def plot_polarity_vs_depth(profiles: Dict[str, DepthProfile], divider: float = 0.5):
    from ..utils.plotting import COLOR_KO, COLOR_WT, create_named_figure

    fig = create_named_figure("Polarity vs. IPL Depth")
    ax = fig.subplots()
    colors = {"wtCtrl": COLOR_WT, "koCtrl": COLOR_KO}
    labels = {"wtCtrl": "WT Ctrl", "koCtrl": "KO Ctrl"}
    for name, prof in profiles.items():
        ax.errorbar(
            100.0 * prof.centers,
            prof.mean,
            yerr=prof.sem,
            color=colors.get(name, COLOR_WT),
            linestyle="none",
            marker="o",
            capsize=0,
            label=labels.get(name, name),
        )
    ax.axvline(100.0 * divider, color="k", linestyle="--")
    ax.set_xlabel("IPL depth (%)")
    ax.set_ylabel("Polarity")
    ax.set_title("Polarity vs. IPL Depth")
    ax.legend(loc="best")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    return fig


def plot_heatmaps(
    traces: Dict[str, LayerGroupTraces],
    frame_rate_hz: float,
    zlim: Tuple[float, float] = (-2.0, 4.0),
):
    from ..utils.plotting import create_named_figure, genotype_color, white_to_color_cmap

    fig = create_named_figure("Response Heatmaps", figsize=(14, 6))
    axes = fig.subplots(2, 4, squeeze=False)
    for ax, key in zip(axes.ravel(), LAYER_CONDITION_GROUPS):
        entry = traces[key.name]
        cmap = white_to_color_cmap(genotype_color(key.genotype), name=f"{key.name}_map")
        n_time = entry.heatmap.shape[1] if entry.heatmap.ndim == 2 else 0
        if entry.heatmap.size:
            ax.imshow(
                entry.heatmap,
                aspect="auto",
                interpolation="nearest",
                cmap=cmap,
                vmin=zlim[0],
                vmax=zlim[1],
            )
        if n_time:
            ticks = np.linspace(0, n_time - 1, 5)
            ax.set_xticks(ticks)
            ax.set_xticklabels([f"{t / frame_rate_hz:.1f}" for t in ticks])
        ax.set_title(key.label)
        ax.set_xlabel("Time (s)")
    for ax in axes[:, 0]:
        ax.set_ylabel("ROIs (#)")
    fig.tight_layout()
    return fig


def plot_shade_plots(traces: Dict[str, LayerGroupTraces], frame_rate_hz: float):
    from ..utils.plotting import create_named_figure, genotype_color, shade_plot, time_axis

    fig = create_named_figure("Mean +/- SEM Shade Plots", figsize=(14, 6))
    axes = fig.subplots(2, 4, squeeze=False)
    for ax, key in zip(axes.ravel(), LAYER_CONDITION_GROUPS):
        entry = traces[key.name]
        if entry.roi_indices.size:
            t = time_axis(entry.mean.size, frame_rate_hz)
            shade_plot(ax, t, entry.mean, entry.sem, genotype_color(key.genotype))
        ax.set_title(key.label)
        ax.set_xlabel("Time (s)")
    for ax in axes[:, 0]:
        ax.set_ylabel("Fz")
    fig.tight_layout()
    return fig


def plot_metric_profiles(
    profiles: Dict[str, Dict[str, DepthProfile]],
    divider: float = 0.5,
    xlim: Tuple[float, float] = (20.0, 80.0),
):
    from ..utils.plotting import GROUP_COLORS, create_named_figure

    fig = create_named_figure("Power & Reliability vs Depth", figsize=(16, 4))
    axes = fig.subplots(1, 4, squeeze=False)[0]
    panels = [
        ("reliability", Genotype.WT, "Reliability (R)", "WT Reliability"),
        ("power", Genotype.WT, "Power (rel.)", "WT Power"),
        ("reliability", Genotype.KO, "Reliability (R)", "KO Reliability"),
        ("power", Genotype.KO, "Power (rel.)", "KO Power"),
    ]
    for ax, (metric, genotype, ylabel, title) in zip(axes, panels):
        lows, highs = [], []
        for key in BASE_GROUPS:
            if key.genotype is not genotype:
                continue
            prof = profiles[metric][key.name]
            ax.errorbar(
                100.0 * prof.centers,
                prof.mean,
                yerr=prof.sem,
                color=GROUP_COLORS[key.name],
                linestyle="-",
                capsize=0,
                label=key.condition.name.title() if key.condition is not None else key.name,
            )
            lows.append(prof.mean - prof.sem)
            highs.append(prof.mean + prof.sem)
        ax.axvline(100.0 * divider, color="k", linestyle="--")
        low, high = np.nanmin(np.concatenate(lows)), np.nanmax(np.concatenate(highs))
        ax.set_xlim(*xlim)
        if np.isfinite(low) and np.isfinite(high) and high > low:
            ax.set_ylim(low, high)
        ax.set_xlabel("IPL depth (%)")
        ax.set_ylabel(ylabel)
        ax.set_title(title)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)
    axes[0].legend(loc="best")
    fig.tight_layout()
    return fig


def main(cfg: Settings) -> None:
    from ..utils.plotting import save_figure

    population = load_population(cfg.data_path)
    stim_index = population.check_stim_index(cfg.stim_index)
    edges = cfg.summary_depth_edges
    thresholds = {
        Genotype.WT: cfg.reliability_threshold.wt,
        Genotype.KO: cfg.reliability_threshold.ko,
    }

    polarity = polarity_profiles(population, edges, stim_index, thresholds, cfg.depth_divider)
    metrics = metric_profiles(population, edges, stim_index)
    zscores = population_zscores(population, stim_index)
    logger.info("Z-scores computed: [%d ROIs x %d time points]", *zscores.shape)
    traces = layer_group_traces(population, zscores, stim_index, cfg.depth_divider)
    for name, entry in traces.items():
        logger.info("%s: %d ROIs (%d in heatmap)", name, entry.roi_indices.size, entry.ranked.size)

    out_dir = resolve_output_dir(cfg) / "ipl_summary"
    out_dir.mkdir(parents=True, exist_ok=True)
    table = pd.concat(
        [
            profiles_frame(polarity, "polarity"),
            profiles_frame(metrics["reliability"], "reliability"),
            profiles_frame(metrics["power"], "power"),
        ],
        ignore_index=True,
    )
    table_csv = out_dir / "depth_profiles.csv"
    table.to_csv(table_csv, index=False)
    logger.info("Saved %s", table_csv)

    if cfg.plot.save_figures:
        save_kwargs = dict(dpi=cfg.plot.dpi, formats=cfg.plot.formats)
        save_figure(plot_polarity_vs_depth(polarity, cfg.depth_divider), out_dir / "polarity_vs_depth", **save_kwargs)
        save_figure(
            plot_heatmaps(traces, cfg.frame_rate_hz, tuple(cfg.plot.heatmap_zlim)),
            out_dir / "response_heatmaps",
            **save_kwargs,
        )
        save_figure(plot_shade_plots(traces, cfg.frame_rate_hz), out_dir / "shade_plots", **save_kwargs)
        save_figure(plot_metric_profiles(metrics, cfg.depth_divider), out_dir / "power_reliability_vs_depth", **save_kwargs)
