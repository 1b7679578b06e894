"""Depth-stratified mean +/- SEM envelopes per genotype and condition.

For every base group (WT/KO x Ctrl/APB) and depth bin the step keeps the
most reliable half of the ROIs, summarises their z-scored traces as an
envelope and finally derives one global y-range so every subplot of the
grid shares the same span.

Figures written under ``<output_dir>/depth_envelopes``:

* envelope grid (depth bins x groups)
* reliability histograms per cell
* fundamental power histograms per cell
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..config import Settings, resolve_output_dir
from ..population import RoiPopulation, load_population
from ..utils.depth_bins import bin_centers, depth_bin_masks, validate_edges
from ..utils.envelope import Envelope, global_range, trace_envelope
from ..utils.groups import BASE_GROUPS, GroupKey, group_mask
from ..utils.ranking import MAX_ROIS_PER_BIN, cap_count, select_top_fraction
from ..utils.zscore import population_zscores

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvelopeParams:
    depth_edges: Tuple[float, ...] = (0.3, 0.4, 0.5, 0.6, 0.7)
    stim_index: int = 0
    top_fraction: float = 0.5
    max_rois_per_bin: int = MAX_ROIS_PER_BIN
    half_edge_gap: Optional[float] = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> "EnvelopeParams":
        return cls(
            depth_edges=tuple(cfg.envelope.depth_edges),
            stim_index=cfg.stim_index,
            top_fraction=cfg.envelope.top_fraction,
            max_rois_per_bin=cfg.envelope.max_rois_per_bin,
            half_edge_gap=cfg.envelope.half_edge_gap,
        )


@dataclass(frozen=True)
class DepthCell:
    """One (group, depth bin) cell of the envelope grid."""

    group: GroupKey
    bin_index: int
    depth_center: float
    roi_indices: np.ndarray
    selected: np.ndarray
    traces: np.ndarray
    envelope: Envelope
    reliability: np.ndarray
    power: np.ndarray

    @property
    def n_rois(self) -> int:
        return int(self.roi_indices.size)


@dataclass
class DepthEnvelopeResult:
    params: EnvelopeParams
    centers: np.ndarray
    groups: Tuple[GroupKey, ...]
    cells: Dict[Tuple[str, int], DepthCell]
    global_range: float

    @property
    def n_bins(self) -> int:
        return int(self.centers.size)

    def cell(self, group: str | GroupKey, bin_index: int) -> DepthCell:
        name = group.name if isinstance(group, GroupKey) else group
        return self.cells[(name, bin_index)]

    def summary_frame(self) -> pd.DataFrame:
        rows = []
        for group in self.groups:
            for i in range(self.n_bins):
                cell = self.cell(group, i)
                rows.append(
                    {
                        "group": group.name,
                        "bin": i,
                        "depth_center_pct": 100.0 * cell.depth_center,
                        "n_rois_in_bin": cell.n_rois,
                        "n_selected": int(cell.selected.size),
                        **cell.envelope.scalars(),
                    }
                )
        return pd.DataFrame(rows)


def compute_cell(
    group: GroupKey,
    bin_index: int,
    depth_center: float,
    mask: np.ndarray,
    zscores: np.ndarray,
    reliability: np.ndarray,
    power: np.ndarray,
    top_fraction: float = 0.5,
    max_rois: int = MAX_ROIS_PER_BIN,
) -> DepthCell:
    """Select, trim and summarise the ROIs of one cell.

    ``reliability`` and ``power`` are per-ROI vectors for the analysed
    stimulus size.
    """
    roi_indices = np.flatnonzero(mask)
    selected = select_top_fraction(roi_indices, reliability, top_fraction)
    traces = zscores[selected]
    envelope = trace_envelope(zscores[cap_count(selected, max_rois)])
    return DepthCell(
        group=group,
        bin_index=bin_index,
        depth_center=depth_center,
        roi_indices=roi_indices,
        selected=selected,
        traces=traces,
        envelope=envelope,
        reliability=np.asarray(reliability)[roi_indices],
        power=np.asarray(power)[roi_indices],
    )


def compute_depth_envelopes(
    population: RoiPopulation,
    params: EnvelopeParams = EnvelopeParams(),
    zscores: Optional[np.ndarray] = None,
    groups: Sequence[GroupKey] = BASE_GROUPS,
    n_jobs: int = 1,
) -> DepthEnvelopeResult:
    """Build every (group, depth bin) cell and the shared display range.

    Cells are independent, so they are evaluated through joblib with
    ``n_jobs`` workers; the global range is taken once all are done.
    """
    stim_index = population.check_stim_index(params.stim_index)
    edges = validate_edges(params.depth_edges)
    if zscores is None:
        zscores = population_zscores(population, stim_index)
    reliability = population.reliability[:, stim_index]
    power = population.power[:, stim_index]

    centers = bin_centers(edges, params.half_edge_gap)
    bin_masks = depth_bin_masks(population.depth, edges)
    group_masks = {
        key.name: group_mask(key, population.genotype, population.condition) for key in groups
    }

    jobs = [
        delayed(compute_cell)(
            key,
            i,
            float(centers[i]),
            group_masks[key.name] & bin_masks[i],
            zscores,
            reliability,
            power,
            params.top_fraction,
            params.max_rois_per_bin,
        )
        for key in groups
        for i in range(len(bin_masks))
    ]
    done = Parallel(n_jobs=n_jobs)(jobs)

    cells: Dict[Tuple[str, int], DepthCell] = {}
    for cell in done:
        cells[(cell.group.name, cell.bin_index)] = cell
        if cell.envelope.is_empty:
            logger.debug(
                "Empty cell %s, bin %d (%.1f%% depth)",
                cell.group.name,
                cell.bin_index,
                100.0 * cell.depth_center,
            )

    shared = global_range(cell.envelope for cell in cells.values())
    logger.info(
        "Computed %d envelope cells (%d groups x %d bins); global range %.3f",
        len(cells),
        len(groups),
        len(bin_masks),
        shared,
    )
    return DepthEnvelopeResult(
        params=params,
        centers=centers,
        groups=tuple(groups),
        cells=cells,
        global_range=shared,
    )


# ---------------------------------------------------------------------------
# Plotting
# ---------------------------------------------------------------------------


def _title(group: GroupKey, center: float, suffix: str = "") -> str:
    head = f"{group.genotype.name} {group.condition.name.title()}" if group.condition is not None else group.label
    return f"{head}{suffix}, depth {100.0 * center:.2f}%"


def plot_envelope_grid(result: DepthEnvelopeResult):
    """Rows are depth bins, columns are groups; every axis spans the global range."""
    from ..utils.plotting import create_named_figure, plot_envelope, set_ylim_using_range

    n_rows, n_cols = result.n_bins, len(result.groups)
    fig = create_named_figure("Mean +/- SEM envelopes by depth", figsize=(3.0 * n_cols, 1.8 * n_rows))
    axes = fig.subplots(n_rows, n_cols, squeeze=False)
    for i in range(n_rows):
        for j, group in enumerate(result.groups):
            ax = axes[i, j]
            cell = result.cell(group, i)
            plot_envelope(ax, cell.envelope)
            set_ylim_using_range(ax, cell.envelope, result.global_range)
            ax.set_title(_title(group, cell.depth_center), fontsize=8)
            ax.spines["top"].set_visible(False)
            ax.spines["right"].set_visible(False)
    fig.tight_layout()
    return fig


def plot_metric_histograms(
    result: DepthEnvelopeResult,
    metric: str,
    edges: np.ndarray,
    xlim: Optional[Tuple[float, float]] = None,
    xticks: Optional[Sequence[float]] = None,
):
    """Probability-normalised histogram of ``metric`` ('reliability' or 'power') per cell."""
    from ..utils.plotting import create_named_figure

    if metric not in ("reliability", "power"):
        raise ValueError(f"metric must be 'reliability' or 'power', got {metric!r}")
    suffix = "" if metric == "reliability" else " f1Pow"
    n_rows, n_cols = result.n_bins, len(result.groups)
    fig = create_named_figure(f"{metric.title()} histograms by depth", figsize=(3.0 * n_cols, 1.8 * n_rows))
    axes = fig.subplots(n_rows, n_cols, squeeze=False)
    for i in range(n_rows):
        for j, group in enumerate(result.groups):
            ax = axes[i, j]
            cell = result.cell(group, i)
            vals = getattr(cell, metric)
            vals = vals[np.isfinite(vals)]
            if vals.size:
                ax.hist(vals, bins=edges, weights=np.full(vals.size, 1.0 / vals.size))
            ax.set_title(_title(group, cell.depth_center, suffix), fontsize=8)
            if xlim is not None:
                ax.set_xlim(*xlim)
            if xticks is not None:
                ax.set_xticks(list(xticks))
            ax.spines["top"].set_visible(False)
            ax.spines["right"].set_visible(False)
    fig.tight_layout()
    return fig


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def write_sidecar(path: Path, result: DepthEnvelopeResult, *, frame_rate_hz: float) -> None:
    p = result.params
    info: dict = {
        "depth_edges": list(p.depth_edges),
        "depth_centers_pct": [100.0 * c for c in result.centers],
        "stim_index": p.stim_index,
        "top_fraction": p.top_fraction,
        "max_rois_per_bin": p.max_rois_per_bin,
        "frame_rate_hz": frame_rate_hz,
        "global_range": result.global_range,
        "cells": {},
    }
    for group in result.groups:
        info["cells"][group.name] = [
            {
                "bin": i,
                "n_rois_in_bin": result.cell(group, i).n_rois,
                "selected_rois": result.cell(group, i).selected.tolist(),
            }
            for i in range(result.n_bins)
        ]
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(info, fh, indent=2)
    logger.info("Saved sidecar %s", path)


def main(cfg: Settings) -> DepthEnvelopeResult:
    from ..utils.plotting import range_edges, save_figure

    population = load_population(cfg.data_path)
    params = EnvelopeParams.from_settings(cfg)
    result = compute_depth_envelopes(population, params, n_jobs=cfg.envelope.n_jobs)

    out_dir = resolve_output_dir(cfg) / "depth_envelopes"
    out_dir.mkdir(parents=True, exist_ok=True)

    summary_csv = out_dir / "envelope_summary.csv"
    result.summary_frame().to_csv(summary_csv, index=False)
    logger.info("Saved %s", summary_csv)
    write_sidecar(out_dir / "envelope_summary.json", result, frame_rate_hz=cfg.frame_rate_hz)

    if cfg.plot.save_figures:
        save_kwargs = dict(dpi=cfg.plot.dpi, formats=cfg.plot.formats)
        save_figure(plot_envelope_grid(result), out_dir / "envelopes_by_depth", **save_kwargs)
        save_figure(
            plot_metric_histograms(
                result,
                "reliability",
                range_edges(cfg.histograms.reliability_edges),
                xlim=(-0.25, 1.0),
                xticks=(0.0, 0.5, 1.0),
            ),
            out_dir / "reliability_histograms",
            **save_kwargs,
        )
        save_figure(
            plot_metric_histograms(
                result,
                "power",
                range_edges(cfg.histograms.power_edges),
                xlim=(cfg.histograms.power_edges[0], cfg.histograms.power_edges[1]),
            ),
            out_dir / "power_histograms",
            **save_kwargs,
        )
    return result
