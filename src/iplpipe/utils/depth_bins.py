"""Depth binning of ROIs within the inner plexiform layer.

``B`` ascending edges produce ``B + 1`` bins:

* bin 0: ``depth < edges[0]``
* bin i: ``edges[i-1] <= depth < edges[i]``
* bin B: ``depth >= edges[-1]``

so any finite depth lands in exactly one bin, including depths outside
``[0, 1]``.  NaN depths fail every comparison and land in none.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ParameterError
from .nanstats import nanmean_sem

DEFAULT_HALF_EDGE_GAP = 0.05


def validate_edges(edges: Sequence[float]) -> np.ndarray:
    """Return ``edges`` as a float array or raise :class:`ParameterError`."""
    arr = np.asarray(edges, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        raise ParameterError(f"Depth bin edges must be a non-empty 1-D sequence, got {edges!r}")
    if not np.all(np.isfinite(arr)):
        raise ParameterError(f"Depth bin edges must be finite, got {arr.tolist()}")
    if arr.size > 1 and np.any(np.diff(arr) <= 0):
        raise ParameterError(f"Depth bin edges must be strictly ascending, got {arr.tolist()}")
    return arr


def n_depth_bins(edges: Sequence[float]) -> int:
    return int(validate_edges(edges).size) + 1


def depth_bin_mask(depth: np.ndarray, index: int, edges: Sequence[float]) -> np.ndarray:
    """Boolean mask of ROIs falling into bin ``index``."""
    edges = validate_edges(edges)
    n_bins = edges.size + 1
    if not 0 <= index < n_bins:
        raise ParameterError(f"Depth bin index must be between 0 and {n_bins - 1}, got {index}")
    depth = np.asarray(depth, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        if index == 0:
            return depth < edges[0]
        if index < edges.size:
            return (depth >= edges[index - 1]) & (depth < edges[index])
        return depth >= edges[-1]


def depth_bin_masks(depth: np.ndarray, edges: Sequence[float]) -> List[np.ndarray]:
    edges = validate_edges(edges)
    return [depth_bin_mask(depth, i, edges) for i in range(edges.size + 1)]


def assign_depth_bins(depth: np.ndarray, edges: Sequence[float]) -> np.ndarray:
    """Per-ROI bin index; ``-1`` marks NaN depths."""
    edges = validate_edges(edges)
    depth = np.asarray(depth, dtype=np.float64)
    out = np.searchsorted(edges, depth, side="right").astype(np.int64)
    out[np.isnan(depth)] = -1
    return out


def bin_centers(edges: Sequence[float], half_edge_gap: Optional[float] = None) -> np.ndarray:
    """Display centre of each bin, in depth fraction units.

    The open-ended outer bins are labelled ``half_edge_gap`` beyond the
    first and last edges (0.05 by default).
    """
    edges = validate_edges(edges)
    if half_edge_gap is None:
        half_edge_gap = DEFAULT_HALF_EDGE_GAP
    centers = np.empty(edges.size + 1, dtype=np.float64)
    centers[0] = edges[0] - half_edge_gap
    centers[-1] = edges[-1] + half_edge_gap
    if edges.size > 1:
        centers[1:-1] = (edges[:-1] + edges[1:]) / 2.0
    return centers


@dataclass(frozen=True)
class DepthBin:
    index: int
    center: float
    mask: np.ndarray

    @property
    def indices(self) -> np.ndarray:
        return np.flatnonzero(self.mask)

    @property
    def count(self) -> int:
        return int(np.count_nonzero(self.mask))


def make_depth_bins(
    depth: np.ndarray, edges: Sequence[float], half_edge_gap: Optional[float] = None
) -> List[DepthBin]:
    centers = bin_centers(edges, half_edge_gap)
    return [
        DepthBin(index=i, center=float(centers[i]), mask=mask)
        for i, mask in enumerate(depth_bin_masks(depth, edges))
    ]


def bin_by_depth(
    data: np.ndarray,
    depth: np.ndarray,
    edges: Sequence[float],
    half_edge_gap: Optional[float] = None,
) -> Tuple[np.ndarray, List[np.ndarray]]:
    """Split ``data`` (first axis = ROIs) into per-bin subsets.

    Returns ``(centers, subsets)`` where ``subsets[i]`` holds the rows of
    ``data`` in bin ``i``.
    """
    data = np.asarray(data)
    depth = np.asarray(depth, dtype=np.float64).ravel()
    if data.shape[0] != depth.size:
        raise ParameterError(
            f"First dimension of data ({data.shape[0]}) must match number of depths ({depth.size})"
        )
    centers = bin_centers(edges, half_edge_gap)
    return centers, [data[mask] for mask in depth_bin_masks(depth, edges)]


# ---------------------------------------------------------------------------
# Interval profiles (polarity / reliability / power vs depth)
# ---------------------------------------------------------------------------


def interval_centers(edges: Sequence[float]) -> np.ndarray:
    """Centre of each ``(edges[i], edges[i+1]]`` interval using the mean spacing."""
    edges = validate_edges(edges)
    if edges.size < 2:
        raise ParameterError("Depth profiles need at least two edges")
    return edges[:-1] + 0.5 * float(np.mean(np.diff(edges)))


def interval_masks(depth: np.ndarray, edges: Sequence[float]) -> List[np.ndarray]:
    edges = validate_edges(edges)
    depth = np.asarray(depth, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        return [(depth > lo) & (depth <= hi) for lo, hi in zip(edges[:-1], edges[1:])]


@dataclass(frozen=True)
class DepthProfile:
    centers: np.ndarray
    mean: np.ndarray
    sem: np.ndarray
    counts: np.ndarray


def depth_profile(
    values: np.ndarray,
    depth: np.ndarray,
    edges: Sequence[float],
    mask: Optional[np.ndarray] = None,
) -> DepthProfile:
    """Mean and SEM of ``values`` per left-open depth interval.

    Intervals with no ROIs give NaN for both statistics.
    """
    values = np.asarray(values, dtype=np.float64)
    depth = np.asarray(depth, dtype=np.float64)
    if values.shape != depth.shape:
        raise ParameterError(
            f"values ({values.shape}) and depth ({depth.shape}) must have the same shape"
        )
    centers = interval_centers(edges)
    if mask is None:
        mask = np.ones(depth.shape, dtype=bool)
    means, sems, counts = [], [], []
    for interval in interval_masks(depth, edges):
        subset = values[interval & mask]
        m, s = nanmean_sem(subset)
        means.append(m)
        sems.append(s)
        counts.append(subset.size)
    return DepthProfile(
        centers=centers,
        mean=np.asarray(means, dtype=np.float64),
        sem=np.asarray(sems, dtype=np.float64),
        counts=np.asarray(counts, dtype=np.int64),
    )
