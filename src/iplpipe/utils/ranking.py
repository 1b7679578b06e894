"""Reliability ranking and ROI subset selection."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from ..errors import ParameterError

MAX_ROIS_PER_BIN = 500


def round_half_away(x: float) -> int:
    """Round to the nearest integer, halves away from zero (``round(2.5) == 3``)."""
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


def top_count(n: int, fraction: float = 0.5) -> int:
    """Number of ROIs kept when selecting ``fraction`` of ``n``."""
    if not 0.0 <= fraction <= 1.0:
        raise ParameterError(f"fraction must be within [0, 1], got {fraction}")
    return round_half_away(n * fraction)


def rank_by_reliability(indices: Sequence[int], reliability: np.ndarray) -> np.ndarray:
    """Return ``indices`` ordered by descending reliability.

    ``reliability`` is indexed by ROI (population-wide, one stimulus size).
    Ties keep their input order; NaN reliabilities sort first, as a
    descending MATLAB ``sort`` places them.
    """
    idx = np.asarray(indices, dtype=np.int64).ravel()
    if idx.size == 0:
        return idx
    scores = np.asarray(reliability, dtype=np.float64)[idx]
    missing = np.isnan(scores)
    finite = np.flatnonzero(~missing)
    order = finite[np.argsort(-scores[finite], kind="stable")]
    return np.concatenate([idx[missing], idx[order]])


def select_top_fraction(
    indices: Sequence[int], reliability: np.ndarray, fraction: float = 0.5
) -> np.ndarray:
    """The ``round(n * fraction)`` most reliable ROIs, most reliable first."""
    ranked = rank_by_reliability(indices, reliability)
    return ranked[: top_count(ranked.size, fraction)]


def cap_count(indices: Sequence[int], max_count: int = MAX_ROIS_PER_BIN) -> np.ndarray:
    """Truncate ``indices`` to the first ``max_count`` entries without re-sorting."""
    if max_count < 0:
        raise ParameterError(f"max_count must be non-negative, got {max_count}")
    idx = np.asarray(indices, dtype=np.int64).ravel()
    return idx[:max_count]


def select_reliable(
    mask: np.ndarray,
    reliability: np.ndarray,
    fraction: float = 0.5,
    max_count: int | None = None,
) -> np.ndarray:
    """Top-``fraction`` ROIs of a group mask, optionally capped at ``max_count``."""
    selected = select_top_fraction(np.flatnonzero(mask), reliability, fraction)
    if max_count is not None:
        selected = cap_count(selected, max_count)
    return selected
