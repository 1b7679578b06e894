"""NaN-aware mean/SEM aggregation utilities.

SEM follows the sample convention used throughout the lab's figures:
``std(ddof=1) / sqrt(n)``, where ``n`` is the full length of the reduced
axis and a single sample has an SEM of 0.
"""

from __future__ import annotations

import numpy as np


def sem(values: np.ndarray, axis: int = 0) -> np.ndarray | float:
    """Standard error of the mean along ``axis``, ignoring NaN in the spread.

    Parameters
    ----------
    values : np.ndarray
        Input data.
    axis : int
        Axis to reduce.

    Returns
    -------
    np.ndarray or float
        ``nanstd(ddof=1) / sqrt(values.shape[axis])``.  Positions with a
        single finite sample get 0; an empty axis gives NaN.
    """
    arr = np.asarray(values, dtype=np.float64)
    n = arr.shape[axis]
    if n == 0:
        out = np.full(np.delete(arr.shape, axis), np.nan)
        return float(out) if out.ndim == 0 else out
    with np.errstate(all="ignore"):
        finite = np.sum(np.isfinite(arr), axis=axis)
        centered = arr - np.nanmean(arr, axis=axis, keepdims=True)
        sq = np.nansum(centered ** 2, axis=axis)
        var = np.where(finite > 1, sq / np.maximum(finite - 1, 1), 0.0)
        out = np.sqrt(var) / np.sqrt(n)
    out = np.where(finite == 0, np.nan, out)
    return float(out) if np.ndim(out) == 0 else out


def nanmean_sem(values: np.ndarray, axis: int = 0) -> tuple[np.ndarray | float, np.ndarray | float]:
    """Return ``(nanmean, sem)`` along ``axis``; empty input gives NaN for both."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.shape[axis] == 0:
        return sem(arr, axis=axis), sem(arr, axis=axis)
    with np.errstate(all="ignore"):
        mean = np.nanmean(arr, axis=axis)
    mean = float(mean) if np.ndim(mean) == 0 else mean
    return mean, sem(arr, axis=axis)


def count_finite_contributors(stacked: np.ndarray) -> int:
    """Count rows that have at least one finite value."""
    stacked = np.asarray(stacked, dtype=np.float64)
    if stacked.ndim == 1:
        return int(np.sum(np.isfinite(stacked)))
    return int(np.sum(np.any(np.isfinite(stacked), axis=1)))
