"""Per-ROI z-scoring of repeat-averaged response traces."""

from __future__ import annotations

import numpy as np

from ..errors import ParameterError


def zscore_traces(response: np.ndarray) -> np.ndarray:
    """Z-score a ``(time, repeats, n_rois)`` tensor into an ``(n_rois, time)`` matrix.

    Each ROI is normalised by the mean and sample standard deviation of all
    its time points and repeats pooled together; the trace being scaled is
    the repeat average at each time point.  Non-finite results (zero
    variance ROIs) are set to 0.
    """
    resp = np.asarray(response, dtype=np.float64)
    if resp.ndim != 3:
        raise ParameterError(
            f"response must be 3-D (time, repeats, n_rois), got shape {resp.shape}"
        )
    n_time, n_rep, n_rois = resp.shape
    pooled = resp.reshape(n_time * n_rep, n_rois)
    with np.errstate(all="ignore"):
        overall_mean = pooled.mean(axis=0)
        overall_std = pooled.std(axis=0, ddof=1)
        trace = resp.mean(axis=1)  # (time, n_rois)
        z = ((trace - overall_mean) / overall_std).T
    z[~np.isfinite(z)] = 0.0
    return z


def compute_zscores(response: np.ndarray, stim_index: int = 0) -> np.ndarray:
    """Z-scored ``(n_rois, time)`` matrix for one stimulus size of a 4-D tensor."""
    resp = np.asarray(response)
    if resp.ndim != 4:
        raise ParameterError(
            f"response must be 4-D (time, repeats, stim_size, n_rois), got shape {resp.shape}"
        )
    n_stim = resp.shape[2]
    if not 0 <= int(stim_index) < n_stim:
        raise ParameterError(f"stim_index must be between 0 and {n_stim - 1}, got {stim_index}")
    return zscore_traces(resp[:, :, int(stim_index), :])


def population_zscores(population, stim_index: int = 0) -> np.ndarray:
    return compute_zscores(population.response, population.check_stim_index(stim_index))
