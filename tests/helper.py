"""Synthetic ROI populations shared by the test modules."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from iplpipe.population import RoiPopulation  # noqa: E402


def make_fields(
    n_rois: int = 100,
    n_time: int = 50,
    n_repeats: int = 3,
    n_stim: int = 2,
    seed: int = 0,
) -> dict[str, np.ndarray]:
    """Random positional fields in the persisted layout."""
    rng = np.random.default_rng(seed)
    return {
        "id": np.column_stack(
            [
                rng.uniform(0.0, 1.0, n_rois),
                rng.integers(0, 2, n_rois),
                rng.integers(0, 2, n_rois),
            ]
        ).astype(float),
        "resp": rng.standard_normal((n_time, n_repeats, n_stim, n_rois)) + 5.0,
        "repRel": rng.uniform(0.0, 1.0, (n_rois, n_stim)),
        "polIdx": rng.uniform(-1.0, 1.0, (n_rois, n_stim)),
        "f1Pow": rng.uniform(0.0, 0.6, (n_rois, n_stim)),
    }


def make_population(**kwargs) -> RoiPopulation:
    return RoiPopulation.from_arrays(**make_fields(**kwargs))


def four_roi_population() -> RoiPopulation:
    """Four ROIs, two WT shallow and two KO deep, all control."""
    rng = np.random.default_rng(7)
    return RoiPopulation.from_arrays(
        id=np.array(
            [
                [0.1, 0, 0],
                [0.45, 0, 0],
                [0.55, 1, 0],
                [0.9, 1, 0],
            ],
            dtype=float,
        ),
        resp=rng.standard_normal((20, 4, 1, 4)),
        repRel=np.array([[0.9], [0.1], [0.8], [0.2]]),
        polIdx=np.array([[-0.5], [-0.2], [0.3], [0.6]]),
        f1Pow=np.array([[0.1], [0.2], [0.3], [0.4]]),
    )
