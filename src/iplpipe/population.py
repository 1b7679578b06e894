"""ROI population record type, persisted-storage loading and validation.

The persisted layout mirrors the acquisition export: a struct ``roi`` with

* ``id``     -- ``(N, 3)`` columns ``[depth, genotype, condition]``
* ``resp``   -- ``(time, repeats, stim_size, N)`` response tensor
* ``repRel`` -- ``(N, S)`` repeat reliability
* ``polIdx`` -- ``(N, S)`` polarity index
* ``f1Pow``  -- ``(N, S)`` fundamental power

Positional columns are only read here; everything downstream works with
the named fields of :class:`RoiPopulation`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import pandas as pd
from scipy.io import loadmat

from .errors import ParameterError, RoiValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "resp", "repRel", "polIdx", "f1Pow")
PER_STIM_FIELDS = ("repRel", "polIdx", "f1Pow")

GENOTYPE_LABELS = {0: "WT", 1: "KO"}
CONDITION_LABELS = {0: "Ctrl", 1: "APB"}


def _readonly(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class RoiPopulation:
    """Immutable snapshot of every ROI in an analysis run."""

    depth: np.ndarray
    genotype: np.ndarray
    condition: np.ndarray
    response: np.ndarray
    reliability: np.ndarray
    polarity: np.ndarray
    power: np.ndarray

    @classmethod
    def from_arrays(
        cls,
        id: np.ndarray,
        resp: np.ndarray,
        repRel: np.ndarray,
        polIdx: np.ndarray,
        f1Pow: np.ndarray,
    ) -> "RoiPopulation":
        """Build a population from the persisted positional layout.

        The arrays are validated first, so a malformed input never yields a
        half-built population.
        """
        validate_fields(
            {"id": id, "resp": resp, "repRel": repRel, "polIdx": polIdx, "f1Pow": f1Pow}
        )
        id_arr = np.asarray(id, dtype=np.float64)
        shape = (id_arr.shape[0], np.shape(resp)[2])
        repRel, polIdx, f1Pow = (
            np.asarray(arr, dtype=np.float64).reshape(shape)
            for arr in (repRel, polIdx, f1Pow)
        )
        return cls(
            depth=_readonly(id_arr[:, 0]),
            genotype=_readonly(id_arr[:, 1].astype(np.int8)),
            condition=_readonly(id_arr[:, 2].astype(np.int8)),
            response=_readonly(np.asarray(resp, dtype=np.float64)),
            reliability=_readonly(np.asarray(repRel, dtype=np.float64)),
            polarity=_readonly(np.asarray(polIdx, dtype=np.float64)),
            power=_readonly(np.asarray(f1Pow, dtype=np.float64)),
        )

    @property
    def n_rois(self) -> int:
        return int(self.depth.shape[0])

    @property
    def n_timepoints(self) -> int:
        return int(self.response.shape[0])

    @property
    def n_repeats(self) -> int:
        return int(self.response.shape[1])

    @property
    def n_stim_sizes(self) -> int:
        return int(self.response.shape[2])

    def check_stim_index(self, stim_index: int) -> int:
        if not 0 <= int(stim_index) < self.n_stim_sizes:
            raise ParameterError(
                f"stim_index must be between 0 and {self.n_stim_sizes - 1}, got {stim_index}"
            )
        return int(stim_index)

    def to_frame(self, stim_index: int = 0) -> pd.DataFrame:
        """Return one row per ROI with named metadata and per-stimulus metrics."""
        stim_index = self.check_stim_index(stim_index)
        return pd.DataFrame(
            {
                "roi": np.arange(self.n_rois),
                "depth": self.depth,
                "genotype": [GENOTYPE_LABELS[int(g)] for g in self.genotype],
                "condition": [CONDITION_LABELS[int(c)] for c in self.condition],
                "reliability": self.reliability[:, stim_index],
                "polarity": self.polarity[:, stim_index],
                "power": self.power[:, stim_index],
            }
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_fields(fields: Mapping[str, Any]) -> None:
    """Raise :class:`RoiValidationError` on the first structural problem.

    Depths outside ``[0, 1]`` and NaN metadata are only logged.
    """
    for name in REQUIRED_FIELDS:
        if name not in fields or fields[name] is None:
            raise RoiValidationError(f"Missing required field: {name}")

    roi_id = np.asarray(fields["id"], dtype=np.float64)
    if roi_id.ndim != 2 or roi_id.shape[1] != 3:
        raise RoiValidationError(
            "Field 'id' must have shape (n_rois, 3) [depth, genotype, condition], "
            f"got {roi_id.shape}"
        )
    n_rois = roi_id.shape[0]

    resp = np.asarray(fields["resp"])
    if resp.ndim != 4:
        raise RoiValidationError(
            "Field 'resp' must be 4-D (time, repeats, stim_size, n_rois), "
            f"got {resp.ndim}-D with shape {resp.shape}"
        )
    if resp.shape[3] != n_rois:
        raise RoiValidationError(
            f"Field 'resp' ROI axis has length {resp.shape[3]}, expected {n_rois} "
            "(rows of 'id')"
        )
    n_stim = resp.shape[2]

    for name in PER_STIM_FIELDS:
        arr = np.asarray(fields[name])
        if arr.ndim == 1 and n_stim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2 or arr.shape != (n_rois, n_stim):
            raise RoiValidationError(
                f"Field '{name}' must have shape ({n_rois}, {n_stim}), got {arr.shape}"
            )

    depths, genotypes, conditions = roi_id[:, 0], roi_id[:, 1], roi_id[:, 2]

    bad_genotype = ~np.isin(genotypes, (0, 1))
    if bad_genotype.any():
        raise RoiValidationError(
            f"Genotype values must be 0 (WT) or 1 (KO); {int(bad_genotype.sum())} ROI(s) "
            f"have other values, e.g. {genotypes[bad_genotype][0]!r}"
        )
    bad_condition = ~np.isin(conditions, (0, 1))
    if bad_condition.any():
        raise RoiValidationError(
            f"Condition values must be 0 (Ctrl) or 1 (APB); {int(bad_condition.sum())} ROI(s) "
            f"have other values, e.g. {conditions[bad_condition][0]!r}"
        )

    with np.errstate(invalid="ignore"):
        out_of_range = (depths < 0) | (depths > 1)
    if out_of_range.any():
        logger.warning(
            "%d ROI depth(s) lie outside the expected range [0, 1]", int(out_of_range.sum())
        )
    if np.isnan(roi_id).any():
        logger.warning("Field 'id' contains %d NaN value(s)", int(np.isnan(roi_id).sum()))

    logger.info(
        "ROI structure validation passed: %d ROIs, %d time points, %d repeats, "
        "%d stimulus sizes",
        n_rois,
        resp.shape[0],
        resp.shape[1],
        n_stim,
    )
    logger.info(
        "  WT ROIs: %d, KO ROIs: %d | Ctrl ROIs: %d, APB ROIs: %d",
        int(np.sum(genotypes == 0)),
        int(np.sum(genotypes == 1)),
        int(np.sum(conditions == 0)),
        int(np.sum(conditions == 1)),
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _fields_from_mat(path: Path) -> dict[str, np.ndarray]:
    mat = loadmat(str(path))
    if "roi" in mat:
        roi = mat["roi"]
        if roi.dtype.names is None:
            raise RoiValidationError(f"Variable 'roi' in {path.name} is not a struct")
        record = roi[0, 0]
        fields = {name: np.asarray(record[name]) for name in roi.dtype.names}
    else:
        fields = {k: np.asarray(v) for k, v in mat.items() if not k.startswith("__")}
    # MATLAB drops trailing singleton dimensions, so a single-ROI export
    # arrives as (time, repeats, stim_size).
    resp = fields.get("resp")
    if resp is not None and resp.ndim == 3 and "id" in fields:
        if np.asarray(fields["id"]).reshape(-1, 3).shape[0] == 1:
            fields["resp"] = resp[..., np.newaxis]
    return fields


def _fields_from_npz(path: Path) -> dict[str, np.ndarray]:
    with np.load(path, allow_pickle=False) as archive:
        return {name: np.asarray(archive[name]) for name in archive.files}


def load_population(path: str | Path) -> RoiPopulation:
    """Load and validate a ROI population from ``.mat`` or ``.npz`` storage."""
    if not str(path):
        raise ParameterError("No ROI data path configured (data_path / IPL_DATA_PATH)")
    p = Path(path).expanduser()
    if not p.exists():
        raise FileNotFoundError(f"ROI data file not found: {p}")

    suffix = p.suffix.lower()
    if suffix == ".mat":
        fields = _fields_from_mat(p)
    elif suffix == ".npz":
        fields = _fields_from_npz(p)
    else:
        raise ParameterError(f"Unsupported ROI data format {suffix!r}; expected .mat or .npz")

    logger.info("Loaded ROI fields %s from %s", sorted(fields), p)
    for name in PER_STIM_FIELDS:
        arr = fields.get(name)
        if arr is not None and arr.ndim == 1:
            fields[name] = arr.reshape(-1, 1)

    return RoiPopulation.from_arrays(**{name: fields.get(name) for name in REQUIRED_FIELDS})


def save_population_npz(population: RoiPopulation, path: str | Path) -> Path:
    """Write ``population`` back to the positional ``.npz`` layout."""
    p = Path(path)
    roi_id = np.column_stack([population.depth, population.genotype, population.condition])
    np.savez(
        p,
        id=roi_id,
        resp=population.response,
        repRel=population.reliability,
        polIdx=population.polarity,
        f1Pow=population.power,
    )
    return p
