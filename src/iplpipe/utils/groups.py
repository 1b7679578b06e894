"""Experimental group masks over the ROI population.

Groups are keyed by ``(genotype, condition, layer)`` where ``condition``
and ``layer`` may be ``None`` to mean "any".  The 16 named masks used by
the figures are the 4 genotype x condition groups, the 4 genotype x layer
groups and the 8 full genotype x condition x layer groups.

The layer split is strict on both sides of the divider: an ROI whose depth
equals the divider is neither ``On`` nor ``Off``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Iterable, Optional

import numpy as np


class Genotype(IntEnum):
    WT = 0
    KO = 1


class Condition(IntEnum):
    CTRL = 0
    APB = 1


class Layer(str, Enum):
    ON = "On"
    OFF = "Off"


_GENOTYPE_TOKEN = {Genotype.WT: "wt", Genotype.KO: "ko"}
_CONDITION_TOKEN = {Condition.CTRL: "Ctrl", Condition.APB: "Apb"}


@dataclass(frozen=True)
class GroupKey:
    genotype: Genotype
    condition: Optional[Condition] = None
    layer: Optional[Layer] = None

    @property
    def name(self) -> str:
        """Camel-case group name, e.g. ``wtCtrl``, ``koOff``, ``wtOnApb``."""
        parts = [_GENOTYPE_TOKEN[self.genotype]]
        if self.layer is not None:
            parts.append(self.layer.value)
        if self.condition is not None:
            parts.append(_CONDITION_TOKEN[self.condition])
        return "".join(parts)

    @property
    def label(self) -> str:
        """Display label, e.g. ``WT OFF CTRL``."""
        parts = [self.genotype.name]
        if self.layer is not None:
            parts.append(self.layer.value.upper())
        if self.condition is not None:
            parts.append(self.condition.name)
        return " ".join(parts)


BASE_GROUPS: tuple[GroupKey, ...] = tuple(
    GroupKey(g, c) for g in Genotype for c in Condition
)
LAYER_GROUPS: tuple[GroupKey, ...] = tuple(
    GroupKey(g, None, layer) for g in Genotype for layer in Layer
)
# Figure order: genotype rows, OFF before ON, Ctrl before APB
LAYER_CONDITION_GROUPS: tuple[GroupKey, ...] = tuple(
    GroupKey(g, c, layer) for g in Genotype for layer in (Layer.OFF, Layer.ON) for c in Condition
)
ALL_GROUPS: tuple[GroupKey, ...] = BASE_GROUPS + LAYER_GROUPS + LAYER_CONDITION_GROUPS


def layer_mask(depth: np.ndarray, layer: Layer, divider: float = 0.5) -> np.ndarray:
    depth = np.asarray(depth, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        if layer is Layer.ON:
            return depth > divider
        return depth < divider


def group_mask(
    key: GroupKey,
    genotype: np.ndarray,
    condition: np.ndarray,
    depth: Optional[np.ndarray] = None,
    divider: float = 0.5,
) -> np.ndarray:
    """Boolean membership mask for a single group."""
    mask = np.asarray(genotype) == int(key.genotype)
    if key.condition is not None:
        mask &= np.asarray(condition) == int(key.condition)
    if key.layer is not None:
        if depth is None:
            raise ValueError(f"Group {key.name!r} needs per-ROI depth values")
        mask &= layer_mask(depth, key.layer, divider)
    return mask


def classify_groups(
    genotype: np.ndarray,
    condition: np.ndarray,
    depth: Optional[np.ndarray] = None,
    divider: float = 0.5,
    keys: Optional[Iterable[GroupKey]] = None,
) -> Dict[str, np.ndarray]:
    """Return named boolean masks for every group in ``keys``.

    By default all 16 groups are produced when ``depth`` is given and only
    the 4 genotype x condition groups otherwise.
    """
    if keys is None:
        keys = ALL_GROUPS if depth is not None else BASE_GROUPS
    return {key.name: group_mask(key, genotype, condition, depth, divider) for key in keys}


def classify_population(population, divider: float = 0.5) -> Dict[str, np.ndarray]:
    """All 16 group masks for a :class:`~iplpipe.population.RoiPopulation`."""
    return classify_groups(
        population.genotype, population.condition, population.depth, divider=divider
    )


def group_key(name: str) -> GroupKey:
    """Look up a :class:`GroupKey` by its camel-case name."""
    for key in ALL_GROUPS:
        if key.name == name:
            return key
    raise KeyError(f"Unknown group {name!r}")
