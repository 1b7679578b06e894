"""Load the ROI population and report its structure."""

from __future__ import annotations

import logging

from ..config import Settings
from ..population import RoiPopulation, load_population
from ..utils.groups import classify_population

logger = logging.getLogger(__name__)


def main(cfg: Settings) -> RoiPopulation:
    if not cfg.data_path:
        raise SystemExit("data_path is not configured (set it in the config or IPL_DATA_PATH)")
    population = load_population(cfg.data_path)
    population.check_stim_index(cfg.stim_index)

    groups = classify_population(population, cfg.depth_divider)
    for name, mask in groups.items():
        logger.info("  %-10s %5d ROIs", name, int(mask.sum()))
    n_on_divider = int((population.depth == cfg.depth_divider).sum())
    if n_on_divider:
        logger.warning(
            "%d ROI(s) lie exactly on the layer divider %.3f and belong to neither ON nor OFF",
            n_on_divider,
            cfg.depth_divider,
        )
    return population
