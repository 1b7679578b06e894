from __future__ import annotations

import argparse
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from .config import Settings, load_settings
from .steps import depth_envelopes, ipl_summary, validate

LOGGER = logging.getLogger("iplpipe")


@dataclass(frozen=True)
class Step:
    """Executable unit within the pipeline."""

    name: str
    runner: Callable[[Settings], object]
    description: str


# Validation runs first so structural problems abort before any figure is
# produced; the two analyses are independent of each other.
ORDERED_STEPS: tuple[Step, ...] = (
    Step("validate", validate.main, "Load the ROI population and check its structure"),
    Step("ipl_summary", ipl_summary.main, "Polarity, heatmaps, shade plots, reliability/power vs depth"),
    Step("depth_envelopes", depth_envelopes.main, "Mean +/- SEM envelopes per depth bin with a shared range"),
)

STEP_REGISTRY = {step.name: step for step in ORDERED_STEPS}


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    LOGGER.addHandler(handler)
    LOGGER.setLevel(logging.DEBUG if verbose else logging.INFO)
    LOGGER.propagate = False


def run_steps(step_names: Iterable[str], config_path: str | Path) -> None:
    cfg = load_settings(config_path)
    for name in step_names:
        step = STEP_REGISTRY[name]
        LOGGER.info("=== %s ===", step.name)
        step.runner(cfg)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="iGluSnFR IPL analysis pipeline")
    parser.add_argument("--config", default="config/config.yaml", help="Path to pipeline configuration")
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    parser.add_argument(
        "steps",
        nargs="*",
        metavar="STEP",
        help="Subset of steps to run. Use 'list' to display available steps.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if not args.steps or args.steps == ["all"]:
        run_steps((step.name for step in ORDERED_STEPS), args.config)
        return

    if args.steps == ["list"]:
        for step in ORDERED_STEPS:
            print(f"{step.name:>20}  - {step.description}")
        return

    unknown = [name for name in args.steps if name not in STEP_REGISTRY]
    if unknown:
        raise SystemExit(f"Unknown step(s): {', '.join(unknown)}")

    run_steps(args.steps, args.config)


if __name__ == "__main__":
    main()
