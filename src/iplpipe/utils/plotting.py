"""Matplotlib helpers shared by the figure-producing steps."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from matplotlib.colors import LinearSegmentedColormap  # noqa: E402

from .envelope import Envelope  # noqa: E402

logger = logging.getLogger(__name__)

COLOR_WT = (0.0, 0.0, 0.0)
COLOR_KO = (0.0, 180 / 255, 0.0)
COLOR_APB = (0.5, 0.5, 0.5)
COLOR_KO_APB = (0.0, 0.5, 0.0)

GROUP_COLORS = {
    "wtCtrl": COLOR_WT,
    "wtApb": COLOR_APB,
    "koCtrl": COLOR_KO,
    "koApb": COLOR_KO_APB,
}


def genotype_color(genotype: int) -> tuple[float, float, float]:
    return COLOR_WT if int(genotype) == 0 else COLOR_KO


def white_to_color_cmap(color: Sequence[float], name: str = "white_to_color", steps: int = 256):
    """Linear colormap running from white to ``color``."""
    return LinearSegmentedColormap.from_list(name, [(1.0, 1.0, 1.0), tuple(color)], N=steps)


def create_named_figure(name: str, num: Optional[int] = None, **kwargs) -> plt.Figure:
    """Create (or reuse and clear) a white figure carrying ``name`` as its label."""
    fig = plt.figure(num=num if num is not None else name, facecolor="w", clear=True, **kwargs)
    fig.set_label(name)
    return fig


def shade_color(color: Sequence[float]) -> tuple[float, ...]:
    """Fill colour for the SEM band: zero channels become 0.75; pure black becomes grey."""
    rgb = np.asarray(color, dtype=np.float64)
    if np.all(rgb != 0):
        return (0.75, 0.75, 0.75)
    shade = rgb.copy()
    shade[rgb == 0] = 0.75
    return tuple(shade.tolist())


def shade_plot(ax, x, y, e, color: Sequence[float] = COLOR_WT, **line_kwargs):
    """Plot ``y`` with a shaded ``y +/- e`` band, dropping NaN samples."""
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    e = np.asarray(e, dtype=np.float64).ravel()
    keep = np.isfinite(x) & np.isfinite(y) & np.isfinite(e)
    x, y, e = x[keep], y[keep], e[keep]
    ax.fill_between(x, y - e, y + e, color=shade_color(color), linewidth=0)
    (line,) = ax.plot(x, y, color=tuple(color), **line_kwargs)
    return line


def plot_envelope(ax, env: Envelope, x: Optional[np.ndarray] = None, color=COLOR_WT) -> None:
    """Shade plot of an envelope; empty envelopes draw nothing."""
    if env.is_empty:
        return
    if x is None:
        x = np.arange(1, env.mean_trace.size + 1)
    shade_plot(ax, x, env.mean_trace, env.sem_trace, color)
    ax.set_xlim(x[0], x[-1])


def set_ylim_using_range(ax, env: Envelope, global_range: float) -> None:
    if env.is_empty or global_range <= 0:
        return
    ax.set_ylim(*env.ylim(global_range))


def time_axis(n_timepoints: int, frame_rate_hz: float) -> np.ndarray:
    return np.arange(n_timepoints) / float(frame_rate_hz)


def range_edges(bounds: Sequence[float]) -> np.ndarray:
    """Histogram edges from ``(start, stop, step)`` with ``stop`` included."""
    start, stop, step = (float(v) for v in bounds)
    n = int(round((stop - start) / step))
    return start + step * np.arange(n + 1)


def save_figure(
    fig: plt.Figure, base_path: Path, *, dpi: int = 300, formats: Iterable[str] = ("png",)
) -> list[Path]:
    base_path.parent.mkdir(parents=True, exist_ok=True)
    written = []
    for fmt in formats:
        out = base_path.with_suffix(f".{fmt.lstrip('.')}")
        fig.savefig(out, dpi=dpi, bbox_inches="tight")
        logger.info("Saved %s", out)
        written.append(out)
    plt.close(fig)
    return written
