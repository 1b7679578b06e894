"""Mean +/- SEM envelopes and the shared display range across them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

import numpy as np

from .nanstats import sem


@dataclass(frozen=True)
class Envelope:
    """Summary of a set of z-scored traces.

    Empty groups keep empty traces and zero for every scalar so that the
    shared range never sees an undefined value.
    """

    mean_trace: np.ndarray = field(default_factory=lambda: np.empty(0))
    sem_trace: np.ndarray = field(default_factory=lambda: np.empty(0))
    env_min: float = 0.0
    env_max: float = 0.0
    env_med: float = 0.0
    range: float = 0.0
    center: float = 0.0
    n_rois: int = 0

    @property
    def is_empty(self) -> bool:
        return self.mean_trace.size == 0

    @property
    def lower(self) -> np.ndarray:
        return self.mean_trace - self.sem_trace

    @property
    def upper(self) -> np.ndarray:
        return self.mean_trace + self.sem_trace

    def ylim(self, global_range: float) -> Tuple[float, float]:
        """Y-limits of width ``global_range`` centred on this envelope."""
        half = global_range / 2.0
        return self.center - half, self.center + half

    def scalars(self) -> dict:
        return {
            "n_rois": self.n_rois,
            "env_min": self.env_min,
            "env_max": self.env_max,
            "env_med": self.env_med,
            "range": self.range,
            "center": self.center,
        }


def trace_envelope(traces: np.ndarray, max_rois: Optional[int] = None) -> Envelope:
    """Reduce an ``(n_rois, time)`` matrix to an :class:`Envelope`.

    When ``max_rois`` is given only the first ``max_rois`` rows are used;
    rows are expected to already be in reliability order.
    """
    traces = np.asarray(traces, dtype=np.float64)
    if traces.size == 0:
        return Envelope()
    if traces.ndim == 1:
        traces = traces[np.newaxis, :]
    if max_rois is not None and traces.shape[0] > max_rois:
        traces = traces[:max_rois]

    mean_trace = traces.mean(axis=0)
    sem_trace = np.asarray(sem(traces, axis=0), dtype=np.float64)
    env_min = float(np.min(mean_trace - sem_trace))
    env_max = float(np.max(mean_trace + sem_trace))
    return Envelope(
        mean_trace=mean_trace,
        sem_trace=sem_trace,
        env_min=env_min,
        env_max=env_max,
        env_med=float(np.median(mean_trace)),
        range=env_max - env_min,
        center=0.5 * (env_max + env_min),
        n_rois=int(traces.shape[0]),
    )


def global_range(envelopes: Iterable[Envelope | float]) -> float:
    """Largest envelope range; 0 for an empty collection."""
    ranges = [e.range if isinstance(e, Envelope) else float(e) for e in envelopes]
    return max(ranges) if ranges else 0.0
