from __future__ import annotations
import os, yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple
from dotenv import load_dotenv


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_float_tuple(value: Any, default: Sequence[float]) -> Tuple[float, ...]:
    if value is None:
        return tuple(float(v) for v in default)
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",") if item.strip()]
        return tuple(float(item) for item in items)
    if isinstance(value, (int, float)):
        return (float(value),)
    return tuple(float(v) for v in value)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return float(value)


DEFAULT_SUMMARY_EDGES: Tuple[float, ...] = (0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8)
DEFAULT_ENVELOPE_EDGES: Tuple[float, ...] = (0.3, 0.4, 0.5, 0.6, 0.7)


def resolve_output_dir(cfg: Settings) -> Path:
    """Return the output directory, falling back to ``output/`` next to the data."""
    if cfg.output_dir:
        return Path(cfg.output_dir).expanduser().resolve()
    if cfg.data_path:
        return Path(cfg.data_path).expanduser().resolve().parent / "output"
    return Path("output").resolve()


@dataclass
class ReliabilityThresholds:
    """Reliability cut-offs used by the polarity-vs-depth summary only."""
    wt: float = 0.4
    ko: float = 0.4

    def for_genotype(self, genotype: int) -> float:
        return self.wt if int(genotype) == 0 else self.ko


@dataclass
class EnvelopeSettings:
    depth_edges: Tuple[float, ...] = DEFAULT_ENVELOPE_EDGES
    max_rois_per_bin: int = 500
    top_fraction: float = 0.5
    half_edge_gap: float | None = None
    n_jobs: int = 1


@dataclass
class HistogramSettings:
    # (start, stop, step), stop inclusive
    reliability_edges: Tuple[float, float, float] = (-1.0, 1.0, 0.02)
    power_edges: Tuple[float, float, float] = (0.0, 0.6, 0.02)


@dataclass
class PlotSettings:
    dpi: int = 300
    heatmap_zlim: Tuple[float, float] = (-2.0, 4.0)
    formats: Tuple[str, ...] = ("png",)
    save_figures: bool = True


@dataclass
class Settings:
    data_path: str = ""
    output_dir: str = ""
    frame_rate_hz: float = 16.667
    stim_index: int = 0
    depth_divider: float = 0.5
    reliability_threshold: ReliabilityThresholds = field(default_factory=ReliabilityThresholds)
    summary_depth_edges: Tuple[float, ...] = DEFAULT_SUMMARY_EDGES
    envelope: EnvelopeSettings = field(default_factory=EnvelopeSettings)
    histograms: HistogramSettings = field(default_factory=HistogramSettings)
    plot: PlotSettings = field(default_factory=PlotSettings)

def _get(d: Dict[str, Any], key: str, default: Any):
    return d.get(key, default)

def load_settings(config_path: str | Path) -> Settings:
    load_dotenv(dotenv_path=Path(".env"))  # optional
    p = Path(config_path)
    data: Dict[str, Any] = {}
    if p.exists():
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # nested
    rel_cfg = data.get("reliability_threshold", {}) or {}
    env_cfg = data.get("envelope", {}) or {}
    hist_cfg = data.get("histograms", {}) or {}
    plot_cfg = data.get("plot", {}) or {}

    reliability_threshold = ReliabilityThresholds(
        wt=float(os.getenv("WT_RELIABILITY_THRESH", rel_cfg.get("wt", 0.4))),
        ko=float(os.getenv("KO_RELIABILITY_THRESH", rel_cfg.get("ko", 0.4))),
    )

    envelope = EnvelopeSettings(
        depth_edges=_as_float_tuple(env_cfg.get("depth_edges"), DEFAULT_ENVELOPE_EDGES),
        max_rois_per_bin=int(os.getenv("MAX_ROIS_PER_BIN", env_cfg.get("max_rois_per_bin", 500))),
        top_fraction=float(env_cfg.get("top_fraction", 0.5)),
        half_edge_gap=_optional_float(env_cfg.get("half_edge_gap")),
        n_jobs=int(os.getenv("ENVELOPE_N_JOBS", env_cfg.get("n_jobs", 1))),
    )

    histograms = HistogramSettings(
        reliability_edges=tuple(
            float(v) for v in hist_cfg.get("reliability_edges", (-1.0, 1.0, 0.02))
        ),
        power_edges=tuple(float(v) for v in hist_cfg.get("power_edges", (0.0, 0.6, 0.02))),
    )

    formats_cfg = plot_cfg.get("formats", ("png",))
    if isinstance(formats_cfg, str):
        formats_cfg = [item.strip() for item in formats_cfg.split(",") if item.strip()]

    plot = PlotSettings(
        dpi=int(plot_cfg.get("dpi", 300)),
        heatmap_zlim=tuple(float(v) for v in plot_cfg.get("heatmap_zlim", (-2.0, 4.0))),
        formats=tuple(str(v) for v in formats_cfg),
        save_figures=_as_bool(os.getenv("SAVE_FIGURES", plot_cfg.get("save_figures")), True),
    )

    summary_edges_env = os.getenv("SUMMARY_DEPTH_EDGES")
    summary_depth_edges = _as_float_tuple(
        summary_edges_env if summary_edges_env else data.get("summary_depth_edges"),
        DEFAULT_SUMMARY_EDGES,
    )

    return Settings(
        data_path=str(os.getenv("IPL_DATA_PATH", _get(data, "data_path", "")) or ""),
        output_dir=str(os.getenv("IPL_OUTPUT_DIR", _get(data, "output_dir", "")) or ""),
        frame_rate_hz=float(os.getenv("FRAME_RATE_HZ", _get(data, "frame_rate_hz", 16.667))),
        stim_index=int(os.getenv("STIM_INDEX", _get(data, "stim_index", 0))),
        depth_divider=float(os.getenv("DEPTH_DIVIDER", _get(data, "depth_divider", 0.5))),
        reliability_threshold=reliability_threshold,
        summary_depth_edges=summary_depth_edges,
        envelope=envelope,
        histograms=histograms,
        plot=plot,
    )
