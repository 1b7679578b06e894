"""Tests for the depth-stratified envelope step."""

from __future__ import annotations

import json

import numpy as np
import matplotlib.pyplot as plt
import pandas as pd
import pytest

from helper import four_roi_population, make_population

from iplpipe.config import EnvelopeSettings, PlotSettings, Settings
from iplpipe.population import save_population_npz
from iplpipe.steps import depth_envelopes
from iplpipe.steps.depth_envelopes import (
    EnvelopeParams,
    compute_depth_envelopes,
    plot_envelope_grid,
    plot_metric_histograms,
)
from iplpipe.utils.groups import BASE_GROUPS
from iplpipe.utils.plotting import range_edges
from iplpipe.utils.zscore import population_zscores


@pytest.fixture
def scenario():
    pop = four_roi_population()
    result = compute_depth_envelopes(pop, EnvelopeParams(depth_edges=(0.5,)))
    return pop, result


class TestFourRoiScenario:
    def test_bins_and_selection(self, scenario):
        _, result = scenario
        assert result.n_bins == 2
        np.testing.assert_allclose(result.centers, [0.45, 0.55])

        wt_shallow = result.cell("wtCtrl", 0)
        np.testing.assert_array_equal(wt_shallow.roi_indices, [0, 1])
        np.testing.assert_array_equal(wt_shallow.selected, [0])

        ko_deep = result.cell("koCtrl", 1)
        np.testing.assert_array_equal(ko_deep.roi_indices, [2, 3])
        np.testing.assert_array_equal(ko_deep.selected, [2])

    def test_single_roi_envelope_is_its_trace(self, scenario):
        pop, result = scenario
        z = population_zscores(pop)
        env = result.cell("wtCtrl", 0).envelope
        np.testing.assert_allclose(env.mean_trace, z[0])
        np.testing.assert_array_equal(env.sem_trace, np.zeros(pop.n_timepoints))

    def test_empty_cells(self, scenario):
        _, result = scenario
        for name, bin_index in [("wtCtrl", 1), ("koCtrl", 0), ("wtApb", 0), ("koApb", 1)]:
            cell = result.cell(name, bin_index)
            assert cell.n_rois == 0
            assert cell.envelope.is_empty
            assert cell.envelope.range == 0.0

    def test_global_range_is_largest_cell_range(self, scenario):
        _, result = scenario
        ranges = [cell.envelope.range for cell in result.cells.values()]
        assert result.global_range == pytest.approx(max(ranges))
        assert result.global_range > 0


def test_every_roi_lands_in_one_cell():
    pop = make_population(n_rois=300, seed=4)
    result = compute_depth_envelopes(pop, EnvelopeParams(depth_edges=(0.2, 0.4, 0.6, 0.8)))
    assert len(result.cells) == len(BASE_GROUPS) * 5
    total = sum(cell.n_rois for cell in result.cells.values())
    assert total == pop.n_rois
    for cell in result.cells.values():
        assert cell.selected.size == int(np.floor(cell.n_rois / 2 + 0.5))
        assert set(cell.selected) <= set(cell.roi_indices)
        assert cell.envelope.range <= result.global_range


def test_max_rois_per_bin_caps_envelope():
    pop = make_population(n_rois=120, seed=9)
    params = EnvelopeParams(depth_edges=(0.5,), max_rois_per_bin=3)
    result = compute_depth_envelopes(pop, params)
    for cell in result.cells.values():
        assert cell.envelope.n_rois == min(3, cell.selected.size)
        assert cell.traces.shape[0] == cell.selected.size


def test_parallel_matches_sequential():
    pop = make_population(n_rois=80, seed=1)
    params = EnvelopeParams(depth_edges=(0.3, 0.5, 0.7))
    serial = compute_depth_envelopes(pop, params, n_jobs=1)
    parallel = compute_depth_envelopes(pop, params, n_jobs=2)
    assert serial.global_range == pytest.approx(parallel.global_range)
    for key, cell in serial.cells.items():
        np.testing.assert_array_equal(cell.selected, parallel.cells[key].selected)
        assert cell.envelope.center == pytest.approx(parallel.cells[key].envelope.center)


def test_summary_frame(scenario):
    _, result = scenario
    frame = result.summary_frame()
    assert len(frame) == len(BASE_GROUPS) * 2
    assert {"group", "bin", "n_selected", "range", "center"} <= set(frame.columns)


def test_plots(scenario):
    _, result = scenario
    fig = plot_envelope_grid(result)
    assert len(fig.axes) == result.n_bins * len(result.groups)
    hist = plot_metric_histograms(result, "power", range_edges((0.0, 0.6, 0.02)))
    assert len(hist.axes) == result.n_bins * len(result.groups)
    with pytest.raises(ValueError):
        plot_metric_histograms(result, "polarity", range_edges((0.0, 1.0, 0.1)))
    plt.close("all")


def test_main_writes_outputs(tmp_path):
    data = save_population_npz(make_population(n_rois=60, n_stim=1, seed=2), tmp_path / "rois.npz")
    cfg = Settings(
        data_path=str(data),
        output_dir=str(tmp_path / "out"),
        envelope=EnvelopeSettings(depth_edges=(0.4, 0.6)),
        plot=PlotSettings(dpi=50),
    )
    result = depth_envelopes.main(cfg)

    out_dir = tmp_path / "out" / "depth_envelopes"
    summary = pd.read_csv(out_dir / "envelope_summary.csv")
    assert len(summary) == len(BASE_GROUPS) * 3
    with open(out_dir / "envelope_summary.json", encoding="utf-8") as fh:
        info = json.load(fh)
    assert info["global_range"] == pytest.approx(result.global_range)
    assert set(info["cells"]) == {key.name for key in BASE_GROUPS}
    for stem in ("envelopes_by_depth", "reliability_histograms", "power_histograms"):
        assert (out_dir / f"{stem}.png").exists()
