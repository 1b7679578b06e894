from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from iplpipe.utils.envelope import Envelope, global_range, trace_envelope  # noqa: E402
from iplpipe.utils.nanstats import count_finite_contributors, nanmean_sem, sem  # noqa: E402


class TestNanStats:
    def test_sem_uses_sample_std(self):
        values = np.array([[1.0, 2.0], [3.0, 6.0], [5.0, 10.0]])
        expected = np.std(values, axis=0, ddof=1) / np.sqrt(3)
        np.testing.assert_allclose(sem(values, axis=0), expected)

    def test_single_sample_sem_is_zero(self):
        assert sem(np.array([4.2])) == 0.0
        mean, err = nanmean_sem(np.array([[1.0, 2.0]]), axis=0)
        np.testing.assert_array_equal(mean, [1.0, 2.0])
        np.testing.assert_array_equal(err, [0.0, 0.0])

    def test_empty_is_nan(self):
        mean, err = nanmean_sem(np.array([]))
        assert np.isnan(mean) and np.isnan(err)

    def test_count_finite_contributors(self):
        stacked = np.array([[np.nan, np.nan], [1.0, np.nan], [2.0, 3.0]])
        assert count_finite_contributors(stacked) == 2


class TestTraceEnvelope:
    def test_statistics(self):
        traces = np.array([[0.0, 1.0, 2.0], [2.0, 3.0, 4.0]])
        env = trace_envelope(traces)
        np.testing.assert_allclose(env.mean_trace, [1.0, 2.0, 3.0])
        np.testing.assert_allclose(env.sem_trace, np.full(3, 1.0))
        assert env.env_min == pytest.approx(0.0)
        assert env.env_max == pytest.approx(4.0)
        assert env.env_med == pytest.approx(2.0)
        assert env.range == pytest.approx(4.0)
        assert env.center == pytest.approx(2.0)
        assert env.n_rois == 2

    def test_single_roi(self):
        trace = np.array([1.0, -1.0, 0.5])
        env = trace_envelope(trace[np.newaxis, :])
        np.testing.assert_array_equal(env.mean_trace, trace)
        np.testing.assert_array_equal(env.sem_trace, np.zeros(3))
        assert env.range == pytest.approx(2.0)
        assert env.center == pytest.approx(0.0)

    def test_empty_group(self):
        env = trace_envelope(np.empty((0, 10)))
        assert env.is_empty
        assert env.range == 0.0 and env.center == 0.0 and env.n_rois == 0

    def test_max_rois_truncates_rows(self):
        traces = np.vstack([np.zeros(4), np.ones(4), np.full(4, 100.0)])
        env = trace_envelope(traces, max_rois=2)
        assert env.n_rois == 2
        np.testing.assert_allclose(env.mean_trace, np.full(4, 0.5))

    def test_ylim_is_centred(self):
        env = trace_envelope(np.array([[0.0, 1.0], [2.0, 3.0]]))
        low, high = env.ylim(10.0)
        assert high - low == pytest.approx(10.0)
        assert (low + high) / 2 == pytest.approx(env.center)


def test_global_range_is_largest():
    envs = [
        trace_envelope(np.array([[0.0, 1.0]])),
        trace_envelope(np.array([[0.0, 5.0]])),
        Envelope(),
    ]
    assert global_range(envs) == pytest.approx(5.0)
    for env in envs:
        assert env.range <= global_range(envs)
    assert global_range([]) == 0.0
