"""Cell accumulators and the finalize/resume cycle boundary."""

import numpy as np
import pytest

from aggregation.accumulators import (
    AggregationState,
    Histogram1D,
    Histogram2D,
    IncrementalMeanGrid,
    OccupancyRange,
    RunningMeanGrid,
    VarianceGrid,
    _CycleGrid,
)

SHAPE = (2, 3, 4)


def _idx(*cells):
    return tuple(np.array(axis) for axis in zip(*cells))


def test_finalize_publishes_mean_without_touching_totals():
    grid = RunningMeanGrid(SHAPE)
    grid.add(_idx((0, 1, 2), (0, 1, 2), (1, 0, 0)), np.array([2.0, 4.0, 5.0]))
    before = grid.sum.copy()
    mean = grid.finalize()
    assert grid.state is AggregationState.FINALIZED
    assert mean[0, 1, 2] == pytest.approx(3.0)
    assert mean[1, 0, 0] == pytest.approx(5.0)
    # empty cells publish exactly zero
    assert mean[0, 0, 0] == 0.0
    grid.resume()
    assert grid.state is AggregationState.ACCUMULATING
    np.testing.assert_array_equal(grid.sum, before)
    np.testing.assert_array_equal(grid.count[0, 1, 2], 2.0)


def test_published_mean_is_frozen_until_next_finalize():
    grid = RunningMeanGrid(SHAPE)
    grid.add(_idx((0, 0, 0)), np.array([1.0]))
    grid.finalize()
    grid.resume()
    grid.add(_idx((0, 0, 0)), np.array([3.0]))
    assert grid.published[0, 0, 0] == pytest.approx(1.0)
    assert grid.mean()[0, 0, 0] == pytest.approx(2.0)
    grid.finalize()
    assert grid.published[0, 0, 0] == pytest.approx(2.0)



def test_restart_clears_totals_but_keeps_published_mean():
    grid = RunningMeanGrid(SHAPE)
    grid.add(_idx((0, 0, 0)), np.array([4.0]))
    grid.finalize()
    grid.restart()
    assert grid.state is AggregationState.ACCUMULATING
    assert grid.count[0, 0, 0] == 0
    assert grid.published[0, 0, 0] == pytest.approx(4.0)
    grid.add(_idx((0, 0, 0)), np.array([8.0]))
    assert grid.finalize()[0, 0, 0] == pytest.approx(8.0)

    var = VarianceGrid(SHAPE)
    var.add(_idx((0, 0, 0), (0, 0, 0)), np.array([1.0, 3.0]))
    var.finalize()
    var.restart()
    var.add(_idx((0, 0, 0), (0, 0, 0)), np.array([10.0, 10.0]))
    var.finalize()
    assert var.published[0, 0, 0] == pytest.approx(10.0)
    assert var.published_rms[0, 0, 0] == 0.0


def test_cycle_grid_requires_a_mean_projection():
    class NoMean(_CycleGrid):
        pass

    with pytest.raises(TypeError):
        NoMean(SHAPE)


def test_variance_grid_matches_numpy_across_batches():
    rng = np.random.default_rng(3)
    grid = VarianceGrid(SHAPE)
    values = rng.normal(50.0, 2.0, size=30)
    for chunk in np.array_split(values, 4):
        grid.add(_idx(*[(1, 2, 3)] * chunk.size), chunk)
    assert grid.count[1, 2, 3] == 30
    assert grid.mean()[1, 2, 3] == pytest.approx(values.mean())
    assert grid.rms()[1, 2, 3] == pytest.approx(values.std())
    assert grid.rms()[0, 0, 0] == 0.0


def test_variance_grid_mixed_cells_in_one_batch():
    grid = VarianceGrid(SHAPE)
    grid.add(_idx((0, 0, 0), (0, 0, 1), (0, 0, 0)), np.array([1.0, 10.0, 3.0]))
    grid.finalize()
    np.testing.assert_allclose(grid.published[0, 0, :2], [2.0, 10.0])
    np.testing.assert_allclose(grid.published_rms[0, 0, :2], [1.0, 0.0])


def test_incremental_mean():
    grid = IncrementalMeanGrid(SHAPE)
    for e in (12.0, 20.0, 31.0):
        grid.add(_idx((1, 1, 1)), np.array([e]))
    assert grid.values[1, 1, 1] == pytest.approx(21.0)
    assert grid.occupancy[1, 1, 1] == 3
    grid.add(_idx((1, 1, 1), (1, 1, 1)), np.array([5.0, 7.0]))
    assert grid.values[1, 1, 1] == pytest.approx((12 + 20 + 31 + 5 + 7) / 5)


def test_occupancy_range_ignores_empty_cells():
    rng = OccupancyRange()
    rng.update(np.array([[0.0, 4.0], [2.0, 9.0]]))
    assert (rng.minimum, rng.maximum) == (2.0, 9.0)
    rng.update(np.zeros((2, 2)))
    assert rng.minimum is None and rng.maximum is None


def test_histograms_drop_out_of_range_entries():
    h = Histogram1D(10, 0.0, 100.0)
    h.fill(np.array([-1.0, 0.0, 55.0, 99.9, 100.0]))
    assert h.counts.sum() == 3
    assert h.counts[5] == 1
    assert h.overflow == 2

    h2 = Histogram2D(2, (0.0, 2.0), 2, (0.0, 2.0))
    h2.fill(np.array([0.5, 1.5, 3.0]), np.array([1.5, 0.5, 0.5]))
    np.testing.assert_array_equal(h2.counts, [[0, 1], [1, 0]])
    assert h2.overflow == 1
