"""Fit-quality stream decoding and per-cell aggregation."""

import numpy as np
import pytest

from aggregation.quality import QualityMetricAggregator, decode_fit_quality
from geometry.mapping import position_of

CID = 5000


def test_decode_masks_gain_flag_and_scales_score():
    samples = decode_fit_quality([CID | (1 << 14), 10, CID, 7])
    np.testing.assert_array_equal(samples.addresses, [CID, CID])
    np.testing.assert_allclose(samples.scores, [2.0, 1.4])


def test_odd_length_stream_drops_trailing_value():
    samples = decode_fit_quality([CID, 10, CID])
    assert samples.addresses.size == 1
    assert samples.scores[0] == pytest.approx(2.0)


def test_aggregator_mean_and_norm():
    pos = position_of(CID)
    agg = QualityMetricAggregator()
    agg.start_cycle()
    assert agg.fill([CID, 10, CID | (1 << 14), 20, 3, 50]) == 2
    assert agg.skipped == 1
    agg.end_cycle()
    assert agg.grid.published[pos.index()] == pytest.approx(3.0)
    assert agg.norm[pos.index()] == 2
    objs = {obj.name: obj for obj in agg.publish()}
    assert objs[f"Chi2M{pos.module + 1}"].values[pos.row, pos.column] == pytest.approx(3.0)
    assert "Chi2NormM1" not in objs


def test_per_cycle_aggregator_restarts_each_cycle():
    pos = position_of(CID)
    agg = QualityMetricAggregator()
    agg.start_cycle()
    agg.fill([CID, 10])
    agg.end_cycle()
    agg.start_cycle()
    # last finalized map stays readable until the next end of cycle
    assert agg.grid.published[pos.index()] == pytest.approx(2.0)
    agg.fill([CID, 30])
    agg.end_cycle()
    assert agg.grid.published[pos.index()] == pytest.approx(6.0)
    assert agg.norm[pos.index()] == 1


def test_cumulative_aggregator_continues_across_cycles():
    pos = position_of(CID)
    agg = QualityMetricAggregator(cumulative=True)
    agg.start_cycle()
    agg.fill([CID, 10])
    agg.end_cycle()
    agg.start_cycle()
    agg.fill([CID, 20])
    agg.end_cycle()
    assert agg.grid.published[pos.index()] == pytest.approx(3.0)
    assert agg.norm[pos.index()] == 2
