"""Per-mode fill pipelines."""

import numpy as np
import pytest

from geometry.mapping import position_of
from monitor.config import Mode, MonitorConfig
from monitor.pipelines import BaselinePipeline, LedPipeline, ModePipeline, PedestalPipeline, build_pipeline
from monitor.readout import CellBatch, ChannelReading, EventSlice, Gain

CID = 9000


def _batch(energies, gain=Gain.HIGH, cid=CID, time=0.0):
    return CellBatch.from_readings([ChannelReading(cid, e, time, gain) for e in energies])


def test_build_pipeline_per_mode():
    assert isinstance(build_pipeline(MonitorConfig()), BaselinePipeline)
    assert isinstance(build_pipeline(MonitorConfig(mode=Mode.PEDESTAL)), PedestalPipeline)
    assert isinstance(build_pipeline(MonitorConfig(mode=Mode.LED)), LedPipeline)



def test_pipeline_must_implement_fill_and_publish():
    class FillOnly(ModePipeline):
        def fill(self, batch):
            pass

    with pytest.raises(TypeError):
        ModePipeline(MonitorConfig())
    with pytest.raises(TypeError):
        FillOnly(MonitorConfig())


def test_baseline_mean_and_occupancy():
    pos = position_of(CID)
    pipe = BaselinePipeline(MonitorConfig())
    for e in (100.0, 150.0, 320.0):
        pipe.fill(_batch([e]))
    assert pipe.cell_mean.values[pos.index()] == pytest.approx(190.0)
    assert pipe.occupancy[pos.index()] == 3
    assert pipe.spectra[pos.module].counts.sum() == 3
    assert pipe.time_vs_energy[pos.module].counts.sum() == 3


def test_baseline_threshold_and_gain_scaling():
    pos = position_of(CID)
    pipe = BaselinePipeline(MonitorConfig())
    pipe.fill(_batch([5.0, 10.0]))
    assert pipe.occupancy[pos.index()] == 0
    assert pipe.cell_mean.values[pos.index()] == 0.0
    assert pipe.below_threshold == 2
    # 2 ADC counts on low gain become 32 on the high-gain scale
    pipe.fill(_batch([2.0], gain=Gain.LOW))
    assert pipe.occupancy[pos.index()] == 1
    assert pipe.cell_mean.values[pos.index()] == pytest.approx(32.0)


def test_invalid_channels_are_skipped():
    pipe = BaselinePipeline(MonitorConfig())
    pipe.fill(_batch([100.0], cid=3))
    assert pipe.skipped == 1
    assert pipe.occupancy.sum() == 0


def test_pedestal_cumulative_over_cycles():
    pos = position_of(CID)
    pipe = PedestalPipeline(MonitorConfig(mode=Mode.PEDESTAL))
    pipe.start_cycle()
    pipe.fill(_batch([10.0, 20.0]))
    pipe.fill(_batch([4.0], gain=Gain.LOW))
    pipe.end_cycle()
    hg = pipe.gains[Gain.HIGH]
    lg = pipe.gains[Gain.LOW]
    assert hg.stats.published[pos.index()] == pytest.approx(15.0)
    assert hg.stats.published_rms[pos.index()] == pytest.approx(5.0)
    assert lg.stats.published[pos.index()] == pytest.approx(4.0)
    pipe.start_cycle()
    pipe.fill(_batch([30.0, 40.0, 50.0]))
    pipe.end_cycle()
    assert hg.stats.count[pos.index()] == 5
    assert hg.stats.published[pos.index()] == pytest.approx(30.0)
    assert hg.stats.published_rms[pos.index()] == pytest.approx(np.std([10, 20, 30, 40, 50]))


def test_pedestal_summaries_and_occupancy_range():
    pipe = PedestalPipeline(MonitorConfig(mode=Mode.PEDESTAL))
    pipe.fill(_batch([40.0, 42.0]))
    pipe.fill(_batch([60.0], cid=CID + 1))
    pipe.end_cycle()
    mod = position_of(CID).module
    hg = pipe.gains[Gain.HIGH]
    assert hg.mean_summary[mod].counts.sum() == 2
    assert hg.rms_summary[mod].counts.sum() == 1
    assert (hg.occupancy_range[mod].minimum, hg.occupancy_range[mod].maximum) == (1.0, 2.0)
    names = {obj.name: obj for obj in pipe.publish()}
    occ = names[f"HGOccupancyM{mod + 1}"]
    assert (occ.minimum, occ.maximum) == (1.0, 2.0)
    assert f"PedLGRMSSum{mod + 1}" in names


def test_led_fills_spectra_from_high_gain_only():
    pos = position_of(CID)
    pipe = LedPipeline(MonitorConfig(mode=Mode.LED))
    pipe.fill(_batch([300.0, 300.0]))
    pipe.fill(_batch([300.0], gain=Gain.LOW))
    assert pipe.peaks.spectrum(CID).sum() == 2
    assert pipe.occupancy[pos.index()] == 3
    pipe.end_cycle()
    names = {obj.name for obj in pipe.publish()}
    assert {"NLedPeaksM1", "CellEmean1", "TimevsE4"} <= names


def test_event_slices_select_readings():
    batch = _batch([100.0, 200.0, 300.0, 400.0])
    np.testing.assert_array_equal(batch.select([EventSlice(0, 1), EventSlice(2, 2)]), [0, 2, 3])
    np.testing.assert_array_equal(batch.select([EventSlice(3, 5)]), [3])
    assert batch.select([]).size == 0
