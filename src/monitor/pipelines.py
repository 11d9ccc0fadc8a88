"""Fill pipelines for the three operating modes: physics baseline, pedestal and LED."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple, Type

import numpy as np
from numpy.typing import NDArray

from aggregation.accumulators import (
    Histogram1D,
    Histogram2D,
    IncrementalMeanGrid,
    OccupancyRange,
    VarianceGrid,
)
from aggregation.snapshot import Axis, PublishedObject, histogram_1d, histogram_2d, module_map
from geometry.mapping import GRID_SHAPE, N_MODULES, positions_of
from monitor.config import Mode, MonitorConfig
from monitor.readout import CellBatch, Gain
from spectrum.peak_counter import PeakCounter

logger = logging.getLogger(__name__)

TIME_E_AMP_AXIS = Axis(50, 0.0, 1000.0, "Amp")
TIME_E_TIME_AXIS = Axis(50, -5.0e-7, 5.0e-7, "Time (ns)")
CELL_SPECTRUM_RANGE = (100, 0.0, 1000.0)
PEDESTAL_MEAN_SUMMARY_RANGE = (100, 0.0, 100.0)
PEDESTAL_RMS_SUMMARY_RANGE = (100, 0.0, 10.0)


class ModePipeline(ABC):
    """Common surface of the per-mode pipelines."""

    mode: Mode

    def __init__(self, config: MonitorConfig) -> None:
        self.config = config
        self.skipped = 0

    def _locate(self, batch: CellBatch) -> Tuple[NDArray[np.int_], NDArray[np.int_], NDArray[np.int_], NDArray[np.bool_]]:
        module, row, column, valid = positions_of(batch.channel_ids)
        n_bad = int(np.count_nonzero(~valid))
        if n_bad:
            logger.debug("Skipping %d readings with invalid channel id", n_bad)
            self.skipped += n_bad
        return module, row, column, valid

    @abstractmethod
    def fill(self, batch: CellBatch) -> None:
        """Accumulate one batch of readings."""

    def start_cycle(self) -> None:
        pass

    def end_cycle(self) -> None:
        pass

    @abstractmethod
    def publish(self) -> List[PublishedObject]:
        """Objects to include in the cycle snapshot."""

    def reset(self) -> None:
        self.skipped = 0


class BaselinePipeline(ModePipeline):
    """
    Occupancy, mean amplitude, time-vs-amplitude and amplitude spectrum per module.

    Low-gain amplitudes are brought to the high-gain scale first; readings not
    above the occupancy threshold are ignored.
    """

    mode = Mode.BASELINE

    def __init__(self, config: MonitorConfig) -> None:
        super().__init__(config)
        self.cell_mean = IncrementalMeanGrid(GRID_SHAPE)
        self.time_vs_energy = [
            Histogram2D(
                TIME_E_AMP_AXIS.bins,
                (TIME_E_AMP_AXIS.low, TIME_E_AMP_AXIS.high),
                TIME_E_TIME_AXIS.bins,
                (TIME_E_TIME_AXIS.low, TIME_E_TIME_AXIS.high),
            )
            for _ in range(N_MODULES)
        ]
        self.spectra = [Histogram1D(*CELL_SPECTRUM_RANGE) for _ in range(N_MODULES)]
        self.below_threshold = 0

    @property
    def occupancy(self) -> NDArray[np.float64]:
        return self.cell_mean.occupancy

    def scaled_energies(self, batch: CellBatch) -> NDArray[np.float64]:
        return np.where(batch.high_gain, batch.energies, batch.energies * self.config.gain_ratio)

    def fill(self, batch: CellBatch) -> None:
        energy = self.scaled_energies(batch)
        above = energy > self.config.occupancy_threshold
        self.below_threshold += int(np.count_nonzero(~above))
        module, row, column, valid = self._locate(batch)
        keep = above & valid
        if not np.any(keep):
            return
        module, row, column = module[keep], row[keep], column[keep]
        energy, times = energy[keep], batch.times[keep]
        self.cell_mean.add((module, row, column), energy)
        for mod in np.unique(module):
            sel = module == mod
            self.time_vs_energy[mod].fill(energy[sel], times[sel])
            self.spectra[mod].fill(energy[sel])

    def publish(self) -> List[PublishedObject]:
        out: List[PublishedObject] = []
        for mod in range(N_MODULES):
            m = mod + 1
            out.append(module_map(f"CellOccupancyM{m}", f"Cell occupancy, mod {m}", self.cell_mean.occupancy[mod]))
            out.append(module_map(f"CellEmean{m}", f"Cell mean energy, mod {m}", self.cell_mean.values[mod]))
            out.append(
                histogram_2d(
                    f"TimevsE{m}",
                    f"Cell time vs energy, mod {m}",
                    self.time_vs_energy[mod].counts,
                    TIME_E_AMP_AXIS,
                    TIME_E_TIME_AXIS,
                )
            )
            spec = self.spectra[mod]
            out.append(
                histogram_1d(f"CellSpectrumM{m}", f"Cell spectrum in mod {m}", spec.counts, spec.low, spec.high, "ADC channels")
            )
        return out

    def reset(self) -> None:
        super().reset()
        self.cell_mean.reset()
        for hist in self.time_vs_energy:
            hist.reset()
        for spec in self.spectra:
            spec.reset()
        self.below_threshold = 0


class _GainFamily:
    """Pedestal statistics of one gain branch."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.stats = VarianceGrid(GRID_SHAPE)
        self.occupancy_range = [OccupancyRange() for _ in range(N_MODULES)]
        self.mean_summary = [Histogram1D(*PEDESTAL_MEAN_SUMMARY_RANGE) for _ in range(N_MODULES)]
        self.rms_summary = [Histogram1D(*PEDESTAL_RMS_SUMMARY_RANGE) for _ in range(N_MODULES)]

    def finalize(self) -> None:
        mean = self.stats.finalize()
        rms = self.stats.published_rms
        for mod in range(N_MODULES):
            self.mean_summary[mod].reset()
            self.rms_summary[mod].reset()
            self.mean_summary[mod].fill(mean[mod][mean[mod] > 0])
            self.rms_summary[mod].fill(rms[mod][rms[mod] > 0])
            self.occupancy_range[mod].update(self.stats.count[mod])

    def publish(self) -> List[PublishedObject]:
        lab = self.label
        long_name = "High Gain" if lab == "HG" else "Low Gain"
        out: List[PublishedObject] = []
        for mod in range(N_MODULES):
            m = mod + 1
            rng = self.occupancy_range[mod]
            out.append(
                module_map(f"Ped{lab}mean{m}", f"Pedestal mean {long_name}, mod {m}", self.stats.published[mod], 0.0, 100.0)
            )
            out.append(
                module_map(f"Ped{lab}rms{m}", f"Pedestal RMS {long_name}, mod {m}", self.stats.published_rms[mod], 0.0, 2.0)
            )
            out.append(
                module_map(
                    f"{lab}OccupancyM{m}",
                    f"{long_name} occupancy, mod {m}",
                    self.stats.count[mod],
                    rng.minimum,
                    rng.maximum,
                )
            )
            mean_sum = self.mean_summary[mod]
            rms_sum = self.rms_summary[mod]
            out.append(
                histogram_1d(
                    f"Ped{lab}MeanSum{m}",
                    f"Pedestal {lab} mean summary, mod {m}",
                    mean_sum.counts,
                    mean_sum.low,
                    mean_sum.high,
                    "ADC channels",
                )
            )
            out.append(
                histogram_1d(
                    f"Ped{lab}RMSSum{m}",
                    f"Pedestal {lab} RMS summary, mod {m}",
                    rms_sum.counts,
                    rms_sum.low,
                    rms_sum.high,
                    "ADC channels",
                )
            )
        return out

    def reset(self) -> None:
        self.stats.reset()
        for items in (self.occupancy_range, self.mean_summary, self.rms_summary):
            for item in items:
                item.reset()


class PedestalPipeline(ModePipeline):
    """Mean, RMS and occupancy of pedestal amplitudes per gain, accumulated over the activity."""

    mode = Mode.PEDESTAL

    def __init__(self, config: MonitorConfig) -> None:
        super().__init__(config)
        self.gains: Dict[Gain, _GainFamily] = {Gain.HIGH: _GainFamily("HG"), Gain.LOW: _GainFamily("LG")}

    def fill(self, batch: CellBatch) -> None:
        module, row, column, valid = self._locate(batch)
        for gain, family in self.gains.items():
            sel = valid & (batch.high_gain if gain is Gain.HIGH else ~batch.high_gain)
            family.stats.add((module[sel], row[sel], column[sel]), batch.energies[sel])

    def start_cycle(self) -> None:
        for family in self.gains.values():
            family.stats.resume()

    def end_cycle(self) -> None:
        for family in self.gains.values():
            family.finalize()

    def publish(self) -> List[PublishedObject]:
        out: List[PublishedObject] = []
        for family in self.gains.values():
            out.extend(family.publish())
        return out

    def reset(self) -> None:
        super().reset()
        for family in self.gains.values():
            family.reset()


class LedPipeline(BaselinePipeline):
    """Baseline maps plus per-channel LED spectra and their peak counts."""

    mode = Mode.LED

    def __init__(self, config: MonitorConfig) -> None:
        super().__init__(config)
        self.peaks = PeakCounter(config.peak_search)

    def fill(self, batch: CellBatch) -> None:
        super().fill(batch)
        self.peaks.fill(batch.channel_ids[batch.high_gain], batch.energies[batch.high_gain])

    def end_cycle(self) -> None:
        self.peaks.count_peaks()

    def publish(self) -> List[PublishedObject]:
        out = super().publish()
        for mod in range(N_MODULES):
            m = mod + 1
            out.append(module_map(f"NLedPeaksM{m}", f"Number of LED peaks, mod {m}", self.peaks.peak_counts[mod]))
        return out

    def reset(self) -> None:
        super().reset()
        self.peaks.reset()


PIPELINES: Dict[Mode, Type[ModePipeline]] = {
    Mode.BASELINE: BaselinePipeline,
    Mode.PEDESTAL: PedestalPipeline,
    Mode.LED: LedPipeline,
}


def build_pipeline(config: MonitorConfig) -> ModePipeline:
    """Instantiate the pipeline for the configured mode."""
    return PIPELINES[config.mode](config)
