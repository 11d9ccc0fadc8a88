"""Per-channel LED amplitude spectra and the number of peaks found in each."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from geometry.mapping import FIRST_CHANNEL_ID, GRID_SHAPE, MAX_CHANNEL_ID, positions_of, valid_channel_ids
from spectrum.peak_detection import detect_peaks
from spectrum.smoothing import gaussian_smooth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeakSearchConfig:
    """Spectrum binning and peak-search parameters."""

    bins: int = 487
    low: float = 50.0
    high: float = 1024.0
    max_peaks: int = 20
    sigma_bins: float = 2.0
    threshold: float = 0.1
    # channels smoothed together in one call
    chunk: int = 1024

    @property
    def bin_width(self) -> float:
        return (self.high - self.low) / self.bins


class PeakCounter:
    """
    Holds one amplitude spectrum per channel for a whole activity.

    Spectra only grow between resets; ``count_peaks`` recomputes the per-channel
    peak counts from the current spectra each time it is called.
    """

    def __init__(self, config: PeakSearchConfig | None = None) -> None:
        self.config = config or PeakSearchConfig()
        self.n_channels = MAX_CHANNEL_ID - FIRST_CHANNEL_ID + 1
        self.spectra: NDArray[np.int64] = np.zeros((self.n_channels, self.config.bins), dtype=np.int64)
        self.peak_counts: NDArray[np.float64] = np.zeros(GRID_SHAPE, dtype=float)
        module, row, column, _ = positions_of(valid_channel_ids())
        self._index = (module, row, column)

    def fill(self, channel_ids: NDArray[np.int_], energies: NDArray[np.float64]) -> int:
        """Add amplitudes to their channel spectra; ids or amplitudes out of range are dropped."""
        cfg = self.config
        ids = np.asarray(channel_ids, dtype=np.int64).reshape(-1)
        amps = np.asarray(energies, dtype=float).reshape(-1)
        ok = (ids >= FIRST_CHANNEL_ID) & (ids <= MAX_CHANNEL_ID) & (amps >= cfg.low) & (amps < cfg.high)
        if not np.any(ok):
            return 0
        bins = np.floor((amps[ok] - cfg.low) / cfg.bin_width).astype(np.int64)
        bins = np.clip(bins, 0, cfg.bins - 1)
        np.add.at(self.spectra, (ids[ok] - FIRST_CHANNEL_ID, bins), 1)
        return int(np.count_nonzero(ok))

    def spectrum(self, channel_id: int) -> NDArray[np.int64]:
        return self.spectra[int(channel_id) - FIRST_CHANNEL_ID]

    def count_peaks(self) -> NDArray[np.float64]:
        """Run the peak search over every channel and update the per-module peak-count grid."""
        cfg = self.config
        logger.info("Calculating number of peaks")
        counts = np.zeros(self.n_channels, dtype=float)
        filled = np.flatnonzero(self.spectra.any(axis=1))
        for start in range(0, filled.size, cfg.chunk):
            rows = filled[start:start + cfg.chunk]
            smoothed = gaussian_smooth(self.spectra[rows].astype(float), sigma_bins=cfg.sigma_bins)
            for row, spec in zip(rows, smoothed):
                counts[row] = detect_peaks(spec, threshold=cfg.threshold, max_peaks=cfg.max_peaks).size
        self.peak_counts = np.zeros(GRID_SHAPE, dtype=float)
        self.peak_counts[self._index] = counts
        logger.info("Calculating number of peaks done (%d channels with data)", filled.size)
        return self.peak_counts

    def reset(self) -> None:
        self.spectra.fill(0)
        self.peak_counts.fill(0.0)
