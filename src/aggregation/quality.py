"""Accumulate per-channel sample-fit quality (chi2/NDF) into per-module mean maps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from numpy.typing import NDArray

from aggregation.accumulators import RunningMeanGrid
from aggregation.snapshot import PublishedObject, module_map
from geometry.mapping import GRID_SHAPE, N_MODULES, positions_of

logger = logging.getLogger(__name__)

# bit set on the address when the sample came from the low-gain branch
LOW_GAIN_FLAG_BIT = 14
FIT_QUALITY_SCALE = 0.2


@dataclass
class FitQualitySamples:
    """Decoded (address, score) columns; the gain flag is masked off the address."""

    addresses: NDArray[np.int64]
    scores: NDArray[np.float64]


def decode_fit_quality(raw: Sequence[int], scale: float = FIT_QUALITY_SCALE) -> FitQualitySamples:
    """
    Split the flat ``address, score, address, score, ...`` stream.

    A trailing unpaired value is dropped with a warning.
    """
    values = np.asarray(raw, dtype=np.int64).reshape(-1)
    if values.size % 2:
        logger.warning("Fit-quality stream has odd length %d, dropping trailing value", values.size)
        values = values[:-1]
    return FitQualitySamples(
        addresses=values[0::2] & ~(1 << LOW_GAIN_FLAG_BIT),
        scores=scale * values[1::2].astype(float),
    )


class QualityMetricAggregator:
    """
    Mean fit quality per cell, with the sample count kept as the normalisation grid.

    With ``cumulative`` set the totals run over the whole activity (pedestal
    runs); otherwise each cycle starts from empty totals.
    """

    def __init__(self, scale: float = FIT_QUALITY_SCALE, cumulative: bool = False) -> None:
        self.scale = scale
        self.cumulative = cumulative
        self.grid = RunningMeanGrid(GRID_SHAPE)
        self.skipped = 0

    def fill(self, raw: Sequence[int]) -> int:
        samples = decode_fit_quality(raw, scale=self.scale)
        module, row, column, valid = positions_of(samples.addresses)
        n_bad = int(np.count_nonzero(~valid))
        if n_bad:
            logger.debug("Skipping %d fit-quality samples with invalid address", n_bad)
            self.skipped += n_bad
        self.grid.add((module[valid], row[valid], column[valid]), samples.scores[valid])
        return int(np.count_nonzero(valid))

    def start_cycle(self) -> None:
        if self.cumulative:
            self.grid.resume()
        else:
            self.grid.restart()

    def end_cycle(self) -> None:
        self.grid.finalize()

    @property
    def norm(self) -> NDArray[np.float64]:
        return self.grid.count

    def publish(self) -> List[PublishedObject]:
        return [
            module_map(f"Chi2M{mod + 1}", f"sample fit chi2/NDF, mod {mod + 1}", self.grid.published[mod])
            for mod in range(N_MODULES)
        ]

    def reset(self) -> None:
        self.grid.reset()
        self.skipped = 0
