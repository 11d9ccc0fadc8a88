"""Readout records delivered by the host: channel readings and the event slices grouping them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class Gain(Enum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class ChannelReading:
    """Single channel reading: amplitude, time and the gain branch it was read from."""

    channel_id: int
    energy: float
    time: float
    gain: Gain = Gain.HIGH


@dataclass(frozen=True)
class EventSlice:
    """Contiguous range of readings in a batch belonging to one event."""

    first_index: int
    count: int


@dataclass
class CellBatch:
    """Columnar view of a batch of readings."""

    channel_ids: NDArray[np.int64]
    energies: NDArray[np.float64]
    times: NDArray[np.float64]
    high_gain: NDArray[np.bool_]

    def __len__(self) -> int:
        return int(self.channel_ids.size)

    @classmethod
    def from_readings(cls, readings: Sequence[ChannelReading]) -> "CellBatch":
        return cls(
            channel_ids=np.array([r.channel_id for r in readings], dtype=np.int64),
            energies=np.array([r.energy for r in readings], dtype=float),
            times=np.array([r.time for r in readings], dtype=float),
            high_gain=np.array([r.gain is Gain.HIGH for r in readings], dtype=bool),
        )

    @classmethod
    def empty(cls) -> "CellBatch":
        return cls.from_readings([])

    def subset(self, indices: NDArray[np.int_]) -> "CellBatch":
        return CellBatch(
            channel_ids=self.channel_ids[indices],
            energies=self.energies[indices],
            times=self.times[indices],
            high_gain=self.high_gain[indices],
        )

    def select(self, slices: Iterable[EventSlice]) -> NDArray[np.int_]:
        """
        Indices of the readings covered by ``slices``, in event order.

        Slices reaching past the batch are clipped; readings outside every slice
        are not returned.
        """
        n = len(self)
        parts = []
        for sl in slices:
            first = int(sl.first_index)
            last = first + int(sl.count)
            if first < 0 or last > n or sl.count < 0:
                logger.warning("Event slice [%d, %d) outside batch of %d readings, clipping", first, last, n)
                first, last = max(first, 0), min(max(last, 0), n)
            if last > first:
                parts.append(np.arange(first, last, dtype=np.int64))
        if not parts:
            return np.zeros(0, dtype=np.int64)
        return np.concatenate(parts)


def as_batch(cells: CellBatch | Sequence[ChannelReading]) -> CellBatch:
    """Accept either a prepared batch or a sequence of readings."""
    if isinstance(cells, CellBatch):
        return cells
    return CellBatch.from_readings(list(cells))
