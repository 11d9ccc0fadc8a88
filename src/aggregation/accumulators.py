"""
Per-cell accumulators used by the monitoring pipelines.

Sums and counts are stored side by side, so the mean published at the end of a
cycle is a read-only projection and the running totals are never rewritten.
``finalize``/``resume`` mark the cycle boundary: ``finalize`` freezes the
snapshot that consumers read, ``resume`` reopens the grid for the next cycle
with its totals intact, and ``restart`` reopens it empty.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

GridIndex = Tuple[NDArray[np.int_], ...]


class AggregationState(Enum):
    ACCUMULATING = "accumulating"
    FINALIZED = "finalized"


def _safe_divide(num: NDArray[np.float64], den: NDArray[np.float64]) -> NDArray[np.float64]:
    """Element-wise num/den with 0 where den == 0."""
    out = np.zeros_like(num, dtype=float)
    np.divide(num, den, out=out, where=den > 0)
    return out


class _CycleGrid(ABC):
    """Shared finalize/resume bookkeeping."""

    def __init__(self, shape: Sequence[int]) -> None:
        self.shape = tuple(int(s) for s in shape)
        self.size = int(np.prod(self.shape))
        self.state = AggregationState.ACCUMULATING
        self.count: NDArray[np.float64] = np.zeros(self.shape, dtype=float)
        self._published: NDArray[np.float64] = np.zeros(self.shape, dtype=float)

    def _flat(self, index: GridIndex) -> NDArray[np.int_]:
        return np.ravel_multi_index(tuple(np.asarray(i, dtype=np.int64) for i in index), self.shape)

    def _batch_counts(self, flat: NDArray[np.int_]) -> NDArray[np.float64]:
        return np.bincount(flat, minlength=self.size).astype(float).reshape(self.shape)

    @abstractmethod
    def mean(self) -> NDArray[np.float64]:
        """Current mean per cell, 0 where the cell is empty."""

    def finalize(self) -> NDArray[np.float64]:
        """Freeze the current mean as the published snapshot and return it."""
        self._published = self.mean()
        self.state = AggregationState.FINALIZED
        return self._published

    def resume(self) -> None:
        """Reopen the grid; running totals carry over unchanged."""
        self.state = AggregationState.ACCUMULATING

    def restart(self) -> None:
        """Reopen the grid with empty totals; the last published mean is kept."""
        self._clear_totals()
        self.state = AggregationState.ACCUMULATING

    def _clear_totals(self) -> None:
        self.count.fill(0.0)

    @property
    def published(self) -> NDArray[np.float64]:
        """Mean as of the last finalize."""
        return self._published

    def reset(self) -> None:
        self.count.fill(0.0)
        self._published = np.zeros(self.shape, dtype=float)
        self.state = AggregationState.ACCUMULATING


class RunningMeanGrid(_CycleGrid):
    """Cell-wise sum and occupancy with a mean projection."""

    def __init__(self, shape: Sequence[int]) -> None:
        super().__init__(shape)
        self.sum: NDArray[np.float64] = np.zeros(self.shape, dtype=float)

    def add(self, index: GridIndex, values: NDArray[np.float64]) -> None:
        """Accumulate ``values`` at the cells given by ``index`` (one cell per value, repeats allowed)."""
        flat = self._flat(index)
        if flat.size == 0:
            return
        vals = np.broadcast_to(np.asarray(values, dtype=float), flat.shape)
        self.sum += np.bincount(flat, weights=vals, minlength=self.size).reshape(self.shape)
        self.count += self._batch_counts(flat)

    def mean(self) -> NDArray[np.float64]:
        return _safe_divide(self.sum, self.count)

    def _clear_totals(self) -> None:
        super()._clear_totals()
        self.sum.fill(0.0)

    def reset(self) -> None:
        super().reset()
        self.sum.fill(0.0)


class VarianceGrid(_CycleGrid):
    """
    Running mean and second central moment per cell.

    Batches are merged with the pairwise form of Welford's update:
        n = n_a + n_b
        mean = mean_a + delta * n_b / n
        M2 = M2_a + M2_b + delta^2 * n_a * n_b / n
    """

    def __init__(self, shape: Sequence[int]) -> None:
        super().__init__(shape)
        self._mean: NDArray[np.float64] = np.zeros(self.shape, dtype=float)
        self.m2: NDArray[np.float64] = np.zeros(self.shape, dtype=float)
        self._published_rms: NDArray[np.float64] = np.zeros(self.shape, dtype=float)

    def add(self, index: GridIndex, values: NDArray[np.float64]) -> None:
        flat = self._flat(index)
        if flat.size == 0:
            return
        vals = np.asarray(values, dtype=float).reshape(-1)
        n_b = self._batch_counts(flat)
        sum_b = np.bincount(flat, weights=vals, minlength=self.size).reshape(self.shape)
        mean_b = _safe_divide(sum_b, n_b)
        dev = vals - mean_b.reshape(-1)[flat]
        m2_b = np.bincount(flat, weights=dev * dev, minlength=self.size).reshape(self.shape)

        n_a = self.count
        n = n_a + n_b
        delta = mean_b - self._mean
        touched = n_b > 0
        self._mean = np.where(touched, self._mean + delta * _safe_divide(n_b, n), self._mean)
        self.m2 = np.where(touched, self.m2 + m2_b + delta * delta * _safe_divide(n_a * n_b, n), self.m2)
        self.count = n

    def mean(self) -> NDArray[np.float64]:
        return np.where(self.count > 0, self._mean, 0.0)

    def _clear_totals(self) -> None:
        self.count = np.zeros(self.shape, dtype=float)
        self._mean = np.zeros(self.shape, dtype=float)
        self.m2 = np.zeros(self.shape, dtype=float)

    def variance(self) -> NDArray[np.float64]:
        """Population variance, 0 for empty cells."""
        return _safe_divide(self.m2, self.count)

    def rms(self) -> NDArray[np.float64]:
        return np.sqrt(self.variance())

    def finalize(self) -> NDArray[np.float64]:
        self._published_rms = self.rms()
        return super().finalize()

    @property
    def published_rms(self) -> NDArray[np.float64]:
        return self._published_rms

    def reset(self) -> None:
        super().reset()
        self._mean.fill(0.0)
        self.m2.fill(0.0)
        self._published_rms = np.zeros(self.shape, dtype=float)


class IncrementalMeanGrid:
    """
    Running mean updated in place as readings arrive, with its occupancy.

    For each cell with ``n`` previous entries and a batch of ``k`` new values
    summing to ``s`` the mean becomes ``(s + mean * n) / (n + k)``; with ``k = 1``
    this is the per-reading update ``(e + mean * n) / (n + 1)``.
    """

    def __init__(self, shape: Sequence[int]) -> None:
        self.shape = tuple(int(s) for s in shape)
        self.size = int(np.prod(self.shape))
        self.values: NDArray[np.float64] = np.zeros(self.shape, dtype=float)
        self.occupancy: NDArray[np.float64] = np.zeros(self.shape, dtype=float)

    def add(self, index: GridIndex, values: NDArray[np.float64]) -> None:
        flat = np.ravel_multi_index(tuple(np.asarray(i, dtype=np.int64) for i in index), self.shape)
        if flat.size == 0:
            return
        vals = np.asarray(values, dtype=float).reshape(-1)
        k = np.bincount(flat, minlength=self.size).astype(float).reshape(self.shape)
        s = np.bincount(flat, weights=vals, minlength=self.size).reshape(self.shape)
        n = self.occupancy
        self.values = np.where(k > 0, _safe_divide(s + self.values * n, n + k), self.values)
        self.occupancy = n + k

    def reset(self) -> None:
        self.values.fill(0.0)
        self.occupancy.fill(0.0)


class OccupancyRange:
    """Min/max over strictly positive cells, refreshed on demand."""

    def __init__(self) -> None:
        self.minimum: float | None = None
        self.maximum: float | None = None

    def update(self, occupancy: NDArray[np.float64]) -> None:
        positive = occupancy[occupancy > 0]
        if positive.size == 0:
            self.minimum = None
            self.maximum = None
            return
        self.minimum = float(positive.min())
        self.maximum = float(positive.max())

    def reset(self) -> None:
        self.minimum = None
        self.maximum = None


class Histogram1D:
    """Fixed-range histogram; entries outside [low, high) go to ``overflow``."""

    def __init__(self, bins: int, low: float, high: float) -> None:
        self.bins = int(bins)
        self.low = float(low)
        self.high = float(high)
        self.counts: NDArray[np.float64] = np.zeros(self.bins, dtype=float)
        self.overflow = 0

    @property
    def edges(self) -> NDArray[np.float64]:
        return np.linspace(self.low, self.high, self.bins + 1)

    def fill(self, values: NDArray[np.float64]) -> None:
        vals = np.asarray(values, dtype=float).reshape(-1)
        inside = (vals >= self.low) & (vals < self.high)
        self.overflow += int(vals.size - np.count_nonzero(inside))
        hist, _ = np.histogram(vals[inside], bins=self.bins, range=(self.low, self.high))
        self.counts += hist

    def reset(self) -> None:
        self.counts.fill(0.0)
        self.overflow = 0


class Histogram2D:
    """Fixed-range 2D histogram indexed [x_bin, y_bin]."""

    def __init__(self, x_bins: int, x_range: Tuple[float, float], y_bins: int, y_range: Tuple[float, float]) -> None:
        self.x_bins = int(x_bins)
        self.y_bins = int(y_bins)
        self.x_range = (float(x_range[0]), float(x_range[1]))
        self.y_range = (float(y_range[0]), float(y_range[1]))
        self.counts: NDArray[np.float64] = np.zeros((self.x_bins, self.y_bins), dtype=float)
        self.overflow = 0

    def fill(self, x: NDArray[np.float64], y: NDArray[np.float64]) -> None:
        xs = np.asarray(x, dtype=float).reshape(-1)
        ys = np.asarray(y, dtype=float).reshape(-1)
        inside = (
            (xs >= self.x_range[0]) & (xs < self.x_range[1]) & (ys >= self.y_range[0]) & (ys < self.y_range[1])
        )
        self.overflow += int(xs.size - np.count_nonzero(inside))
        hist, _, _ = np.histogram2d(
            xs[inside], ys[inside], bins=(self.x_bins, self.y_bins), range=(self.x_range, self.y_range)
        )
        self.counts += hist

    def reset(self) -> None:
        self.counts.fill(0.0)
        self.overflow = 0
