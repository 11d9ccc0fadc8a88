"""
Lifecycle of the raw-readout monitoring task.

The host calls, strictly in sequence::

    initialize()
    start_of_activity()
    (start_of_cycle(), monitor_data(...)*, end_of_cycle())*
    end_of_activity()

Everything accumulated lives in an :class:`ActivityScope` that is rebuilt for
each activity; the snapshot published at each cycle end is kept separately so
it stays readable after the activity is torn down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from aggregation.quality import QualityMetricAggregator
from aggregation.snapshot import Axis, PublishedObject, Snapshot, histogram_1d, histogram_2d
from geometry.mapping import N_MODULES
from hardware.bad_channels import BadChannelLoader, BadChannelSummary
from hardware.errors import ErrorTally, HardwareErrorRecord
from monitor.config import Mode, MonitorConfig
from monitor.pipelines import ModePipeline, build_pipeline
from monitor.readout import CellBatch, ChannelReading, EventSlice, as_batch

logger = logging.getLogger(__name__)


class TaskState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


class LifecycleError(RuntimeError):
    """Raised when a hook is called in a state that does not allow it."""


@dataclass
class ActivityScope:
    """Accumulators owned by one activity."""

    pipeline: ModePipeline
    errors: ErrorTally
    bad_channels: BadChannelSummary
    quality: Optional[QualityMetricAggregator] = None

    def reset(self) -> None:
        self.pipeline.reset()
        self.errors.reset()
        self.bad_channels.reset()
        if self.quality is not None:
            self.quality.reset()


class RawMonitorTask:
    """Aggregates channel readings, hardware errors and fit quality into per-cycle snapshots."""

    def __init__(self, config: MonitorConfig | None = None, bad_channel_loader: BadChannelLoader | None = None) -> None:
        self.config = config or MonitorConfig()
        self.bad_channel_loader = bad_channel_loader
        self.state = TaskState.UNINITIALIZED
        self.scope: Optional[ActivityScope] = None
        self.published = Snapshot()
        self.cycles = 0

    def _require_ready(self, hook: str) -> ActivityScope:
        if self.state is not TaskState.READY or self.scope is None:
            raise LifecycleError(f"{hook} called while task is {self.state.value}")
        return self.scope

    def initialize(self) -> None:
        """Allocate the accumulators for the configured mode."""
        logger.info("initialize RawMonitorTask in %s mode", self.config.mode.value)
        quality = None
        if self.config.check_fit_quality:
            quality = QualityMetricAggregator(
                scale=self.config.fit_quality_scale, cumulative=self.config.mode is Mode.PEDESTAL
            )
        self.scope = ActivityScope(
            pipeline=build_pipeline(self.config),
            errors=ErrorTally(),
            bad_channels=BadChannelSummary(self.bad_channel_loader),
            quality=quality,
        )
        self.state = TaskState.READY

    def start_of_activity(self) -> None:
        logger.info("startOfActivity")
        if self.state is TaskState.UNINITIALIZED:
            self.initialize()
        self.reset()

    def start_of_cycle(self) -> None:
        scope = self._require_ready("start_of_cycle")
        logger.info("startOfCycle")
        if scope.quality is not None:
            scope.quality.start_cycle()
        scope.pipeline.start_cycle()

    def monitor_data(
        self,
        cells: CellBatch | Sequence[ChannelReading],
        slices: Iterable[EventSlice],
        errors: Iterable[HardwareErrorRecord] = (),
        fit_quality: Sequence[int] | None = None,
    ) -> None:
        """Process one delivery of readings, event slices and side streams."""
        scope = self._require_ready("monitor_data")
        scope.errors.fill(errors)
        scope.bad_channels.ensure_loaded()
        if scope.quality is not None and fit_quality is not None:
            scope.quality.fill(fit_quality)
        batch = as_batch(cells)
        selected = batch.select(slices)
        scope.pipeline.fill(batch.subset(selected))

    def end_of_cycle(self) -> Snapshot:
        scope = self._require_ready("end_of_cycle")
        if scope.quality is not None:
            scope.quality.end_cycle()
        scope.pipeline.end_cycle()
        self.cycles += 1
        self.published = self.snapshot()
        return self.published

    def end_of_activity(self) -> Snapshot:
        """Close the last cycle, then drop every accumulator."""
        snapshot = self.end_of_cycle()
        logger.info("endOfActivity")
        self.reset()
        self.scope = None
        self.state = TaskState.UNINITIALIZED
        return snapshot

    def reset(self) -> None:
        """Clear all accumulators."""
        logger.info("Resetting the histograms")
        if self.scope is not None:
            self.scope.reset()
        self.cycles = 0

    def snapshot(self) -> Snapshot:
        """Current publishable objects."""
        scope = self._require_ready("snapshot")
        snap = Snapshot()
        snap.extend(self._common_objects(scope))
        if scope.quality is not None:
            snap.extend(scope.quality.publish())
        snap.extend(scope.pipeline.publish())
        return snap

    @staticmethod
    def _common_objects(scope: ActivityScope) -> List[PublishedObject]:
        board_axis = Axis(scope.errors.shape[0], 0.0, float(scope.errors.shape[0]), "FEE card")
        link_axis = Axis(scope.errors.shape[1], 0.0, float(scope.errors.shape[1]), "DDL")
        return [
            histogram_2d("NumberOfErrors", "Number of hardware errors", scope.errors.counts, board_axis, link_axis),
            histogram_2d("ErrorTypePerDDL", "ErrorTypePerDDL", scope.errors.flags, board_axis, link_axis),
            histogram_1d(
                "BadMapSummary",
                "Number of bad channels",
                scope.bad_channels.counts,
                1.0,
                float(N_MODULES + 1),
                "module",
            ),
        ]
