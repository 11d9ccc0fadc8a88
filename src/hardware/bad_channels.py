"""Reduce an externally supplied good/bad channel map to per-module bad-channel counts."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

import numpy as np
from numpy.typing import NDArray

from geometry.mapping import N_MODULES, positions_of, valid_channel_ids

logger = logging.getLogger(__name__)


class BadChannelMap(Protocol):
    """Point-in-time lookup of channel quality."""

    def is_channel_good(self, channel_id: int) -> bool: ...


BadChannelLoader = Callable[[], Optional[BadChannelMap]]


class BadChannelSummary:
    """
    Number of bad channels per module.

    The map is fetched lazily through ``loader`` at most once between resets;
    a failed or empty fetch leaves the summary at zero.
    """

    def __init__(self, loader: BadChannelLoader | None = None) -> None:
        self.loader = loader
        self.counts: NDArray[np.int64] = np.zeros(N_MODULES, dtype=np.int64)
        self.pending = True
        self.loaded = False

    def ensure_loaded(self) -> bool:
        """Fetch and summarise the map on first call; return True if a map is in use."""
        if not self.pending:
            return self.loaded
        self.pending = False
        if self.loader is None:
            logger.info("No bad channel map source configured")
            return False
        logger.info("Getting bad map")
        try:
            bad_map = self.loader()
        except Exception as exc:  # external calibration store, failure is not fatal
            logger.error("Can not get bad map: %s", exc)
            self.counts.fill(0)
            return False
        if bad_map is None:
            logger.error("Can not get bad map")
            self.counts.fill(0)
            return False
        self.counts = summarize(bad_map)
        self.loaded = True
        logger.info("Bad channels: %s", self.counts.tolist())
        return True

    def reset(self) -> None:
        """Clear the summary and re-arm the fetch for the next activity."""
        self.counts.fill(0)
        self.pending = True
        self.loaded = False


def summarize(bad_map: BadChannelMap) -> NDArray[np.int64]:
    """Count channels reported as not good, per module."""
    ids = valid_channel_ids()
    bad = np.array([not bad_map.is_channel_good(int(cid)) for cid in ids], dtype=bool)
    module, _, _, _ = positions_of(ids[bad])
    return np.bincount(module, minlength=N_MODULES).astype(np.int64)
