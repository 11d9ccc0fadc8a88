"""Tally hardware-error records per front-end board and readout link."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

N_BOARDS = 32
N_LINKS = 15
MAX_ERROR_CODE = 31


@dataclass(frozen=True)
class HardwareErrorRecord:
    """One decoder error: board (FEE card), link (DDL) and error code bit position."""

    board_id: int
    link_id: int
    error_code: int


class ErrorTally:
    """Count errors on a (board, link) grid and OR their type bits into a parallel mask grid."""

    def __init__(self, n_boards: int = N_BOARDS, n_links: int = N_LINKS) -> None:
        self.shape = (n_boards, n_links)
        self.counts: NDArray[np.int64] = np.zeros(self.shape, dtype=np.int64)
        self.flags: NDArray[np.int64] = np.zeros(self.shape, dtype=np.int64)
        self.rejected = 0

    def fill(self, records: Iterable[HardwareErrorRecord]) -> int:
        """
        Add records to the tally.

        Returns:
            Number of records accepted.
        """
        accepted = 0
        for rec in records:
            board, link, code = int(rec.board_id), int(rec.link_id), int(rec.error_code)
            if not (0 <= board < self.shape[0] and 0 <= link < self.shape[1]):
                logger.debug("Skipping error record outside grid: board=%d link=%d", board, link)
                self.rejected += 1
                continue
            if not 0 <= code <= MAX_ERROR_CODE:
                logger.debug("Skipping error record with code %d at [%d,%d]", code, board, link)
                self.rejected += 1
                continue
            self.counts[board, link] += 1
            self.flags[board, link] |= 1 << code
            logger.debug("[%d,%d] error flags %#x after code %d", board, link, self.flags[board, link], code)
            accepted += 1
        return accepted

    def count_at(self, board_id: int, link_id: int) -> int:
        return int(self.counts[board_id, link_id])

    def flags_at(self, board_id: int, link_id: int) -> int:
        return int(self.flags[board_id, link_id])

    def reset(self) -> None:
        self.counts.fill(0)
        self.flags.fill(0)
        self.rejected = 0
