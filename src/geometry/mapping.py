"""Map flat read-out channel ids onto (module, row, column) grid positions.

Channel ids are 1-based. Each of the four modules is a 64 x 56 grid and owns
3584 consecutive ids; module 0 is a half module whose first 32 rows are not
instrumented, so its ids start at 1793.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

N_MODULES = 4
N_ROWS = 64
N_COLUMNS = 56
CHANNELS_PER_MODULE = N_ROWS * N_COLUMNS
MAX_CHANNEL_ID = N_MODULES * CHANNELS_PER_MODULE
# first instrumented row of the half module
HALF_MODULE_FIRST_ROW = 32
FIRST_CHANNEL_ID = HALF_MODULE_FIRST_ROW * N_COLUMNS + 1

GRID_SHAPE = (N_MODULES, N_ROWS, N_COLUMNS)


class OutOfRangeError(ValueError):
    """Raised for channel ids or positions outside the instrumented area."""


@dataclass(frozen=True)
class ChannelPosition:
    """Grid position of a channel inside its module."""

    module: int
    row: int
    column: int

    def index(self) -> Tuple[int, int, int]:
        """Return the position as an index into a (module, row, column) array."""
        return (self.module, self.row, self.column)


def module_lower_bound(module: int) -> int:
    """Return the smallest valid channel id of a module."""
    if not 0 <= module < N_MODULES:
        raise OutOfRangeError(f"module {module} outside [0, {N_MODULES})")
    if module == 0:
        return FIRST_CHANNEL_ID
    return module * CHANNELS_PER_MODULE + 1


def is_valid_channel(channel_id: int) -> bool:
    return FIRST_CHANNEL_ID <= int(channel_id) <= MAX_CHANNEL_ID


def position_of(channel_id: int) -> ChannelPosition:
    """
    Convert a channel id into its grid position.

    Raises:
        OutOfRangeError: if the id is below the module lower bound or above
            the last channel of the detector.
    """
    cid = int(channel_id)
    if not is_valid_channel(cid):
        raise OutOfRangeError(f"channel id {cid} outside [{FIRST_CHANNEL_ID}, {MAX_CHANNEL_ID}]")
    module, local = divmod(cid - 1, CHANNELS_PER_MODULE)
    row, column = divmod(local, N_COLUMNS)
    return ChannelPosition(module=module, row=row, column=column)


def channel_id_of(position: ChannelPosition) -> int:
    """Inverse of :func:`position_of`."""
    if not (0 <= position.row < N_ROWS and 0 <= position.column < N_COLUMNS):
        raise OutOfRangeError(f"position {position} outside the module grid")
    cid = position.module * CHANNELS_PER_MODULE + position.row * N_COLUMNS + position.column + 1
    if position.module < 0 or position.module >= N_MODULES or cid < module_lower_bound(position.module):
        raise OutOfRangeError(f"position {position} is not instrumented")
    return cid


def positions_of(
    channel_ids: NDArray[np.int_],
) -> Tuple[NDArray[np.int_], NDArray[np.int_], NDArray[np.int_], NDArray[np.bool_]]:
    """
    Vectorised :func:`position_of`.

    Args:
        channel_ids: Array of channel ids.

    Returns:
        (module, row, column, valid) arrays. Entries where ``valid`` is False
        carry zeros and must not be used.
    """
    ids = np.asarray(channel_ids, dtype=np.int64)
    valid = (ids >= FIRST_CHANNEL_ID) & (ids <= MAX_CHANNEL_ID)
    shifted = np.where(valid, ids - 1, 0)
    module, local = np.divmod(shifted, CHANNELS_PER_MODULE)
    row, column = np.divmod(local, N_COLUMNS)
    return module, row, column, valid


def valid_channel_ids() -> NDArray[np.int_]:
    """Return every instrumented channel id in increasing order."""
    return np.arange(FIRST_CHANNEL_ID, MAX_CHANNEL_ID + 1, dtype=np.int64)
