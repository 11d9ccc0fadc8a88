"""Publishable monitoring objects: named arrays with axis and drawing metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Tuple

import numpy as np
from numpy.typing import NDArray

from geometry.mapping import N_COLUMNS, N_ROWS


@dataclass(frozen=True)
class Axis:
    """Binning and label of one histogram axis."""

    bins: int
    low: float
    high: float
    title: str = ""


CELL_X_AXIS = Axis(N_ROWS, 0.0, float(N_ROWS), "x, cells")
CELL_Z_AXIS = Axis(N_COLUMNS, 0.0, float(N_COLUMNS), "z, cells")


@dataclass
class PublishedObject:
    """A 1D or 2D array as handed to the publishing backend."""

    name: str
    title: str
    values: NDArray[np.float64]
    x_axis: Axis
    y_axis: Axis | None = None
    draw_option: str = ""
    minimum: float | None = None
    maximum: float | None = None

    @property
    def ndim(self) -> int:
        return 1 if self.y_axis is None else 2


def module_map(
    name: str,
    title: str,
    values: NDArray[np.float64],
    minimum: float | None = 0.0,
    maximum: float | None = None,
) -> PublishedObject:
    """Wrap a (row, column) module grid."""
    return PublishedObject(
        name=name,
        title=title,
        values=np.array(values, dtype=float, copy=True),
        x_axis=CELL_X_AXIS,
        y_axis=CELL_Z_AXIS,
        draw_option="colz",
        minimum=minimum,
        maximum=maximum,
    )


def histogram_1d(name: str, title: str, counts: NDArray[np.float64], low: float, high: float, x_title: str) -> PublishedObject:
    return PublishedObject(
        name=name,
        title=title,
        values=np.array(counts, dtype=float, copy=True),
        x_axis=Axis(len(counts), low, high, x_title),
        draw_option="h",
        minimum=0.0,
    )


def histogram_2d(
    name: str,
    title: str,
    counts: NDArray[np.float64],
    x_axis: Axis,
    y_axis: Axis,
) -> PublishedObject:
    return PublishedObject(
        name=name,
        title=title,
        values=np.array(counts, dtype=float, copy=True),
        x_axis=x_axis,
        y_axis=y_axis,
        draw_option="colz",
        minimum=0.0,
    )


@dataclass
class Snapshot:
    """Ordered collection of published objects for one cycle."""

    objects: Dict[str, PublishedObject] = field(default_factory=dict)

    def add(self, obj: PublishedObject) -> None:
        self.objects[obj.name] = obj

    def extend(self, objs: Iterable[PublishedObject]) -> None:
        for obj in objs:
            self.add(obj)

    def __getitem__(self, name: str) -> PublishedObject:
        return self.objects[name]

    def __contains__(self, name: object) -> bool:
        return name in self.objects

    def __iter__(self) -> Iterator[str]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)

    def values(self, name: str) -> NDArray[np.float64]:
        return self.objects[name].values

    def family(self, prefix: str) -> Tuple[PublishedObject, ...]:
        """Objects whose name starts with ``prefix``, in insertion order."""
        return tuple(obj for name, obj in self.objects.items() if name.startswith(prefix))
