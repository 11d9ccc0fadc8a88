"""Render per-module maps of a monitoring snapshot as heatmaps."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np

from aggregation.snapshot import PublishedObject, Snapshot


def _draw_object(ax: plt.Axes, obj: PublishedObject, cmap: str) -> None:
    if obj.y_axis is None:
        edges = np.linspace(obj.x_axis.low, obj.x_axis.high, obj.x_axis.bins + 1)
        ax.stairs(obj.values, edges)
        ax.set_xlabel(obj.x_axis.title)
        if obj.minimum is not None:
            ax.set_ylim(bottom=obj.minimum)
    else:
        extent = (obj.x_axis.low, obj.x_axis.high, obj.y_axis.low, obj.y_axis.high)
        # arrays are indexed [x, y]; imshow wants [y, x]
        im = ax.imshow(
            obj.values.T,
            extent=extent,
            origin="lower",
            cmap=cmap,
            aspect="auto",
            vmin=obj.minimum,
            vmax=obj.maximum,
        )
        if "z" in obj.draw_option:
            plt.colorbar(im, ax=ax)
        ax.set_xlabel(obj.x_axis.title)
        ax.set_ylabel(obj.y_axis.title)
    ax.set_title(obj.title, fontsize=9)


def render_module_maps(
    snapshot: Snapshot,
    prefix: str,
    cmap: str = "viridis",
    output_path: Optional[Path] = None,
) -> plt.Figure:
    """
    Draw every object of one family (e.g. ``"CellOccupancyM"``) side by side.

    Args:
        snapshot: Published snapshot.
        prefix: Name prefix selecting the family.
        cmap: matplotlib colormap name for 2D objects.
        output_path: if provided, save the figure to this path

    Raises:
        KeyError: if no object matches ``prefix``.
    """
    objs = snapshot.family(prefix)
    if not objs:
        raise KeyError(f"No published object starts with {prefix!r}")
    fig, axes = plt.subplots(1, len(objs), figsize=(4 * len(objs), 4), squeeze=False)
    for ax, obj in zip(axes[0], objs):
        _draw_object(ax, obj, cmap)
    fig.tight_layout()
    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150)
    return fig
