"""Demo run of the raw-readout monitor on synthetic data.

Run `python main.py --mode pedestal` to push a few cycles of generated readings
through the monitoring task and print a summary of the published snapshot.
With `--output DIR` the per-module maps of the main families are saved as PNG.

Notes:
- Readings are drawn per event from a random subset of channels; pedestal runs
  use a narrow Gaussian around a per-channel baseline, physics and LED runs an
  exponential amplitude spectrum (LED adds a few fixed amplitude lines).
- A handful of hardware errors and fit-quality samples are injected per batch.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
from typing import List, Tuple

import matplotlib

matplotlib.use("Agg")

import numpy as np

# Ensure src/ is on sys.path for direct script execution.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from geometry.mapping import valid_channel_ids
from hardware.errors import HardwareErrorRecord
from monitor.config import Mode, MonitorConfig
from monitor.readout import CellBatch, EventSlice
from monitor.task import RawMonitorTask
from visualization.maps import render_module_maps

logger = logging.getLogger("main")

LED_LINES = (200.0, 420.0, 700.0)
FAMILIES = {
    Mode.BASELINE: ("CellOccupancyM", "CellEmean"),
    Mode.PEDESTAL: ("PedHGmean", "PedHGrms", "HGOccupancyM"),
    Mode.LED: ("CellOccupancyM", "NLedPeaksM"),
}


class RandomBadMap:
    """Marks a fixed random fraction of channels as bad."""

    def __init__(self, rng: np.random.Generator, fraction: float = 0.01) -> None:
        ids = valid_channel_ids()
        self.bad = set(rng.choice(ids, size=int(fraction * ids.size), replace=False).tolist())

    def is_channel_good(self, channel_id: int) -> bool:
        return channel_id not in self.bad


def generate_batch(
    mode: Mode,
    rng: np.random.Generator,
    n_events: int,
    cells_per_event: int,
) -> Tuple[CellBatch, List[EventSlice]]:
    """Draw ``n_events`` events of ``cells_per_event`` readings each."""
    ids = valid_channel_ids()
    n = n_events * cells_per_event
    channel_ids = rng.choice(ids, size=n)
    high_gain = rng.random(n) < 0.8
    if mode is Mode.PEDESTAL:
        base = 40.0 + (channel_ids % 17)
        energies = rng.normal(base, 1.5)
        times = rng.normal(0.0, 1e-8, size=n)
    else:
        energies = rng.exponential(80.0, size=n)
        if mode is Mode.LED:
            lines = rng.choice(LED_LINES, size=n)
            energies = np.where(rng.random(n) < 0.7, rng.normal(lines, 8.0), energies)
        times = rng.normal(0.0, 5e-8, size=n)
    batch = CellBatch(
        channel_ids=channel_ids.astype(np.int64),
        energies=np.clip(energies, 0.0, None),
        times=times,
        high_gain=high_gain,
    )
    slices = [EventSlice(first_index=i * cells_per_event, count=cells_per_event) for i in range(n_events)]
    return batch, slices


def generate_side_streams(rng: np.random.Generator, n_errors: int, n_quality: int) -> Tuple[List[HardwareErrorRecord], List[int]]:
    errors = [
        HardwareErrorRecord(int(rng.integers(0, 32)), int(rng.integers(0, 15)), int(rng.integers(0, 8)))
        for _ in range(n_errors)
    ]
    addresses = rng.choice(valid_channel_ids(), size=n_quality)
    flags = (rng.random(n_quality) < 0.5).astype(np.int64) << 14
    scores = rng.integers(0, 50, size=n_quality)
    raw = np.column_stack([addresses | flags, scores]).reshape(-1)
    return errors, raw.tolist()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synthetic raw-readout monitoring run.")
    parser.add_argument("--mode", choices=[m.value for m in Mode], default=Mode.BASELINE.value)
    parser.add_argument("--cycles", type=int, default=3)
    parser.add_argument("--batches", type=int, default=4, help="Deliveries per cycle.")
    parser.add_argument("--events", type=int, default=200, help="Events per delivery.")
    parser.add_argument("--cells", type=int, default=64, help="Readings per event.")
    parser.add_argument("--chi2", action="store_true", help="Enable fit-quality maps.")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--output", type=Path, default=None, help="Directory for PNG maps.")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    rng = np.random.default_rng(args.seed)
    config = MonitorConfig(mode=Mode(args.mode), check_fit_quality=args.chi2)
    task = RawMonitorTask(config, bad_channel_loader=lambda: RandomBadMap(rng))
    task.initialize()
    task.start_of_activity()
    snapshot = None
    for cycle in range(args.cycles):
        task.start_of_cycle()
        for _ in range(args.batches):
            batch, slices = generate_batch(config.mode, rng, args.events, args.cells)
            errors, quality = generate_side_streams(rng, n_errors=3, n_quality=100)
            task.monitor_data(batch, slices, errors=errors, fit_quality=quality if args.chi2 else None)
        if cycle == args.cycles - 1:
            snapshot = task.end_of_activity()
        else:
            snapshot = task.end_of_cycle()
        logger.info("Cycle %d published %d objects", cycle + 1, len(snapshot))

    if snapshot is None:
        return
    print(f"Published objects ({len(snapshot)}):")
    for name in snapshot:
        values = snapshot.values(name)
        print(f"  {name:<20s} sum={values.sum():12.4g} max={values.max():10.4g}")
    if args.output is not None:
        for prefix in FAMILIES[config.mode]:
            path = args.output / f"{prefix}.png"
            render_module_maps(snapshot, prefix, output_path=path)
            print(f"Saved {path}")


if __name__ == "__main__":
    main()
