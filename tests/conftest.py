"""Put src/ on the import path and keep matplotlib off any display."""

import sys
from pathlib import Path

import matplotlib


def pytest_configure() -> None:
    """Add the src directory to sys.path and select the Agg backend."""
    matplotlib.use("Agg")
    root = Path(__file__).resolve().parents[1]
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))
