"""Peak search on smoothed spectra."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.signal import find_peaks


def detect_peaks(
    signal: NDArray[np.float64],
    threshold: float = 0.1,
    max_peaks: int = 20,
    distance: int = 1,
) -> NDArray[np.int_]:
    """
    Detect local maxima above a fraction of the spectrum maximum.

    Args:
        signal: Smoothed spectrum.
        threshold: Minimum peak height relative to the spectrum maximum.
        max_peaks: Keep at most this many peaks, highest first.
        distance: Minimum separation between peaks in bins.

    Returns:
        Indices of detected peaks in increasing bin order.
    """
    if signal.size == 0:
        return np.array([], dtype=int)
    top = float(signal.max())
    if top <= 0:
        return np.array([], dtype=int)
    peaks, props = find_peaks(signal, height=threshold * top, distance=max(int(distance), 1))
    if peaks.size > max_peaks:
        keep = np.argsort(props["peak_heights"])[::-1][:max_peaks]
        peaks = np.sort(peaks[keep])
    return peaks.astype(int)
