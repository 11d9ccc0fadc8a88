"""Gaussian smoothing of channel spectra ahead of the peak search."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.ndimage import gaussian_filter1d


def gaussian_smooth(signal: NDArray[np.float64], sigma_bins: float = 2.0) -> NDArray[np.float64]:
    """
    Apply 1D Gaussian smoothing along the last axis.

    Args:
        signal: One spectrum, or a stack of spectra shaped (n_spectra, n_bins).
        sigma_bins: Standard deviation of the Gaussian kernel in bins.

    Returns:
        Smoothed spectra with the input shape.
    """
    data = np.asarray(signal, dtype=float)
    if data.size == 0 or sigma_bins <= 0:
        return data
    return gaussian_filter1d(data, sigma=sigma_bins, axis=-1, mode="nearest")
