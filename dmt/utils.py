"""
Utility functions for DMT processing.
"""

import time

import numpy as np
from scipy import signal as scipy_signal
from scipy import special


def get_timestamp_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def db_to_linear(db: float) -> float:
    """Convert dB to linear scale."""
    return 10 ** (db / 10)


def linear_to_db(linear: float) -> float:
    """Convert linear scale to dB."""
    return 10 * np.log10(linear) if linear > 0 else -np.inf


def qfunc(x):
    """Gaussian tail probability Q(x)."""
    return 0.5 * special.erfc(np.asarray(x) / np.sqrt(2))


def unbiased_autocorrelation(x: np.ndarray, max_lag: int) -> np.ndarray:
    """
    Unbiased autocorrelation of a real sequence for lags 0..max_lag.

    Args:
        x: Input sequence (flattened if multi-dimensional)
        max_lag: Largest lag to return

    Returns:
        Array of length max_lag + 1
    """
    x = np.real(np.ravel(x))
    n = len(x)
    if n == 0:
        return np.zeros(max_lag + 1)

    full = scipy_signal.correlate(x, x, mode='full', method='fft')
    lags = np.arange(max_lag + 1)
    # Zero-lag sits at index n - 1 of the full correlation
    r = np.zeros(max_lag + 1)
    valid = lags < n
    r[valid] = full[n - 1 + lags[valid]] / (n - lags[valid])
    return r
