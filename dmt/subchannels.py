"""
DMT subchannel indexing.

Determines which DFT bins are usable subchannels and how many real
dimensions each one carries. DC sits at bin 0 and Nyquist at bin Nfft/2;
the Hermitian image of bin k is bin Nfft - k.
"""

import logging
from dataclasses import dataclass

import numpy as np

from dmt.config import DmtConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubchannelSet:
    """Usable subchannels of a DMT symbol."""
    tones: np.ndarray            # Positive-half DFT bins that may be loaded
    tones_two_sided: np.ndarray  # tones followed by their Hermitian images
    dims: np.ndarray             # Real dimensions per tone (1 or 2)
    dims_per_bin: np.ndarray     # Real dimensions for every DFT bin
    n_fft: int

    @property
    def count(self) -> int:
        """Number of available subchannels."""
        return len(self.tones)

    @property
    def total_dims(self) -> int:
        """Real dimensions carried by the usable subchannels."""
        return int(np.sum(self.dims))

    def dims_of(self, tones: np.ndarray) -> np.ndarray:
        """Dimensions of an arbitrary set of positive-half bins."""
        return self.dims_per_bin[np.asarray(tones, dtype=int)]


def dims_per_dft_bin(n_fft: int) -> np.ndarray:
    """Number of real dimensions carried by each DFT bin."""
    dims = np.full(n_fft, 2, dtype=int)
    dims[0] = 1
    dims[n_fft // 2] = 1
    return dims


def build_subchannels(config: DmtConfig) -> SubchannelSet:
    """
    Build the subchannel set for a configuration.

    With oversampling, DC and Nyquist are never loaded. The bin that
    would be Nyquist without oversampling becomes an ordinary complex
    subchannel.
    """
    n = config.n_used
    n_fft = config.n_fft_total
    half = n // 2

    if config.oversampling == 1:
        if config.dc_nyquist:
            tones = np.arange(0, half + 1)
            images = np.arange(n_fft - half + 1, n_fft)
        else:
            tones = np.arange(1, half)
            images = np.arange(n_fft - half + 1, n_fft)
    else:
        if config.dc_nyquist:
            logger.warning("DC and Nyquist tones are not loaded due to oversampling")
        tones = np.arange(1, half + 1)
        images = np.arange(n_fft - half, n_fft)

    dims_table = dims_per_dft_bin(n_fft)
    subchannels = SubchannelSet(
        tones=tones,
        tones_two_sided=np.concatenate([tones, images]),
        dims=dims_table[tones],
        dims_per_bin=dims_table,
        n_fft=n_fft,
    )

    logger.debug(
        f"Subchannels: {subchannels.count} tones, "
        f"{subchannels.total_dims} real dimensions (Nfft={n_fft})"
    )
    return subchannels
