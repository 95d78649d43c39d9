"""
Per-subchannel gain-to-noise ratio.

The gain-to-noise ratio g_n is the SNR per real dimension obtained for a
unit energy per dimension on tone n. It is the only channel information
the loaders consume.
"""

import logging
from typing import Optional

import numpy as np

from dmt.config import EqualizerType
from dmt.spectral import PRECODER_TYPES, SpectralModel

logger = logging.getLogger(__name__)


def _safe_ratio(gain: np.ndarray, noise: np.ndarray) -> np.ndarray:
    gn = np.zeros_like(gain, dtype=float)
    valid = (noise > 0) & (gain > 0)
    gn[valid] = gain[valid] / noise[valid]
    # A noiseless tone with gain is unbounded; zero gain always gives zero
    gn[(noise <= 0) & (gain > 0)] = np.inf
    return gn


def compute_gain_to_noise(
    spectral: SpectralModel,
    noise_psd: float,
    icpd_psd: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Gain-to-noise ratio of every usable subchannel.

    Args:
        spectral: Spectral model of the (equalized) channel
        noise_psd: Noise PSD per dimension, N0/2
        icpd_psd: ICPD PSD over all Nfft bins (zero if None)

    Returns:
        Read-only array with one non-negative value per subchannel
    """
    n_fft = spectral.n_fft
    tones = spectral.subchannels.tones
    kind = spectral.equalization.kind

    if icpd_psd is None or kind in PRECODER_TYPES:
        icpd_psd = np.zeros(n_fft)
    icpd_psd = np.asarray(icpd_psd, dtype=float)

    if kind == EqualizerType.TEQ:
        # The TEQ colors the noise, while the signal sees the cascade.
        # Without ICPD, |H_eff|^2 / |H_w|^2 reduces to the unequalized
        # ratio, so the TEQ only enters through the ICPD term.
        h_w = spectral.equalizer_response()
        gain = np.abs(spectral.H) ** 2
        noise = noise_psd * np.abs(h_w) ** 2 + icpd_psd
        gn = _safe_ratio(gain, noise)[tones]
    elif kind in PRECODER_TYPES:
        w_norm = np.asarray(spectral.equalization.w_norm, dtype=float)
        gain = np.abs(spectral.tone_response) ** 2
        gn = _safe_ratio(gain, noise_psd * w_norm)
    else:
        gain = np.abs(spectral.tone_response) ** 2
        gn = _safe_ratio(gain, noise_psd + icpd_psd[tones])

    gn.setflags(write=False)

    logger.debug(
        f"Gain-to-noise ({kind.name}): "
        f"max={10 * np.log10(np.max(gn) + 1e-300):.1f} dB, "
        f"zero tones={int(np.sum(gn == 0))}"
    )
    return gn
