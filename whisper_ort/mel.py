"""Mel filterbank construction and caching.

Whisper checkpoints ship the filterbank they were trained with in
``preprocessor_config.json``. When it is present it is used verbatim;
otherwise a Slaney-scale filterbank (librosa's default, which Whisper's
filters were generated with) is computed analytically.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from .constants import N_FFT, SAMPLE_RATE

logger = logging.getLogger(__name__)

# Slaney mel scale: linear below 1 kHz, logarithmic above
_F_SP = 200.0 / 3.0
_MIN_LOG_HZ = 1000.0
_MIN_LOG_MEL = _MIN_LOG_HZ / _F_SP
_LOG_STEP = np.log(6.4) / 27.0


def hz_to_mel(freq):
    """Convert frequencies in Hz to Slaney mels."""
    freq = np.asarray(freq, dtype=np.float64)
    linear = freq / _F_SP
    log = _MIN_LOG_MEL + np.log(np.maximum(freq, _MIN_LOG_HZ) / _MIN_LOG_HZ) / _LOG_STEP
    return np.where(freq >= _MIN_LOG_HZ, log, linear)


def mel_to_hz(mels):
    """Convert Slaney mels to frequencies in Hz."""
    mels = np.asarray(mels, dtype=np.float64)
    linear = _F_SP * mels
    log = _MIN_LOG_HZ * np.exp(_LOG_STEP * (mels - _MIN_LOG_MEL))
    return np.where(mels >= _MIN_LOG_MEL, log, linear)


def slaney_mel_filterbank(
    n_mels: int,
    n_fft: int = N_FFT,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Compute a Slaney-normalized triangular mel filterbank.

    Matches ``librosa.filters.mel(sr, n_fft, n_mels, htk=False, norm="slaney")``.

    Args:
        n_mels: Number of mel bands
        n_fft: FFT size the power spectrum was computed with
        sample_rate: Audio sample rate in Hz

    Returns:
        float32 array of shape [n_mels, n_fft // 2 + 1]
    """
    if n_mels <= 0:
        raise ValueError(f"n_mels must be positive, got {n_mels}")

    n_bins = n_fft // 2 + 1
    fft_freqs = np.arange(n_bins, dtype=np.float64) * sample_rate / n_fft

    mel_min = hz_to_mel(0.0)
    mel_max = hz_to_mel(sample_rate / 2.0)
    mel_points = np.linspace(mel_min, mel_max, n_mels + 2)
    hz_points = mel_to_hz(mel_points)

    weights = np.zeros((n_mels, n_bins), dtype=np.float64)
    for m in range(n_mels):
        lower, center, upper = hz_points[m], hz_points[m + 1], hz_points[m + 2]

        if center > lower:
            rising = (fft_freqs >= lower) & (fft_freqs <= center)
            weights[m, rising] = (fft_freqs[rising] - lower) / (center - lower)
        if upper > center:
            falling = (fft_freqs > center) & (fft_freqs <= upper)
            weights[m, falling] = (upper - fft_freqs[falling]) / (upper - center)

        bandwidth = upper - lower
        if bandwidth > 0:
            weights[m] *= 2.0 / bandwidth

    return weights.astype(np.float32)


def filters_from_config(
    raw: Optional[Sequence[Sequence[float]]],
    n_mels: int,
    n_fft: int = N_FFT,
) -> Optional[np.ndarray]:
    """Read a filterbank embedded in a preprocessor config.

    Accepts the Hugging Face layout [n_mels, n_fft // 2 + 1] as well as its
    transpose.

    Returns:
        float32 array of shape [n_mels, n_fft // 2 + 1], or None when the
        data is missing or has an unexpected shape
    """
    if raw is None:
        return None

    try:
        filters = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError):
        logger.warning("mel_filters in preprocessor config is not a numeric matrix")
        return None

    n_bins = n_fft // 2 + 1
    if filters.ndim != 2 or filters.size == 0:
        logger.warning(f"mel_filters has unexpected shape {filters.shape}")
        return None
    if filters.shape == (n_mels, n_bins):
        return filters
    if filters.shape == (n_bins, n_mels):
        return np.ascontiguousarray(filters.T)

    logger.warning(
        f"mel_filters shape {list(filters.shape)} doesn't match "
        f"expected [{n_mels}, {n_bins}]"
    )
    return None


class MelFilterbankProvider:
    """Supplies the filterbank for a model, cached per number of mel bands.

    The cache is a plain dict: reads never block, and two threads missing the
    cache at once both compute the (identical) filterbank and the last write
    wins.

    Attributes:
        mel_filters: Raw filter weights from the preprocessor config, if any
        n_fft: FFT size the filterbank is built for
        sample_rate: Audio sample rate in Hz
    """

    def __init__(
        self,
        mel_filters: Optional[Sequence[Sequence[float]]] = None,
        n_fft: int = N_FFT,
        sample_rate: int = SAMPLE_RATE,
    ):
        self.mel_filters = mel_filters
        self.n_fft = n_fft
        self.sample_rate = sample_rate
        self._cache: Dict[int, np.ndarray] = {}

    def get(self, n_mels: int) -> np.ndarray:
        """Return the [n_mels, n_fft // 2 + 1] filterbank."""
        filters = self._cache.get(n_mels)
        if filters is not None:
            return filters

        filters = filters_from_config(self.mel_filters, n_mels, self.n_fft)
        if filters is not None:
            logger.info(
                f"Loaded {filters.shape[0]}x{filters.shape[1]} mel filters "
                f"from preprocessor config"
            )
        else:
            logger.warning(
                f"No usable mel filters in preprocessor config; "
                f"computing {n_mels} Slaney mel filters"
            )
            filters = slaney_mel_filterbank(n_mels, self.n_fft, self.sample_rate)

        self._cache[n_mels] = filters
        return filters
