"""Log-mel spectrogram extraction.

Reproduces Whisper's reference preprocessing step by step: reflect padding,
a periodic Hann window, an unnormalized FFT, the mel filterbank, log10 with
a 1e-10 floor, and dynamic range compression to 8 decades below the global
maximum followed by the ``(x + 4) / 4`` rescale. Any deviation in these steps
changes model output materially.
"""

import logging
from typing import Dict, Optional

import numpy as np
import torch
import torch.nn.functional as F

from .constants import (
    CHUNK_LENGTH,
    DEFAULT_N_MELS,
    DYNAMIC_RANGE,
    HOP_LENGTH,
    LOG_FLOOR,
    N_FFT,
    SAMPLE_RATE,
)
from .mel import MelFilterbankProvider

logger = logging.getLogger(__name__)


def hann_window(size: int = N_FFT) -> torch.Tensor:
    """Periodic Hann window, ``0.5 * (1 - cos(2*pi*i / size))``."""
    i = torch.arange(size, dtype=torch.float64)
    return (0.5 * (1.0 - torch.cos(2.0 * np.pi * i / size))).to(torch.float32)


def reflect_pad(audio: torch.Tensor, pad: int) -> torch.Tensor:
    """Mirror ``pad`` samples onto both ends without repeating the edge sample."""
    return F.pad(audio.view(1, 1, -1), (pad, pad), mode="reflect").view(-1)


class FeatureExtractor:
    """Turns fixed-length PCM windows into normalized log-mel tensors.

    Attributes:
        n_mels: Number of mel bands
        n_frames: Number of STFT frames kept per window
        filterbank: Provider of the mel filterbank
    """

    def __init__(
        self,
        n_mels: int = DEFAULT_N_MELS,
        filterbank: Optional[MelFilterbankProvider] = None,
        sample_rate: int = SAMPLE_RATE,
    ):
        if n_mels <= 0:
            raise ValueError(f"n_mels must be positive, got {n_mels}")

        self.n_mels = n_mels
        self.sample_rate = sample_rate
        self.n_frames = (sample_rate * CHUNK_LENGTH) // HOP_LENGTH
        self.filterbank = filterbank or MelFilterbankProvider(sample_rate=sample_rate)
        self._window = hann_window(N_FFT)

    def power_spectrogram(self, audio: np.ndarray) -> torch.Tensor:
        """Compute |X|^2 for the first ``n_frames`` frames.

        ``torch.fft.rfft`` with the default ``norm="backward"`` applies no
        scaling on the forward transform, so its output already equals the
        unnormalized DFT and no correction factor is needed.

        Returns:
            float32 tensor of shape [n_fft // 2 + 1, n_frames]
        """
        samples = torch.from_numpy(np.ascontiguousarray(audio, dtype=np.float32))
        padded = reflect_pad(samples, N_FFT // 2)

        needed = (self.n_frames - 1) * HOP_LENGTH + N_FFT
        if padded.numel() < needed:
            padded = F.pad(padded, (0, needed - padded.numel()))

        frames = padded.unfold(0, N_FFT, HOP_LENGTH)[: self.n_frames]
        spectrum = torch.fft.rfft(frames * self._window, n=N_FFT, dim=-1)
        return (spectrum.abs() ** 2).T

    @torch.inference_mode()
    def log_mel(self, audio: np.ndarray) -> np.ndarray:
        """Compute the un-normalized log10 mel spectrogram.

        Returns:
            float32 array of shape [n_mels, n_frames]
        """
        power = self.power_spectrogram(audio)
        filters = torch.from_numpy(self.filterbank.get(self.n_mels))
        mel = filters @ power
        return torch.clamp(mel, min=LOG_FLOOR).log10().numpy()

    @torch.inference_mode()
    def __call__(self, audio: np.ndarray) -> np.ndarray:
        """Compute the normalized log-mel spectrogram of one window.

        Args:
            audio: One window of 16 kHz mono samples (1D)

        Returns:
            float32 array of shape [1, n_mels, n_frames], the encoder input
        """
        if audio.ndim != 1:
            raise ValueError(
                f"audio must be 1-dimensional, got shape {audio.shape}"
            )
        if len(audio) <= N_FFT // 2:
            raise ValueError(
                f"audio needs more than {N_FFT // 2} samples for reflect padding, "
                f"got {len(audio)}"
            )

        log_spec = torch.from_numpy(self.log_mel(audio))
        log_spec = torch.maximum(log_spec, log_spec.max() - DYNAMIC_RANGE)
        log_spec = (log_spec + 4.0) / 4.0
        return log_spec.unsqueeze(0).numpy()

    @staticmethod
    def stats(features: np.ndarray) -> Dict[str, float]:
        """Summary statistics used for diagnostics.

        Returns:
            Dict with min, max and mean of the finite values plus nan/inf flags
        """
        finite = features[np.isfinite(features)]
        return {
            "min": float(finite.min()) if finite.size else float("nan"),
            "max": float(finite.max()) if finite.size else float("nan"),
            "mean": float(finite.mean()) if finite.size else float("nan"),
            "nan": bool(np.isnan(features).any()),
            "inf": bool(np.isinf(features).any()),
        }
