"""Audio input normalization.

The transcriber works on 16 kHz mono float32 samples. Callers either pass
such samples directly as a numpy array, or an ``AudioSource`` that knows how
to resample and downmix itself; conversion itself is the source's job.
"""

import logging
from typing import Protocol, Union, runtime_checkable

import numpy as np

from .constants import SAMPLE_RATE

logger = logging.getLogger(__name__)


@runtime_checkable
class AudioSource(Protocol):
    """Audio buffer that can convert itself in place.

    Attributes:
        data: Samples, interleaved when there is more than one channel
        sample_rate: Sample rate in Hz
        channels: Number of channels
    """

    data: np.ndarray
    sample_rate: int
    channels: int

    def resample(self, target_rate: int) -> bool:
        """Resample in place; return False if the conversion failed."""
        ...

    def rechannel(self, target_channels: int) -> bool:
        """Change the channel count in place; return False on failure."""
        ...


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Convert PCM16 little-endian bytes to float32 samples in [-1, 1]."""
    audio = np.frombuffer(data, dtype=np.int16).astype(np.float32)
    audio /= 32768.0
    return audio


def prepare_audio(audio: Union[np.ndarray, AudioSource]) -> np.ndarray:
    """Return 16 kHz mono float32 samples for the transcriber.

    Numpy arrays are taken to be 16 kHz mono already. An ``AudioSource`` is
    asked to downmix to mono, then to resample to 16 kHz.

    Raises:
        TypeError: If audio is neither a numpy array nor an AudioSource
        ValueError: If the samples are not 1-dimensional or a conversion fails
    """
    if isinstance(audio, np.ndarray):
        samples = audio
    elif isinstance(audio, AudioSource):
        logger.info(
            f"Preparing audio (sr={audio.sample_rate}, ch={audio.channels}, "
            f"samples={len(audio.data)})"
        )
        if audio.channels != 1:
            logger.info(f"Rechannel from {audio.channels} to 1")
            if not audio.rechannel(1):
                raise ValueError(
                    f"Failed to convert audio from {audio.channels} channels to mono"
                )
        if audio.sample_rate != SAMPLE_RATE:
            logger.info(f"Resample from {audio.sample_rate} to {SAMPLE_RATE}")
            if not audio.resample(SAMPLE_RATE):
                raise ValueError(
                    f"Failed to resample audio from {audio.sample_rate} Hz "
                    f"to {SAMPLE_RATE} Hz"
                )
        samples = np.asarray(audio.data)
    else:
        raise TypeError(
            f"audio must be np.ndarray or AudioSource, got {type(audio).__name__}"
        )

    if samples.ndim != 1:
        raise ValueError(
            f"audio array must be 1-dimensional, got shape {samples.shape}"
        )
    return samples.astype(np.float32, copy=False)
