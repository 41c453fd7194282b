"""Audio chunking for long audio support.

This module provides functionality to split arbitrarily long audio into
fixed-size, overlapping encoder windows. Every window has the full encoder
length; the stride between windows is derived from the requested chunk
duration, so shorter durations simply advance more slowly through the audio.
"""

import math
from typing import Iterator

import numpy as np

from .constants import N_SAMPLES, SAMPLE_RATE
from .data_models import AudioChunk, ChunkPlan

# Upper bound for the overlap between consecutive windows, in seconds
MAX_OVERLAP_SECONDS = 2


class AudioChunker:
    """Handles splitting long audio into encoder windows.

    The AudioChunker schedules windows of ``window`` samples that start
    ``stride`` samples apart. With overlap enabled consecutive windows share
    up to two seconds of audio, which helps maintain continuity at chunk
    boundaries.

    Attributes:
        chunk_duration: Seconds of audio advanced per chunk (before overlap)
        use_overlap: Whether consecutive windows overlap
        sample_rate: Audio sample rate in Hz
        window: Samples per encoder window
    """

    def __init__(
        self,
        chunk_duration: float = 20.0,
        use_overlap: bool = True,
        sample_rate: int = SAMPLE_RATE,
        window: int = N_SAMPLES,
    ):
        """Initialize audio chunker.

        Args:
            chunk_duration: Chunk duration in seconds (default: 20.0)
            use_overlap: Overlap consecutive chunks (default: True)
            sample_rate: Audio sample rate in Hz (default: 16000)
            window: Encoder window length in samples (default: 480000)

        Raises:
            ValueError: If chunk_duration is not finite, or chunk_duration, sample_rate
                or window are non-positive
        """
        if not math.isfinite(chunk_duration) or chunk_duration <= 0:
            raise ValueError(
                f"chunk_duration must be positive and finite, got {chunk_duration}"
            )
        if sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be positive, got {sample_rate}"
            )
        if window <= 0:
            raise ValueError(
                f"window must be positive, got {window}"
            )

        self.chunk_duration = chunk_duration
        self.use_overlap = use_overlap
        self.sample_rate = sample_rate
        self.window = window

    def plan(self, num_samples: int) -> ChunkPlan:
        """Compute the stride, overlap and chunk count for an audio length.

        Args:
            num_samples: Total number of samples in the audio

        Returns:
            ChunkPlan describing the windows covering the audio
        """
        if num_samples < 0:
            raise ValueError(
                f"num_samples must be non-negative, got {num_samples}"
            )

        duration_samples = max(
            self.sample_rate, int(self.chunk_duration * self.sample_rate)
        )
        effective_window = min(duration_samples, self.window)
        if self.use_overlap:
            overlap = min(
                effective_window // 2, MAX_OVERLAP_SECONDS * self.sample_rate
            )
        else:
            overlap = 0
        stride = max(1, effective_window - overlap)
        total_chunks = math.ceil(num_samples / stride)

        return ChunkPlan(
            num_samples=num_samples,
            window=self.window,
            stride=stride,
            overlap=overlap,
            total_chunks=total_chunks,
        )

    def chunk_at(
        self,
        audio: np.ndarray,
        index: int,
        plan: ChunkPlan,
    ) -> AudioChunk:
        """Cut one window out of the audio.

        Copies ``min(window, N - offset)`` real samples into a zero-filled
        window, so the last chunk is padded with silence.

        Args:
            audio: Audio samples as numpy array (1D)
            index: Chunk index within the plan
            plan: Plan produced by ``plan(len(audio))``

        Returns:
            AudioChunk holding a window-sized float32 buffer
        """
        if not 0 <= index < plan.total_chunks:
            raise ValueError(
                f"chunk index {index} out of range for {plan.total_chunks} chunks"
            )

        offset = index * plan.stride
        remaining = max(0, len(audio) - offset)
        copy_length = min(plan.window, remaining)

        buffer = np.zeros(plan.window, dtype=np.float32)
        buffer[:copy_length] = audio[offset:offset + copy_length]

        return AudioChunk(
            audio=buffer,
            start_time=offset / self.sample_rate,
            end_time=(offset + copy_length) / self.sample_rate,
            chunk_index=index,
            num_samples=copy_length,
        )

    def iter_chunks(self, audio: np.ndarray) -> Iterator[AudioChunk]:
        """Lazily split audio into windows.

        Empty audio yields no chunks.

        Args:
            audio: Audio samples as numpy array (1D)

        Yields:
            AudioChunk objects in order

        Raises:
            ValueError: If audio is not one-dimensional
        """
        if audio.ndim != 1:
            raise ValueError(
                f"audio must be 1-dimensional, got shape {audio.shape}"
            )

        plan = self.plan(len(audio))
        for index in range(plan.total_chunks):
            yield self.chunk_at(audio, index, plan)
