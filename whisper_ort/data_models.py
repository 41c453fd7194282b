"""Core data models for whisper-ort.

This module defines the data structures used throughout the whisper-ort
pipeline for representing audio chunks, chunk schedules, decoder state,
decoding outcomes, and transcription metadata.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np


@dataclass
class AudioChunk:
    """Represents one fixed-size window of audio with metadata.

    Every chunk holds exactly one encoder window of samples. Audio that runs
    out before the window is full is padded with silence.

    Attributes:
        audio: Window samples as float32 numpy array (always window-sized)
        start_time: Start time in seconds relative to original audio
        end_time: End time in seconds of the last real (non-padding) sample
        chunk_index: Index in the sequence of chunks (0-based)
        num_samples: Number of real samples copied into the window
    """
    audio: np.ndarray
    start_time: float
    end_time: float
    chunk_index: int
    num_samples: int


@dataclass
class ChunkPlan:
    """Schedule for splitting audio into overlapping windows.

    Attributes:
        num_samples: Total number of samples in the source audio
        window: Samples per window fed to the encoder
        stride: Samples advanced between consecutive windows
        overlap: Samples shared by consecutive windows
        total_chunks: Number of windows needed to cover the audio
    """
    num_samples: int
    window: int
    stride: int
    overlap: int
    total_chunks: int


@dataclass
class TranscriptionInfo:
    """Metadata about the transcription process.

    Attributes:
        duration: Total audio duration in seconds
        num_chunks: Number of chunks the audio was split into
        stride: Samples advanced between chunks
        language: Language code requested, or None for the model default
        task: "transcribe" or "translate"
        processing_time: Total wall-clock time for processing in seconds
        chunks_failed: Number of chunks that degraded to empty text
    """
    duration: float
    num_chunks: int
    stride: int
    language: Optional[str]
    task: str
    processing_time: float
    chunks_failed: int = 0

    @property
    def real_time_factor(self) -> float:
        """Processing time divided by audio duration (lower is faster)."""
        if self.duration <= 0:
            return 0.0
        return self.processing_time / self.duration


class TranscriptionResult:
    """Append-only text accumulated across the chunks of one transcription.

    Chunk texts are trimmed and joined with newline boundaries. A blank chunk
    still contributes its boundary once text has been accumulated, so the
    line structure follows the chunk structure.
    """

    def __init__(self):
        self._parts: List[str] = []
        self._length = 0

    def append(self, chunk_text: str) -> str:
        """Append one chunk's text and return the increment that was added."""
        increment = ""
        stripped = chunk_text.strip() if chunk_text else ""
        if self._length > 0:
            increment = "\n"
        increment += stripped
        if increment:
            self._parts.append(increment)
            self._length += len(increment)
        return increment

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return self._length


class StopReason(Enum):
    """Why the decode loop stopped generating for a chunk."""
    END_OF_TEXT = "end_of_text"
    START_OF_TRANSCRIPT = "start_of_transcript"
    TOKEN_BUDGET = "token_budget"
    REPETITION = "repetition"
    MAX_TOKENS = "max_tokens"
    SHAPE_MISMATCH = "shape_mismatch"
    BACKEND_ERROR = "backend_error"

    @property
    def failed(self) -> bool:
        return self in (StopReason.SHAPE_MISMATCH, StopReason.BACKEND_ERROR)


@dataclass
class SpecialTokens:
    """Token ids the decode loop needs besides the prompt.

    Attributes:
        sot: Start-of-transcript token id
        eot: End-of-text token id
    """
    sot: int
    eot: int


@dataclass
class DecodeState:
    """Mutable state of one chunk's autoregressive decoding.

    A fresh state is created for every chunk and owned by a single decode
    call, so concurrent transcriptions never share cache tensors.

    Attributes:
        tokens: Prompt followed by generated token ids
        prompt_length: Number of leading prompt tokens (never trimmed)
        kv_cache: Past key/value tensors keyed by decoder input name
        cache_available: False once the decoder proved unable to cache
        step: Number of decoder calls made so far
    """
    tokens: List[int]
    prompt_length: int
    kv_cache: Dict[str, np.ndarray] = field(default_factory=dict)
    cache_available: bool = True
    step: int = 0

    @property
    def generated_count(self) -> int:
        return len(self.tokens) - self.prompt_length

    @property
    def generated(self) -> List[int]:
        return self.tokens[self.prompt_length:]

    @property
    def use_cache(self) -> bool:
        return self.cache_available and bool(self.kv_cache)


@dataclass
class ShapeValidation:
    """Outcome of checking synthesized decoder inputs against declared ranks.

    Attributes:
        ok: True when every provided input has the declared rank
        mismatches: Names of inputs whose rank differs from the declaration
        missing: Names of declared inputs that were not provided
    """
    ok: bool
    mismatches: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class DecodeResult:
    """Outcome of decoding one chunk.

    Attributes:
        tokens: Prompt followed by the kept generated tokens
        generated: Generated tokens only
        stop_reason: Condition that ended generation
        steps: Number of decoder calls made
        text: Detokenized text (empty when decoding failed)
    """
    tokens: List[int]
    generated: List[int]
    stop_reason: StopReason
    steps: int
    text: str = ""
