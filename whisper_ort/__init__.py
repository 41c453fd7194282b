"""whisper-ort: Long-form Whisper speech recognition on onnxruntime.

This module provides chunked transcription of arbitrarily long audio with
exported Whisper encoder/decoder graphs, greedy decoding with key/value
cache reuse, streaming output, progress reporting and cancellation.

Example:
    >>> from whisper_ort import WhisperTranscriber
    >>> model = WhisperTranscriber("models/whisper-small")
    >>> text = model.transcribe(audio, language="en")
    >>> for increment in model.transcribe_stream(audio):
    ...     print(increment, end="", flush=True)
"""

from .audio import AudioSource, pcm16_to_float32, prepare_audio
from .backend import InferenceBackend, OrtBackend, TensorSpec
from .chunker import AudioChunker
from .config import GenerationConfig, ModelFiles, PreprocessorConfig
from .data_models import (
    AudioChunk,
    ChunkPlan,
    DecodeResult,
    StopReason,
    TranscriptionInfo,
    TranscriptionResult,
)
from .decoding import GreedyDecoder
from .exceptions import CancellationToken, TranscriptionCancelled
from .features import FeatureExtractor
from .mel import MelFilterbankProvider
from .prompt import PromptBuilder
from .tokenizer import WhisperTokenizer
from .transcriber import WhisperTranscriber

__version__ = "0.1.0"

__all__ = [
    "AudioChunk",
    "AudioChunker",
    "AudioSource",
    "CancellationToken",
    "ChunkPlan",
    "DecodeResult",
    "FeatureExtractor",
    "GenerationConfig",
    "GreedyDecoder",
    "InferenceBackend",
    "MelFilterbankProvider",
    "ModelFiles",
    "OrtBackend",
    "PreprocessorConfig",
    "PromptBuilder",
    "StopReason",
    "TensorSpec",
    "TranscriptionCancelled",
    "TranscriptionInfo",
    "TranscriptionResult",
    "WhisperTokenizer",
    "WhisperTranscriber",
    "pcm16_to_float32",
    "prepare_audio",
]
