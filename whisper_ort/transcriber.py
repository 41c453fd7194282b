"""Main API class for whisper-ort.

This module provides the WhisperTranscriber class, which is the primary
interface for using whisper-ort. It orchestrates model loading, parameter
validation, and the chunked transcription pipeline: chunk scheduling,
feature extraction, the encoder pass, and greedy decoding.
"""

import asyncio
import functools
import logging
import math
import threading
import time
from typing import AsyncIterator, Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from .audio import AudioSource, prepare_audio
from .backend import DECODER, ENCODER, InferenceBackend, OrtBackend, describe_decoder_inputs
from .chunker import AudioChunker
from .config import GenerationConfig, ModelFiles, PreprocessorConfig
from .constants import SAMPLE_RATE
from .data_models import AudioChunk, SpecialTokens, TranscriptionInfo, TranscriptionResult
from .decoding import GreedyDecoder
from .exceptions import CancellationToken, TranscriptionCancelled
from .features import FeatureExtractor
from .mel import MelFilterbankProvider
from .prompt import PromptBuilder
from .tokenizer import WhisperTokenizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class WhisperTranscriber:
    """Main interface for whisper-ort functionality.

    WhisperTranscriber runs exported Whisper encoder/decoder graphs over
    arbitrarily long audio, one 30 second window at a time, producing text
    either in one piece or incrementally per chunk.

    Example:
        >>> model = WhisperTranscriber("models/whisper-small")
        >>> text = model.transcribe(audio, language="en")
        >>> for increment in model.transcribe_stream(audio):
        ...     print(increment, end="", flush=True)

    Attributes:
        files: Resolved model files (None when built from components)
        backend: Backend executing the encoder and decoder graphs
        tokenizer: Vocabulary of the model
        prompt_builder: Resolves special tokens and builds decoder prompts
        feature_extractor: Computes the encoder's log-mel input
        decoder: Greedy decode loop
    """

    def __init__(
        self,
        model_dir: str,
        providers: Optional[List[str]] = None,
        num_threads: int = 0,
    ):
        """Load a model from an exported model directory.

        Args:
            model_dir: Directory holding encoder_model.onnx,
                decoder_model_merged.onnx, tokenizer.json and the optional
                configuration documents
            providers: onnxruntime execution providers in priority order
                (default: CPU only)
            num_threads: Intra-op threads for onnxruntime; 0 lets it decide

        Raises:
            TypeError: If parameters have invalid types
            ValueError: If parameters are invalid
            FileNotFoundError: If the directory or a required file is missing
        """
        if not isinstance(model_dir, str):
            raise TypeError(
                f"model_dir must be str, got {type(model_dir).__name__}"
            )
        if providers is not None and not isinstance(providers, list):
            raise TypeError(
                f"providers must be list, got {type(providers).__name__}"
            )
        if not isinstance(num_threads, int) or isinstance(num_threads, bool):
            raise TypeError(
                f"num_threads must be int, got {type(num_threads).__name__}"
            )
        if num_threads < 0:
            raise ValueError(
                f"num_threads must be non-negative, got {num_threads}"
            )

        files = ModelFiles.from_directory(model_dir)
        logger.info(f"Loading model '{files.name}' from '{files.root}'")

        backend = OrtBackend(
            files.encoder,
            files.decoder,
            providers=providers,
            num_threads=num_threads,
        )
        self._setup(
            backend=backend,
            tokenizer=WhisperTokenizer.from_file(files.tokenizer),
            generation_config=GenerationConfig.from_file(files.generation_config),
            preprocessor_config=PreprocessorConfig.from_file(
                files.preprocessor_config, files.config
            ),
        )
        self.files = files

        logger.info(f"WhisperTranscriber initialized: model={files.name}")

    @classmethod
    def from_components(
        cls,
        backend: InferenceBackend,
        tokenizer: Optional[WhisperTokenizer] = None,
        generation_config: Optional[GenerationConfig] = None,
        preprocessor_config: Optional[PreprocessorConfig] = None,
    ) -> "WhisperTranscriber":
        """Build a transcriber around an existing backend.

        Missing components fall back to an empty vocabulary and default
        configuration.
        """
        transcriber = cls.__new__(cls)
        transcriber._setup(
            backend=backend,
            tokenizer=tokenizer or WhisperTokenizer.empty(),
            generation_config=generation_config or GenerationConfig(),
            preprocessor_config=preprocessor_config or PreprocessorConfig(),
        )
        transcriber.files = None
        return transcriber

    def _setup(
        self,
        backend: InferenceBackend,
        tokenizer: WhisperTokenizer,
        generation_config: GenerationConfig,
        preprocessor_config: PreprocessorConfig,
    ) -> None:
        self.backend = backend
        self.tokenizer = tokenizer
        self.prompt_builder = PromptBuilder(tokenizer, generation_config)
        self.feature_extractor = FeatureExtractor(
            n_mels=preprocessor_config.n_mels,
            filterbank=MelFilterbankProvider(preprocessor_config.mel_filters),
        )
        self.decoder = GreedyDecoder(
            backend,
            describe_decoder_inputs(backend.input_specs(DECODER)),
            tokenizer,
        )

        encoder_inputs = backend.input_specs(ENCODER)
        self._encoder_input = encoder_inputs[0].name if encoder_inputs else "input_features"
        # In-flight calls keyed by call, ordered by most recent report.
        self._progress: Dict[object, float] = {}
        self._progress_lock = threading.Lock()

    @property
    def current_progress(self) -> Optional[float]:
        """Fraction of chunks completed by the most recently reporting call.

        Each call tracks its own fraction, so a call that finishes does not
        clear the progress of another call still running on this instance.
        None when no transcription is in flight.
        """
        with self._progress_lock:
            if not self._progress:
                return None
            return list(self._progress.values())[-1]

    def _report_progress(
        self,
        call: object,
        value: Optional[float],
        callback: Optional[ProgressCallback],
    ) -> None:
        with self._progress_lock:
            self._progress.pop(call, None)
            if value is not None:
                self._progress[call] = value
        if value is not None and callback is not None:
            callback(value)

    @staticmethod
    def _validate_options(
        language: Optional[str],
        translate: bool,
        include_timestamps: bool,
        use_overlap: bool,
        chunk_duration: float,
        cancel: Optional[CancellationToken],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        # Validate language parameter
        if language is not None:
            if not isinstance(language, str):
                raise TypeError(
                    f"language must be str or None, got {type(language).__name__}"
                )
            if not language:
                raise ValueError("language cannot be empty string")

        for name, value in (
            ("translate", translate),
            ("include_timestamps", include_timestamps),
            ("use_overlap", use_overlap),
        ):
            if not isinstance(value, bool):
                raise TypeError(
                    f"{name} must be bool, got {type(value).__name__}"
                )

        # Validate chunk_duration parameter
        if not isinstance(chunk_duration, (int, float)) or isinstance(chunk_duration, bool):
            raise TypeError(
                f"chunk_duration must be numeric, got {type(chunk_duration).__name__}"
            )
        if not math.isfinite(chunk_duration) or chunk_duration <= 0:
            raise ValueError(
                f"chunk_duration must be positive and finite, got {chunk_duration}"
            )

        if cancel is not None and not isinstance(cancel, CancellationToken):
            raise TypeError(
                f"cancel must be CancellationToken, got {type(cancel).__name__}"
            )
        if progress_callback is not None and not callable(progress_callback):
            raise TypeError("progress_callback must be callable")

    def _transcribe_chunk(
        self,
        chunk: AudioChunk,
        prompt: List[int],
        special: SpecialTokens,
        chunk_duration: float,
        cancel: Optional[CancellationToken],
    ) -> Optional[str]:
        """Run features, encoder and decoder for one chunk.

        Returns:
            The chunk's text, or None when the chunk failed
        """
        try:
            features = self.feature_extractor(chunk.audio)
            stats = FeatureExtractor.stats(features)
            logger.debug(
                f"Chunk {chunk.chunk_index}: mel min={stats['min']:.4f} "
                f"max={stats['max']:.4f} mean={stats['mean']:.4f}"
            )
            if stats["nan"] or stats["inf"]:
                logger.warning(
                    f"Chunk {chunk.chunk_index}: features contain NaN/Inf, skipping"
                )
                return None

            if cancel is not None:
                cancel.raise_if_cancelled()

            outputs = self.backend.run(ENCODER, {self._encoder_input: features})
            if not outputs:
                raise RuntimeError("encoder returned no outputs")
            # Own the hidden states; backends may reuse their output buffers
            hidden_states = np.array(
                outputs.get("last_hidden_state", next(iter(outputs.values()))),
                copy=True,
            )
            logger.debug(
                f"Chunk {chunk.chunk_index}: encoder hidden states "
                f"shape={list(hidden_states.shape)}"
            )

            result = self.decoder.decode(
                hidden_states, prompt, special, chunk_duration, cancel
            )
        except TranscriptionCancelled:
            raise
        except Exception:
            logger.exception(f"Chunk {chunk.chunk_index}: transcription failed")
            return None

        if result.stop_reason.failed:
            return None
        logger.info(
            f"Chunk {chunk.chunk_index}: {len(result.generated)} tokens "
            f"({result.stop_reason.value}), {len(result.text)} characters"
        )
        return result.text

    def _generate(
        self,
        samples: np.ndarray,
        language: Optional[str],
        translate: bool,
        include_timestamps: bool,
        use_overlap: bool,
        chunk_duration: float,
        cancel: Optional[CancellationToken],
        progress_callback: Optional[ProgressCallback],
        info: TranscriptionInfo,
    ) -> Iterator[str]:
        """Yield one text increment per chunk; raises on cancellation."""
        chunker = AudioChunker(chunk_duration=chunk_duration, use_overlap=use_overlap)
        plan = chunker.plan(len(samples))
        info.num_chunks = plan.total_chunks
        info.stride = plan.stride
        logger.info(
            f"Transcribing {info.duration:.2f}s: chunk_duration={chunk_duration}s, "
            f"stride={plan.stride}, overlap={plan.overlap}, "
            f"total_chunks={plan.total_chunks}"
        )

        prompt = self.prompt_builder.build(language, translate, include_timestamps)
        special = self.prompt_builder.special_tokens()
        result = TranscriptionResult()
        call = object()

        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            self._report_progress(call, 0.0, progress_callback)

            for chunk in chunker.iter_chunks(samples):
                if cancel is not None:
                    cancel.raise_if_cancelled()

                text = self._transcribe_chunk(
                    chunk, prompt, special, chunk_duration, cancel
                )
                if text is None:
                    info.chunks_failed += 1
                    text = ""

                increment = result.append(text)
                self._report_progress(
                    call,
                    (chunk.chunk_index + 1) / plan.total_chunks, progress_callback
                )
                yield increment
        finally:
            self._report_progress(call, None, progress_callback)

    def _start(
        self,
        audio: Union[np.ndarray, AudioSource],
        language: Optional[str],
        translate: bool,
        include_timestamps: bool,
        use_overlap: bool,
        chunk_duration: float,
        cancel: Optional[CancellationToken],
        progress_callback: Optional[ProgressCallback],
    ) -> Tuple[Iterator[str], TranscriptionInfo]:
        self._validate_options(
            language,
            translate,
            include_timestamps,
            use_overlap,
            chunk_duration,
            cancel,
            progress_callback,
        )
        samples = prepare_audio(audio)

        info = TranscriptionInfo(
            duration=len(samples) / SAMPLE_RATE,
            num_chunks=0,
            stride=0,
            language=language,
            task="translate" if translate else "transcribe",
            processing_time=0.0,
        )
        increments = self._generate(
            samples,
            language,
            translate,
            include_timestamps,
            use_overlap,
            chunk_duration,
            cancel,
            progress_callback,
            info,
        )
        return increments, info

    def transcribe_with_info(
        self,
        audio: Union[np.ndarray, AudioSource],
        language: Optional[str] = None,
        translate: bool = False,
        include_timestamps: bool = False,
        use_overlap: bool = True,
        chunk_duration: float = 20.0,
        cancel: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Tuple[str, TranscriptionInfo]:
        """Transcribe audio and report how it was processed.

        Accepts the same arguments as ``transcribe``.

        Returns:
            text: Transcription, one line per chunk
            info: Transcription metadata
        """
        start_time = time.time()
        increments, info = self._start(
            audio,
            language,
            translate,
            include_timestamps,
            use_overlap,
            chunk_duration,
            cancel,
            progress_callback,
        )
        text = "".join(increments)
        info.processing_time = time.time() - start_time

        logger.info(
            f"Transcribed {info.duration:.2f}s in {info.processing_time:.2f}s "
            f"(RTF: {info.real_time_factor:.3f}, chunks: {info.num_chunks}, "
            f"failed: {info.chunks_failed})"
        )
        return text, info

    def transcribe(
        self,
        audio: Union[np.ndarray, AudioSource],
        language: Optional[str] = None,
        translate: bool = False,
        include_timestamps: bool = False,
        use_overlap: bool = True,
        chunk_duration: float = 20.0,
        cancel: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """Transcribe audio of any length.

        Chunks that fail (backend errors, malformed decoder inputs, broken
        features) contribute empty text; the remaining chunks still run.

        Args:
            audio: 16 kHz mono float32 samples, or an AudioSource to convert
            language: Language code (default: None, the model's default)
            translate: Translate into English instead of transcribing
            include_timestamps: Let the model emit timestamp tokens
            use_overlap: Overlap consecutive chunks by up to two seconds
            chunk_duration: Seconds of audio advanced per chunk (default: 20)
            cancel: Token checked between chunks and decode steps
            progress_callback: Called with the completed fraction after
                every chunk

        Returns:
            Transcription, chunks separated by newlines

        Raises:
            TypeError: If parameters have invalid types
            ValueError: If parameters are invalid or audio conversion fails
            TranscriptionCancelled: If ``cancel`` was cancelled
        """
        text, _ = self.transcribe_with_info(
            audio,
            language=language,
            translate=translate,
            include_timestamps=include_timestamps,
            use_overlap=use_overlap,
            chunk_duration=chunk_duration,
            cancel=cancel,
            progress_callback=progress_callback,
        )
        return text

    def transcribe_stream(
        self,
        audio: Union[np.ndarray, AudioSource],
        language: Optional[str] = None,
        translate: bool = False,
        include_timestamps: bool = False,
        use_overlap: bool = True,
        chunk_duration: float = 20.0,
        cancel: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Iterator[str]:
        """Transcribe audio, yielding one text increment per chunk.

        Arguments are validated immediately; the work happens as the
        iterator is consumed. Joining every increment gives the same text
        as ``transcribe``. On cancellation the iterator simply ends, without
        a trailing increment.

        Raises:
            TypeError: If parameters have invalid types
            ValueError: If parameters are invalid or audio conversion fails
        """
        increments, _ = self._start(
            audio,
            language,
            translate,
            include_timestamps,
            use_overlap,
            chunk_duration,
            cancel,
            progress_callback,
        )
        return self._until_cancelled(increments)

    @staticmethod
    def _until_cancelled(increments: Iterator[str]) -> Iterator[str]:
        try:
            yield from increments
        except TranscriptionCancelled:
            logger.info("Transcription stream cancelled")

    async def transcribe_async(
        self,
        audio: Union[np.ndarray, AudioSource],
        **kwargs,
    ) -> str:
        """Run ``transcribe`` in the default executor.

        Accepts the same keyword arguments as ``transcribe``.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.transcribe, audio, **kwargs)
        )

    async def transcribe_stream_async(
        self,
        audio: Union[np.ndarray, AudioSource],
        **kwargs,
    ) -> AsyncIterator[str]:
        """Async variant of ``transcribe_stream``.

        Each chunk is processed in the default executor so the event loop
        stays responsive. Accepts the same keyword arguments as
        ``transcribe_stream``.
        """
        stream = self.transcribe_stream(audio, **kwargs)
        loop = asyncio.get_running_loop()
        done = object()

        while True:
            increment = await loop.run_in_executor(None, next, stream, done)
            if increment is done:
                break
            yield increment
