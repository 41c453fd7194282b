"""Greedy autoregressive decoding with key/value cache reuse.

One ``GreedyDecoder.decode`` call turns one chunk's encoder output into
tokens. The first step feeds the whole prompt with empty caches; every later
step feeds only the newest token and the ``present.*`` tensors the previous
step returned. Generation stops on end-of-text, on a stray
start-of-transcript, when the per-chunk token budget is spent, or when the
output starts looping.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .backend import DECODER, DecoderInput, DecoderInputKind, InferenceBackend
from .constants import MAX_TOKENS
from .data_models import (
    DecodeResult,
    DecodeState,
    ShapeValidation,
    SpecialTokens,
    StopReason,
)
from .exceptions import CancellationToken
from .tokenizer import WhisperTokenizer

logger = logging.getLogger(__name__)

MIN_REPEAT_WINDOW = 2
MAX_REPEAT_WINDOW = 8
REPEAT_BLOCKS = 3


def min_generated_tokens(chunk_duration: float) -> int:
    """Tokens to generate before end-of-text is allowed."""
    return min(60, max(10, int(chunk_duration * 2)))


def token_budget(chunk_duration: float, max_tokens: int = MAX_TOKENS) -> int:
    """Generated tokens allowed per chunk, about six per second of audio."""
    return min(max_tokens, max(80, int(chunk_duration * 6)))


def select_token(logits: np.ndarray, banned: Optional[int] = None) -> int:
    """Greedy argmax over the vocabulary at the last sequence position.

    Args:
        logits: Decoder logits shaped [batch, seq, vocab] (batch of one)
        banned: Token id that may not be selected

    Returns:
        Selected token id (lowest id among ties)
    """
    scores = np.asarray(logits).reshape(-1, logits.shape[-1])[-1]
    if banned is not None and 0 <= banned < scores.shape[0]:
        scores = scores.astype(np.float32, copy=True)
        scores[banned] = -np.inf
    return int(np.argmax(scores))


def find_repetition(tokens: Sequence[int], prompt_length: int) -> Optional[int]:
    """Detect a generated block repeated three times in a row at the tail.

    Returns:
        The smallest repeating window size in 2..8, or None
    """
    generated = len(tokens) - prompt_length
    for window in range(MIN_REPEAT_WINDOW, MAX_REPEAT_WINDOW + 1):
        if generated < window * REPEAT_BLOCKS:
            continue
        last = list(tokens[-window:])
        if all(
            list(tokens[len(tokens) - window * (rep + 1):len(tokens) - window * rep]) == last
            for rep in range(1, REPEAT_BLOCKS)
        ):
            return window
    return None


def empty_cache_shape(shape: Sequence[Optional[int]]) -> tuple:
    """Shape of a zero-length cache: dynamic batch axis 1, other dynamic axes 0."""
    return tuple(
        d if d is not None else (1 if axis == 0 else 0)
        for axis, d in enumerate(shape)
    )


def placeholder_shape(shape: Sequence[Optional[int]], fill: int) -> tuple:
    """Shape for a generic placeholder: dynamic batch axis 1, others ``fill``."""
    return tuple(
        d if d is not None else (1 if axis == 0 else fill)
        for axis, d in enumerate(shape)
    )


class GreedyDecoder:
    """Runs the per-chunk generation loop against a decoder backend.

    The decoder holds no per-call state; every ``decode`` call creates its
    own ``DecodeState``, so one decoder can serve concurrent transcriptions.

    Attributes:
        backend: Backend executing the decoder graph
        contract: Classified decoder inputs
        tokenizer: Detokenizer for the generated ids
        max_tokens: Hard ceiling on prompt plus generated tokens
    """

    def __init__(
        self,
        backend: InferenceBackend,
        contract: List[DecoderInput],
        tokenizer: WhisperTokenizer,
        max_tokens: int = MAX_TOKENS,
    ):
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {max_tokens}")

        self.backend = backend
        self.contract = contract
        self.tokenizer = tokenizer
        self.max_tokens = max_tokens
        self.has_cache_slots = any(
            item.kind is DecoderInputKind.CACHE_SLOT for item in contract
        )

    def build_inputs(
        self,
        state: DecodeState,
        encoder_state: np.ndarray,
    ) -> Dict[str, np.ndarray]:
        """Synthesize every declared decoder input for the next step."""
        use_cache = state.use_cache
        fed = state.tokens[-1:] if use_cache else state.tokens
        sequence_length = len(state.tokens)
        encoder_length = encoder_state.shape[1] if encoder_state.ndim > 1 else 1

        inputs: Dict[str, np.ndarray] = {}
        for item in self.contract:
            spec = item.spec
            kind = item.kind

            if kind is DecoderInputKind.PROMPT_TOKENS:
                dtype = spec.dtype if np.issubdtype(spec.dtype, np.integer) else np.int64
                inputs[spec.name] = np.array([fed], dtype=dtype)
            elif kind is DecoderInputKind.ENCODER_STATE:
                inputs[spec.name] = encoder_state
            elif kind is DecoderInputKind.USE_CACHE_FLAG:
                inputs[spec.name] = np.full((1,) * spec.rank, use_cache, dtype=np.bool_)
            elif kind is DecoderInputKind.CACHE_SLOT:
                cached = state.kv_cache.get(spec.name) if use_cache else None
                if cached is None:
                    cached = np.zeros(empty_cache_shape(spec.shape), dtype=spec.dtype)
                inputs[spec.name] = cached
            elif kind is DecoderInputKind.ATTENTION_MASK:
                inputs[spec.name] = np.ones(
                    placeholder_shape(spec.shape, sequence_length), dtype=spec.dtype
                )
            elif kind is DecoderInputKind.ENCODER_ATTENTION_MASK:
                inputs[spec.name] = np.ones(
                    placeholder_shape(spec.shape, encoder_length), dtype=spec.dtype
                )
            else:
                inputs[spec.name] = np.zeros(
                    placeholder_shape(spec.shape, 1), dtype=spec.dtype
                )
        return inputs

    def validate_inputs(self, inputs: Dict[str, np.ndarray]) -> ShapeValidation:
        """Compare the rank of every provided input with its declaration."""
        validation = ShapeValidation(ok=True)
        for item in self.contract:
            provided = inputs.get(item.name)
            if provided is None:
                logger.warning(f"Decoder input '{item.name}' was not provided")
                validation.missing.append(item.name)
                continue
            logger.debug(
                f"Decoder input '{item.name}' declared={list(item.spec.shape)} "
                f"provided={list(provided.shape)}"
            )
            if provided.ndim != item.spec.rank:
                validation.mismatches.append(item.name)

        validation.ok = not validation.mismatches
        return validation

    def _update_cache(self, state: DecodeState, outputs: Dict[str, np.ndarray]) -> None:
        present = {
            "past_key_values" + name[len("present"):]: value
            for name, value in outputs.items()
            if name.lower().startswith("present")
        }

        if state.step == 1:
            if not self.has_cache_slots or not present:
                logger.warning(
                    "Decoder returned no usable 'present.*' outputs; "
                    "KV cache disabled, decoding the full sequence every step"
                )
                state.cache_available = False
                return
            logger.debug(f"KV cache captured, {len(present)} tensors")

        if state.cache_available and present:
            state.kv_cache = present

    @staticmethod
    def _logits(outputs: Dict[str, np.ndarray]) -> np.ndarray:
        for name, value in outputs.items():
            if name.lower() == "logits":
                return value
        if not outputs:
            raise RuntimeError("decoder returned no outputs")
        return next(iter(outputs.values()))

    def _finish(self, state: DecodeState, reason: StopReason) -> DecodeResult:
        text = "" if reason.failed else self.tokenizer.decode(state.tokens)
        return DecodeResult(
            tokens=list(state.tokens),
            generated=state.generated,
            stop_reason=reason,
            steps=state.step,
            text=text,
        )

    def decode(
        self,
        encoder_state: np.ndarray,
        prompt: List[int],
        special: SpecialTokens,
        chunk_duration: float,
        cancel: Optional[CancellationToken] = None,
    ) -> DecodeResult:
        """Generate tokens for one chunk.

        Args:
            encoder_state: Encoder hidden states for the chunk
            prompt: Initial forced tokens
            special: Start-of-transcript and end-of-text ids
            chunk_duration: Seconds of audio per chunk, scales the
                minimum length and token budget
            cancel: Optional cancellation token, checked before every step

        Returns:
            DecodeResult; its text is empty when the step 0 shape check or a
            backend call failed

        Raises:
            TranscriptionCancelled: If the token is cancelled
        """
        state = DecodeState(tokens=list(prompt), prompt_length=len(prompt))
        min_tokens = min_generated_tokens(chunk_duration)
        budget = token_budget(chunk_duration, self.max_tokens)
        logger.debug(
            f"Decoding with prompt {prompt}, min tokens {min_tokens}, "
            f"token budget {budget}"
        )

        reason = StopReason.MAX_TOKENS
        for step in range(self.max_tokens):
            if cancel is not None:
                cancel.raise_if_cancelled()

            if len(state.tokens) >= self.max_tokens:
                logger.info(f"Hit max token count {self.max_tokens}, stopping")
                reason = StopReason.MAX_TOKENS
                break

            inputs = self.build_inputs(state, encoder_state)
            if step == 0:
                validation = self.validate_inputs(inputs)
                if not validation.ok:
                    logger.error(
                        f"Decoder input rank mismatch for {validation.mismatches}; "
                        f"aborting chunk"
                    )
                    return self._finish(state, StopReason.SHAPE_MISMATCH)

            try:
                outputs = self.backend.run(DECODER, inputs)
                logits = self._logits(outputs)
            except Exception:
                logger.exception(f"Decoder run failed at step {step}")
                return self._finish(state, StopReason.BACKEND_ERROR)
            state.step += 1

            banned = special.eot if state.generated_count < min_tokens else None
            next_token = select_token(logits, banned)
            if step < 5 or next_token == special.eot:
                logger.debug(
                    f"Step {step}: next token {next_token} "
                    f"({self.tokenizer.id_to_piece(next_token)!r})"
                )

            self._update_cache(state, outputs)

            if next_token == special.eot:
                reason = StopReason.END_OF_TEXT
                break

            if next_token == special.sot and step > 0:
                logger.info(f"Start-of-transcript at step {step}, stopping (loop)")
                reason = StopReason.START_OF_TRANSCRIPT
                break

            state.tokens.append(next_token)

            if state.generated_count >= budget:
                logger.info(f"Token budget {budget} reached at step {step}, stopping")
                reason = StopReason.TOKEN_BUDGET
                break

            window = find_repetition(state.tokens, state.prompt_length)
            if window is not None:
                trim = window * (REPEAT_BLOCKS - 1)
                if len(state.tokens) - trim >= state.prompt_length:
                    del state.tokens[-trim:]
                logger.info(
                    f"Repetition loop (window={window}) at step {step}, trimmed "
                    f"{trim} tokens, {state.generated_count} generated tokens kept"
                )
                reason = StopReason.REPETITION
                break

        result = self._finish(state, reason)
        logger.debug(
            f"Decoded {len(result.generated)} tokens in {result.steps} steps "
            f"({reason.value})"
        )
        return result
