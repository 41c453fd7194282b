"""Shared fixtures: a tiny vocabulary and a scripted encoder/decoder backend."""

from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest

from whisper_ort.backend import DECODER, ENCODER, TensorSpec
from whisper_ort.tokenizer import WhisperTokenizer

EOT = 0
SOT = 1
EN = 2
TRANSCRIBE = 3
TRANSLATE = 4
NO_TIMESTAMPS = 5
DE = 6

PROMPT = [SOT, EN, TRANSCRIBE, NO_TIMESTAMPS]
VOCAB_SIZE = 40
HIDDEN_SIZE = 8
ENCODER_FRAMES = 1500

SPECIAL_TOKENS = {
    EOT: "<|endoftext|>",
    SOT: "<|startoftranscript|>",
    EN: "<|en|>",
    TRANSCRIBE: "<|transcribe|>",
    TRANSLATE: "<|translate|>",
    NO_TIMESTAMPS: "<|notimestamps|>",
    DE: "<|de|>",
}

# Letters a-z are ids 10-35, "Ġ" (a space) is 36
LETTER_BASE = 10
SPACE = 36


def ids_for(text: str) -> List[int]:
    """Token ids spelling ``text`` one character at a time."""
    return [SPACE if c == " " else LETTER_BASE + ord(c) - ord("a") for c in text]


def make_tokenizer() -> WhisperTokenizer:
    vocab = {chr(ord("a") + i): LETTER_BASE + i for i in range(26)}
    vocab["Ġ"] = SPACE
    vocab["Ã"] = 37
    vocab["©"] = 38
    return WhisperTokenizer(vocab, dict(SPECIAL_TOKENS))


def cached_decoder_specs() -> List[TensorSpec]:
    return [
        TensorSpec("input_ids", (None, None), np.int64),
        TensorSpec("encoder_hidden_states", (None, None, HIDDEN_SIZE), np.float32),
        TensorSpec("past_key_values.0.decoder.key", (None, 2, None, 4), np.float32),
        TensorSpec("past_key_values.0.decoder.value", (None, 2, None, 4), np.float32),
        TensorSpec("use_cache_branch", (1,), np.bool_),
    ]


def plain_decoder_specs() -> List[TensorSpec]:
    return [
        TensorSpec("input_ids", (None, None), np.int64),
        TensorSpec("encoder_hidden_states", (None, None, HIDDEN_SIZE), np.float32),
    ]


Script = Union[Sequence[int], Callable[[int], int]]


class ScriptedBackend:
    """Deterministic stand-in for exported Whisper graphs.

    The decoder emits the token the script prescribes for each generated
    position. The position is recovered from the fed tokens plus the length
    of the past cache, so the backend stays stateless like a real one.
    The runner-up token varies with the position, which keeps an always-EOT
    script from looking like a repetition loop while EOT is banned.
    """

    def __init__(
        self,
        script: Script = (),
        decoder_specs: Optional[List[TensorSpec]] = None,
        emit_present: bool = True,
        prompt_length: int = len(PROMPT),
        fail_encoder_calls: Sequence[int] = (),
        fail_decoder_calls: Sequence[int] = (),
        on_decoder_call: Optional[Callable[[int], None]] = None,
    ):
        self.script = script
        self.decoder_specs = (
            cached_decoder_specs() if decoder_specs is None else decoder_specs
        )
        self.emit_present = emit_present
        self.prompt_length = prompt_length
        self.fail_encoder_calls = set(fail_encoder_calls)
        self.fail_decoder_calls = set(fail_decoder_calls)
        self.on_decoder_call = on_decoder_call
        self.encoder_inputs: List[np.ndarray] = []
        self.decoder_inputs: List[Dict[str, np.ndarray]] = []

    def input_specs(self, graph: str) -> List[TensorSpec]:
        if graph == ENCODER:
            return [TensorSpec("input_features", (None, 80, 3000), np.float32)]
        if graph == DECODER:
            return list(self.decoder_specs)
        raise ValueError(graph)

    def token_at(self, position: int) -> int:
        if callable(self.script):
            return self.script(position)
        if position < len(self.script):
            return self.script[position]
        return EOT

    def run(self, graph: str, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        if graph == ENCODER:
            call = len(self.encoder_inputs)
            self.encoder_inputs.append(inputs["input_features"])
            if call in self.fail_encoder_calls:
                raise RuntimeError(f"encoder failure on call {call}")
            return {
                "last_hidden_state": np.zeros(
                    (1, ENCODER_FRAMES, HIDDEN_SIZE), dtype=np.float32
                )
            }

        call = len(self.decoder_inputs)
        self.decoder_inputs.append(inputs)
        if self.on_decoder_call is not None:
            self.on_decoder_call(call)
        if call in self.fail_decoder_calls:
            raise RuntimeError(f"decoder failure on call {call}")

        fed = inputs["input_ids"].shape[1]
        past = inputs.get("past_key_values.0.decoder.key")
        past_length = past.shape[2] if past is not None else 0
        total = past_length + fed
        position = total - self.prompt_length

        logits = np.zeros((1, fed, VOCAB_SIZE), dtype=np.float32)
        logits[0, -1, LETTER_BASE + position % 20] = 5.0
        logits[0, -1, self.token_at(position)] = 10.0

        outputs = {"logits": logits}
        if self.emit_present:
            for kind in ("key", "value"):
                outputs[f"present.0.decoder.{kind}"] = np.zeros(
                    (1, 2, total, 4), dtype=np.float32
                )
        return outputs


@pytest.fixture
def tokenizer():
    return make_tokenizer()


@pytest.fixture
def hello_backend():
    """Backend that says "hello world" in every chunk."""
    return ScriptedBackend(ids_for("hello world"))
