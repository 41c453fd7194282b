"""Tensor inference backends.

The transcriber treats the encoder and decoder forward passes as an opaque
backend: named numpy tensors in, named numpy tensors out, no hidden state
between calls. ``OrtBackend`` runs exported ONNX graphs with onnxruntime;
tests substitute scripted backends implementing the same protocol.

The decoder's declared inputs are classified once, when the model is
loaded, into a typed contract the decode loop can fill without inspecting
names on every step.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

ENCODER = "encoder"
DECODER = "decoder"

_ORT_DTYPES = {
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
    "tensor(double)": np.float64,
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(bool)": np.bool_,
}


@dataclass(frozen=True)
class TensorSpec:
    """Declared name, shape and element type of a graph input.

    Attributes:
        name: Input name
        shape: Dimensions; None marks a dynamic axis
        dtype: numpy element type
    """
    name: str
    shape: Tuple[Optional[int], ...]
    dtype: type = np.float32

    @property
    def rank(self) -> int:
        return len(self.shape)


class InferenceBackend(Protocol):
    """Protocol for encoder/decoder forward pass executors.

    Implementations must be deterministic for identical inputs and keep no
    state between calls, so one backend can serve concurrent transcriptions.
    """

    def input_specs(self, graph: str) -> List[TensorSpec]:
        """Declared inputs of the "encoder" or "decoder" graph."""
        ...

    def run(self, graph: str, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """Run one forward pass and return every output by name."""
        ...


class DecoderInputKind(Enum):
    """Role of a decoder input in the decode loop."""
    PROMPT_TOKENS = "prompt_tokens"
    ENCODER_STATE = "encoder_state"
    CACHE_SLOT = "cache_slot"
    USE_CACHE_FLAG = "use_cache_flag"
    ATTENTION_MASK = "attention_mask"
    ENCODER_ATTENTION_MASK = "encoder_attention_mask"
    GENERIC = "generic"


@dataclass(frozen=True)
class DecoderInput:
    """One classified decoder input."""
    kind: DecoderInputKind
    spec: TensorSpec

    @property
    def name(self) -> str:
        return self.spec.name


def classify_decoder_input(name: str) -> DecoderInputKind:
    lowered = name.lower()
    if name == "input_ids":
        return DecoderInputKind.PROMPT_TOKENS
    if name == "encoder_hidden_states":
        return DecoderInputKind.ENCODER_STATE
    if lowered == "use_cache_branch":
        return DecoderInputKind.USE_CACHE_FLAG
    if "past_key_values" in lowered or "past_key" in name:
        return DecoderInputKind.CACHE_SLOT
    if "encoder_attention" in lowered:
        return DecoderInputKind.ENCODER_ATTENTION_MASK
    if "attention_mask" in lowered:
        return DecoderInputKind.ATTENTION_MASK
    return DecoderInputKind.GENERIC


def describe_decoder_inputs(specs: Sequence[TensorSpec]) -> List[DecoderInput]:
    """Build the typed decoder input contract from declared inputs."""
    contract = [DecoderInput(classify_decoder_input(spec.name), spec) for spec in specs]

    counts: Dict[DecoderInputKind, int] = {}
    for item in contract:
        counts[item.kind] = counts.get(item.kind, 0) + 1
    logger.info(
        "Decoder inputs: "
        + ", ".join(f"{kind.value}={count}" for kind, count in counts.items())
    )

    if DecoderInputKind.PROMPT_TOKENS not in counts:
        raise ValueError("decoder graph has no 'input_ids' input")
    return contract


def _spec_from_ort(node) -> TensorSpec:
    shape = tuple(d if isinstance(d, int) and d > 0 else None for d in (node.shape or []))
    dtype = _ORT_DTYPES.get(node.type, np.float32)
    return TensorSpec(name=node.name, shape=shape, dtype=dtype)


class OrtBackend:
    """Runs exported encoder and decoder graphs with onnxruntime.

    Attributes:
        providers: Execution providers the sessions were created with
    """

    def __init__(
        self,
        encoder_path: str,
        decoder_path: str,
        providers: Optional[List[str]] = None,
        num_threads: int = 0,
    ):
        """Create the inference sessions.

        Args:
            encoder_path: Path of the encoder ONNX graph
            decoder_path: Path of the decoder ONNX graph
            providers: Execution providers in priority order
                (default: ["CPUExecutionProvider"])
            num_threads: Intra-op threads; 0 lets onnxruntime decide
        """
        import onnxruntime

        if num_threads < 0:
            raise ValueError(f"num_threads must be non-negative, got {num_threads}")

        session_opts = onnxruntime.SessionOptions()
        session_opts.graph_optimization_level = (
            onnxruntime.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        if num_threads > 0:
            session_opts.intra_op_num_threads = num_threads

        self.providers = providers or ["CPUExecutionProvider"]
        available = onnxruntime.get_available_providers()
        missing = [p for p in self.providers if p not in available]
        if missing:
            logger.warning(
                f"Execution providers {missing} not available; "
                f"available: {available}"
            )

        logger.info(f"Loading encoder '{encoder_path}' with providers {self.providers}")
        self._encoder = onnxruntime.InferenceSession(
            encoder_path, sess_options=session_opts, providers=self.providers
        )
        logger.info(f"Loading decoder '{decoder_path}' with providers {self.providers}")
        self._decoder = onnxruntime.InferenceSession(
            decoder_path, sess_options=session_opts, providers=self.providers
        )

        self._sessions = {ENCODER: self._encoder, DECODER: self._decoder}
        self._output_names = {
            graph: [out.name for out in session.get_outputs()]
            for graph, session in self._sessions.items()
        }

    def _session(self, graph: str):
        try:
            return self._sessions[graph]
        except KeyError:
            raise ValueError(
                f"graph must be '{ENCODER}' or '{DECODER}', got '{graph}'"
            ) from None

    def input_specs(self, graph: str) -> List[TensorSpec]:
        return [_spec_from_ort(node) for node in self._session(graph).get_inputs()]

    def run(self, graph: str, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        outputs = self._session(graph).run(None, inputs)
        return dict(zip(self._output_names[graph], outputs))
