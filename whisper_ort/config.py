"""Model directory layout and configuration documents.

A Whisper ONNX export directory contains the encoder and decoder graphs,
``tokenizer.json`` and up to three JSON configuration documents. The
documents are optional: whatever they do not provide falls back to the
defaults of the original Whisper checkpoints.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import CHUNK_LENGTH, DEFAULT_N_MELS, HOP_LENGTH, N_FFT, SAMPLE_RATE

logger = logging.getLogger(__name__)

ENCODER_CANDIDATES = ["encoder_model.onnx"]
DECODER_CANDIDATES = ["decoder_model_merged.onnx", "decoder_model.onnx"]
TOKENIZER_CANDIDATES = ["tokenizer.json"]
PREPROCESSOR_CANDIDATES = ["preprocessor_config.json"]
GENERATION_CANDIDATES = ["generation_config.json"]
CONFIG_CANDIDATES = ["config.json"]
N_MELS_KEYS = ("n_mels", "num_mel_bins", "feature_size")


def _find_first(directory: str, candidates: List[str]) -> Optional[str]:
    for name in candidates:
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            return path
    return None


def _read_json(path: Optional[str], label: str) -> Optional[Dict[str, Any]]:
    if path is None:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read {label} '{path}': {e}")
        return None
    if not isinstance(document, dict):
        logger.warning(f"Ignoring {label} '{path}': expected a JSON object")
        return None
    return document


def _first_int(document: Dict[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        value = document.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    return None


@dataclass
class ModelFiles:
    """Paths of the files making up one exported model.

    Attributes:
        root: Model directory
        encoder: Encoder ONNX graph
        decoder: Decoder ONNX graph (merged decoder preferred)
        tokenizer: tokenizer.json
        preprocessor_config: preprocessor_config.json, if present
        generation_config: generation_config.json, if present
        config: config.json, if present; supplies num_mel_bins when the
            preprocessor config does not
    """
    root: str
    encoder: str
    decoder: str
    tokenizer: str
    preprocessor_config: Optional[str] = None
    generation_config: Optional[str] = None
    config: Optional[str] = None

    @property
    def name(self) -> str:
        return os.path.basename(os.path.normpath(self.root))

    @classmethod
    def from_directory(cls, directory: str) -> "ModelFiles":
        """Resolve the model files inside a directory.

        Raises:
            FileNotFoundError: If the directory or a required file is missing
        """
        if not os.path.isdir(directory):
            raise FileNotFoundError(
                f"Model directory '{directory}' not found. Check the path"
            )

        required = {
            "encoder": ENCODER_CANDIDATES,
            "decoder": DECODER_CANDIDATES,
            "tokenizer": TOKENIZER_CANDIDATES,
        }
        resolved = {}
        for key, candidates in required.items():
            path = _find_first(directory, candidates)
            if path is None:
                raise FileNotFoundError(
                    f"Model directory '{directory}' has no {key} file "
                    f"(expected one of {', '.join(candidates)})"
                )
            resolved[key] = path

        return cls(
            root=directory,
            preprocessor_config=_find_first(directory, PREPROCESSOR_CANDIDATES),
            generation_config=_find_first(directory, GENERATION_CANDIDATES),
            config=_find_first(directory, CONFIG_CANDIDATES),
            **resolved,
        )


@dataclass
class GenerationConfig:
    """Special-token information from ``generation_config.json``.

    Attributes:
        forced_decoder_ids: Prompt position -> token id
        no_timestamps_token_id: Id of <|notimestamps|>, which shifts between
            model variants
        task_to_id: Task name ("transcribe"/"translate") -> token id
        lang_to_id: Language token ("<|en|>") -> token id
        is_multilingual: Whether the model was trained multilingual
    """
    forced_decoder_ids: Dict[int, int] = field(default_factory=dict)
    no_timestamps_token_id: Optional[int] = None
    task_to_id: Dict[str, int] = field(default_factory=dict)
    lang_to_id: Dict[str, int] = field(default_factory=dict)
    is_multilingual: Optional[bool] = None

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> "GenerationConfig":
        forced = {}
        for pair in document.get("forced_decoder_ids") or []:
            # Some exports leave the language slot as [1, null]
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                continue
            position, token_id = pair
            if isinstance(position, int) and isinstance(token_id, int):
                forced[position] = token_id

        no_timestamps = document.get("no_timestamps_token_id")
        if not isinstance(no_timestamps, int):
            no_timestamps = None

        task_to_id = {
            str(name).lower(): token_id
            for name, token_id in (document.get("task_to_id") or {}).items()
            if isinstance(token_id, int)
        }
        lang_to_id = {
            str(name): token_id
            for name, token_id in (document.get("lang_to_id") or {}).items()
            if isinstance(token_id, int)
        }

        is_multilingual = document.get("is_multilingual")
        if not isinstance(is_multilingual, bool):
            is_multilingual = None

        return cls(
            forced_decoder_ids=forced,
            no_timestamps_token_id=no_timestamps,
            task_to_id=task_to_id,
            lang_to_id=lang_to_id,
            is_multilingual=is_multilingual,
        )

    @classmethod
    def from_file(cls, path: Optional[str]) -> "GenerationConfig":
        """Load the config, falling back to defaults when it is unusable."""
        document = _read_json(path, "generation config")
        if document is None:
            if path is None:
                logger.warning("No generation config; using default special-token ids")
            return cls()

        config = cls.from_dict(document)
        if config.forced_decoder_ids:
            logger.info(
                f"Read {len(config.forced_decoder_ids)} forced_decoder_ids: "
                f"{config.forced_decoder_ids}"
            )
        if config.no_timestamps_token_id is not None:
            logger.info(f"no_timestamps_token_id={config.no_timestamps_token_id}")
        if config.task_to_id:
            logger.info(f"task_to_id={config.task_to_id}")
        return config


@dataclass
class PreprocessorConfig:
    """Feature extraction settings from ``preprocessor_config.json``.

    Attributes:
        n_mels: Number of mel bands the encoder expects
        mel_filters: Filterbank the model was trained with, if embedded
        sampling_rate: Declared sample rate
        n_fft: Declared FFT size
        hop_length: Declared hop length
        chunk_length: Declared window length in seconds; Whisper windows are
            fixed at 30 s, so other values are only warned about
    """
    n_mels: int = DEFAULT_N_MELS
    mel_filters: Optional[List[List[float]]] = None
    sampling_rate: int = SAMPLE_RATE
    n_fft: int = N_FFT
    hop_length: int = HOP_LENGTH
    chunk_length: Optional[int] = None

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> "PreprocessorConfig":
        mel_filters = document.get("mel_filters")
        if not isinstance(mel_filters, list):
            mel_filters = None

        return cls(
            n_mels=_first_int(document, *N_MELS_KEYS) or DEFAULT_N_MELS,
            mel_filters=mel_filters,
            sampling_rate=_first_int(document, "sampling_rate", "sample_rate")
            or SAMPLE_RATE,
            n_fft=_first_int(document, "n_fft") or N_FFT,
            hop_length=_first_int(document, "hop_length") or HOP_LENGTH,
            chunk_length=_first_int(document, "chunk_length"),
        )

    @classmethod
    def from_file(
        cls,
        path: Optional[str],
        model_config_path: Optional[str] = None,
    ) -> "PreprocessorConfig":
        """Load the config, falling back to defaults when it is unusable.

        When the preprocessor config does not give the mel band count, the
        model's ``config.json`` (``num_mel_bins``) is consulted before the
        default.
        """
        document = _read_json(path, "preprocessor config")
        config = cls.from_dict(document) if document is not None else cls()

        if document is None or _first_int(document, *N_MELS_KEYS) is None:
            model_config = _read_json(model_config_path, "model config")
            n_mels = _first_int(model_config or {}, "num_mel_bins")
            if n_mels is not None:
                logger.info(f"Using num_mel_bins={n_mels} from model config")
                config.n_mels = n_mels
            elif document is None and path is None:
                logger.warning(
                    f"No preprocessor config; using n_mels={DEFAULT_N_MELS}"
                )
        if document is None:
            return config

        for name, expected in (
            ("sampling_rate", SAMPLE_RATE),
            ("n_fft", N_FFT),
            ("hop_length", HOP_LENGTH),
            ("chunk_length", CHUNK_LENGTH),
        ):
            value = getattr(config, name)
            if value is not None and value != expected:
                logger.warning(
                    f"Preprocessor config declares {name}={value}; "
                    f"using Whisper's fixed {name}={expected}"
                )
        return config
