"""Byte-level BPE vocabulary lookup and detokenization.

Only the parts of a tokenizer the decoder needs are implemented: resolving
special-token ids and turning generated ids back into text. Token pieces
are strings over a 256-character alphabet, one character per raw byte;
concatenating the pieces and mapping each character back to its byte
reassembles UTF-8 sequences that were split across tokens.
"""

import json
import logging
import re
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

SPECIAL_TOKEN_PATTERN = re.compile(r"^<\|.*\|>$", re.DOTALL)


def bytes_to_unicode() -> Dict[int, str]:
    """Return the fixed byte -> visible character table of byte-level BPE.

    Printable ASCII and two Latin-1 ranges map to themselves; the remaining
    68 byte values map to code points from 256 upwards.
    """
    visible = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(0xA1, 0xAC + 1))
        + list(range(0xAE, 0xFF + 1))
    )
    table = {b: chr(b) for b in visible}
    n = 0
    for b in range(256):
        if b not in table:
            table[b] = chr(256 + n)
            n += 1
    return table


BYTE_ENCODER = bytes_to_unicode()
BYTE_DECODER = {c: b for b, c in BYTE_ENCODER.items()}


class WhisperTokenizer:
    """Bidirectional id <-> piece vocabulary with byte-level decoding.

    Attributes:
        vocab_size: Number of known ids, special tokens included
    """

    def __init__(
        self,
        vocab: Optional[Dict[str, int]] = None,
        added_tokens: Optional[Dict[int, str]] = None,
    ):
        """Initialize tokenizer.

        Args:
            vocab: Regular pieces mapped to ids
            added_tokens: Added/special token ids mapped to their content;
                these override regular pieces sharing the same id
        """
        self._piece_to_id: Dict[str, int] = {}
        self._id_to_piece: Dict[int, str] = {}

        for piece, token_id in (vocab or {}).items():
            self._piece_to_id[piece] = token_id
            self._id_to_piece[token_id] = piece
        for token_id, content in (added_tokens or {}).items():
            if content:
                self._piece_to_id[content] = token_id
                self._id_to_piece[token_id] = content

    @classmethod
    def from_file(cls, path: str) -> "WhisperTokenizer":
        """Load a Hugging Face ``tokenizer.json``.

        Reads ``model.vocab`` (or a top-level ``vocab``) and ``added_tokens``.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid JSON
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse tokenizer file '{path}': {e}") from e

        model = document.get("model") if isinstance(document.get("model"), dict) else {}
        raw_vocab = model.get("vocab", document.get("vocab")) or {}
        vocab = {
            piece: token_id
            for piece, token_id in raw_vocab.items()
            if isinstance(token_id, int)
        }

        added = {}
        for entry in document.get("added_tokens") or []:
            token_id = entry.get("id")
            content = entry.get("content")
            if isinstance(token_id, int) and content:
                added[token_id] = content

        logger.info(
            f"Loaded tokenizer from '{path}': {len(vocab)} pieces, "
            f"{len(added)} added tokens"
        )
        return cls(vocab, added)

    @classmethod
    def empty(cls) -> "WhisperTokenizer":
        """Tokenizer without vocabulary; every lookup falls back to defaults."""
        return cls()

    @property
    def vocab_size(self) -> int:
        return len(self._id_to_piece)

    def token_id(self, piece: str, default: Optional[int] = None) -> Optional[int]:
        return self._piece_to_id.get(piece, default)

    def id_to_piece(self, token_id: int) -> Optional[str]:
        return self._id_to_piece.get(token_id)

    @staticmethod
    def is_special(piece: str) -> bool:
        return bool(SPECIAL_TOKEN_PATTERN.match(piece))

    def decode(self, token_ids: Iterable[int]) -> str:
        """Turn token ids into text, dropping special and unknown tokens."""
        pieces: List[str] = []
        for token_id in token_ids:
            piece = self._id_to_piece.get(token_id)
            if piece is None or self.is_special(piece):
                continue
            pieces.append(piece)
        return self.decode_bytes("".join(pieces))

    @staticmethod
    def decode_bytes(text: str) -> str:
        """Map byte-level characters back to bytes and decode them as UTF-8.

        Characters outside the byte alphabet are dropped; invalid UTF-8 is
        replaced rather than raised.
        """
        data = bytes(BYTE_DECODER[c] for c in text if c in BYTE_DECODER)
        return data.decode("utf-8", errors="replace")

    @staticmethod
    def encode_bytes(text: str) -> str:
        """Map text to its byte-level character representation."""
        return "".join(BYTE_ENCODER[b] for b in text.encode("utf-8"))
