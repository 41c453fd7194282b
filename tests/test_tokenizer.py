"""Tests for WhisperTokenizer vocabulary lookup and detokenization."""

import json

import pytest

from conftest import EOT, NO_TIMESTAMPS, PROMPT, SOT, ids_for
from whisper_ort import WhisperTokenizer
from whisper_ort.tokenizer import BYTE_DECODER, BYTE_ENCODER, bytes_to_unicode


class TestByteTable:
    """Test the byte-level character table."""

    def test_table_is_bijective(self):
        """Test that 256 bytes map to 256 distinct characters."""
        table = bytes_to_unicode()

        assert len(table) == 256
        assert len(set(table.values())) == 256
        assert len(BYTE_DECODER) == 256

    def test_printable_bytes_map_to_themselves(self):
        """Test that printable ASCII is unchanged."""
        assert BYTE_ENCODER[ord("A")] == "A"
        assert BYTE_ENCODER[ord("~")] == "~"

    def test_space_maps_above_256(self):
        """Test that space is shifted to 'Ġ'."""
        assert BYTE_ENCODER[ord(" ")] == "Ġ"
        assert BYTE_ENCODER[0] == chr(256)


class TestDecoding:
    """Test turning ids into text."""

    def test_decode_letters(self, tokenizer):
        """Test decoding plain pieces with a byte-level space."""
        assert tokenizer.decode(ids_for("hello world")) == "hello world"

    def test_decode_skips_special_tokens(self, tokenizer):
        """Test that <|...|> pieces are dropped."""
        ids = PROMPT + ids_for("hi") + [EOT]

        assert tokenizer.decode(ids) == "hi"

    def test_decode_skips_unknown_ids(self, tokenizer):
        """Test that ids outside the vocabulary are dropped."""
        assert tokenizer.decode([999] + ids_for("ok")) == "ok"

    def test_utf8_split_across_pieces(self, tokenizer):
        """Test that a multi-byte character split over two tokens is rejoined."""
        assert tokenizer.decode(ids_for("caf") + [37, 38]) == "café"

    def test_invalid_utf8_replaced(self, tokenizer):
        """Test that an incomplete sequence is replaced rather than raised."""
        assert tokenizer.decode(ids_for("a") + [37]) == "a�"

    def test_byte_round_trip(self):
        """Test that encode_bytes and decode_bytes are inverse."""
        text = "Grüße, 世界! tab\tnewline\n"

        assert WhisperTokenizer.decode_bytes(WhisperTokenizer.encode_bytes(text)) == text


class TestLookup:
    """Test piece and id lookups."""

    def test_special_token_ids(self, tokenizer):
        """Test resolving special tokens by content."""
        assert tokenizer.token_id("<|startoftranscript|>") == SOT
        assert tokenizer.token_id("<|notimestamps|>") == NO_TIMESTAMPS
        assert tokenizer.token_id("<|xx|>") is None
        assert tokenizer.token_id("<|xx|>", 7) == 7

    def test_id_to_piece(self, tokenizer):
        """Test reverse lookup."""
        assert tokenizer.id_to_piece(EOT) == "<|endoftext|>"
        assert tokenizer.id_to_piece(10) == "a"
        assert tokenizer.id_to_piece(12345) is None

    def test_is_special(self):
        """Test the special-token pattern."""
        assert WhisperTokenizer.is_special("<|en|>")
        assert not WhisperTokenizer.is_special("<en>")
        assert not WhisperTokenizer.is_special("hello")

    def test_empty(self):
        """Test that an empty tokenizer knows nothing."""
        tokenizer = WhisperTokenizer.empty()

        assert tokenizer.vocab_size == 0
        assert tokenizer.token_id("<|endoftext|>") is None
        assert tokenizer.decode([1, 2, 3]) == ""


class TestFromFile:
    """Test loading tokenizer.json."""

    def test_load_model_vocab_and_added_tokens(self, tmp_path):
        """Test reading model.vocab and added_tokens."""
        path = tmp_path / "tokenizer.json"
        path.write_text(json.dumps({
            "model": {"type": "BPE", "vocab": {"h": 0, "i": 1, "Ġ": 2}},
            "added_tokens": [
                {"id": 50257, "content": "<|endoftext|>", "special": True},
                {"id": 50258, "content": "<|startoftranscript|>", "special": True},
            ],
        }))
        tokenizer = WhisperTokenizer.from_file(str(path))

        assert tokenizer.vocab_size == 5
        assert tokenizer.token_id("<|endoftext|>") == 50257
        assert tokenizer.decode([50258, 0, 1, 2, 0, 50257]) == "hi h"

    def test_top_level_vocab(self, tmp_path):
        """Test the fallback to a top-level vocab map."""
        path = tmp_path / "tokenizer.json"
        path.write_text(json.dumps({"vocab": {"x": 3}}))

        assert WhisperTokenizer.from_file(str(path)).token_id("x") == 3

    def test_invalid_json(self, tmp_path):
        """Test that malformed JSON raises ValueError."""
        path = tmp_path / "tokenizer.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Failed to parse tokenizer"):
            WhisperTokenizer.from_file(str(path))

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            WhisperTokenizer.from_file(str(tmp_path / "missing.json"))
