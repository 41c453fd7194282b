"""Tests for data models."""

from hypothesis import given
from hypothesis import strategies as st

from whisper_ort import StopReason, TranscriptionInfo, TranscriptionResult
from whisper_ort.data_models import DecodeState


class TestTranscriptionResult:
    """Test accumulation of chunk texts."""

    def test_first_chunk_has_no_separator(self):
        """Test that the first text is appended trimmed."""
        result = TranscriptionResult()

        assert result.append("  hello ") == "hello"
        assert result.text == "hello"

    def test_later_chunks_get_newline(self):
        """Test that later chunks start with a newline."""
        result = TranscriptionResult()
        result.append("one")

        assert result.append(" two") == "\ntwo"
        assert result.text == "one\ntwo"
        assert len(result) == 7

    def test_blank_chunk_adds_boundary_only(self):
        """Test that a blank chunk after text adds just the newline."""
        result = TranscriptionResult()
        result.append("one")

        assert result.append("   ") == "\n"
        assert result.append("") == "\n"
        assert result.text == "one\n\n"

    def test_leading_blank_chunks_add_nothing(self):
        """Test that blank chunks before any text contribute nothing."""
        result = TranscriptionResult()

        assert result.append("") == ""
        assert result.append("  ") == ""
        assert result.append("x") == "x"

    @given(st.lists(st.text(max_size=20), max_size=10))
    def test_increments_concatenate_to_text(self, chunks):
        """Test that the increments always add up to the text."""
        result = TranscriptionResult()
        increments = [result.append(chunk) for chunk in chunks]

        assert "".join(increments) == result.text
        assert len(result) == len(result.text)


class TestTranscriptionInfo:
    """Test transcription metadata."""

    def test_real_time_factor(self):
        """Test processing time over duration."""
        info = TranscriptionInfo(
            duration=10.0, num_chunks=1, stride=1, language=None,
            task="transcribe", processing_time=2.5,
        )

        assert info.real_time_factor == 0.25

    def test_real_time_factor_empty_audio(self):
        """Test that empty audio reports zero."""
        info = TranscriptionInfo(
            duration=0.0, num_chunks=0, stride=0, language=None,
            task="transcribe", processing_time=0.1,
        )

        assert info.real_time_factor == 0.0


class TestDecodeState:
    """Test decode state bookkeeping."""

    def test_generated_tokens(self):
        """Test the split between prompt and generated tokens."""
        state = DecodeState(tokens=[1, 2, 3, 10, 11], prompt_length=3)

        assert state.generated == [10, 11]
        assert state.generated_count == 2
        assert not state.use_cache

    def test_stop_reason_failed(self):
        """Test which stop reasons mean the chunk failed."""
        assert StopReason.BACKEND_ERROR.failed
        assert StopReason.SHAPE_MISMATCH.failed
        assert not StopReason.END_OF_TEXT.failed
        assert not StopReason.REPETITION.failed
