"""Tests for AudioChunker functionality."""

import math

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from whisper_ort import AudioChunker
from whisper_ort.constants import N_SAMPLES, SAMPLE_RATE


class TestAudioChunkerInitialization:
    """Test AudioChunker initialization and parameter validation."""

    def test_init_defaults(self):
        """Test default chunk duration, overlap and window."""
        chunker = AudioChunker()

        assert chunker.chunk_duration == 20.0
        assert chunker.use_overlap is True
        assert chunker.sample_rate == SAMPLE_RATE
        assert chunker.window == N_SAMPLES

    def test_init_invalid_chunk_duration(self):
        """Test that non-positive chunk_duration raises ValueError."""
        with pytest.raises(ValueError, match="chunk_duration must be positive"):
            AudioChunker(chunk_duration=0)

        with pytest.raises(ValueError, match="chunk_duration must be positive"):
            AudioChunker(chunk_duration=-3.0)

    @pytest.mark.parametrize("chunk_duration", [float("nan"), float("inf"), float("-inf")])
    def test_init_non_finite_chunk_duration(self, chunk_duration):
        """Test that nan and infinite chunk durations raise ValueError."""
        with pytest.raises(ValueError, match="chunk_duration must be positive and finite"):
            AudioChunker(chunk_duration=chunk_duration)

    def test_init_invalid_sample_rate(self):
        """Test that non-positive sample_rate raises ValueError."""
        with pytest.raises(ValueError, match="sample_rate must be positive"):
            AudioChunker(sample_rate=0)


class TestAudioChunkerPlan:
    """Test stride, overlap and chunk count computation."""

    def test_plan_default_with_overlap(self):
        """Test that 20 s chunks overlap by the 2 s cap."""
        plan = AudioChunker(chunk_duration=20.0).plan(45 * SAMPLE_RATE)

        assert plan.overlap == 2 * SAMPLE_RATE
        assert plan.stride == 18 * SAMPLE_RATE
        assert plan.total_chunks == 3
        assert plan.window == N_SAMPLES

    def test_plan_without_overlap(self):
        """Test that disabling overlap makes the stride the chunk duration."""
        plan = AudioChunker(chunk_duration=20.0, use_overlap=False).plan(45 * SAMPLE_RATE)

        assert plan.overlap == 0
        assert plan.stride == 20 * SAMPLE_RATE
        assert plan.total_chunks == 3

    def test_plan_short_duration_halves_overlap(self):
        """Test that overlap is half the window for durations under 4 s."""
        plan = AudioChunker(chunk_duration=3.0).plan(SAMPLE_RATE * 10)

        assert plan.overlap == 24000
        assert plan.stride == 24000
        assert plan.total_chunks == math.ceil(160000 / 24000)

    def test_plan_duration_clamped_to_one_second(self):
        """Test that durations under one second behave like one second."""
        plan = AudioChunker(chunk_duration=0.25, use_overlap=False).plan(SAMPLE_RATE * 4)

        assert plan.stride == SAMPLE_RATE
        assert plan.total_chunks == 4

    def test_plan_duration_clamped_to_window(self):
        """Test that durations over 30 s are limited to one window."""
        plan = AudioChunker(chunk_duration=100.0).plan(SAMPLE_RATE * 60)

        assert plan.overlap == 2 * SAMPLE_RATE
        assert plan.stride == N_SAMPLES - 2 * SAMPLE_RATE

    def test_plan_empty_audio(self):
        """Test that empty audio needs no chunks."""
        assert AudioChunker().plan(0).total_chunks == 0

    def test_plan_negative_length(self):
        """Test that a negative length raises ValueError."""
        with pytest.raises(ValueError, match="num_samples must be non-negative"):
            AudioChunker().plan(-1)

    @given(
        num_samples=st.integers(min_value=1, max_value=SAMPLE_RATE * 600),
        chunk_duration=st.floats(min_value=0.1, max_value=60.0),
        use_overlap=st.booleans(),
    )
    @settings(max_examples=200)
    def test_plan_covers_audio(self, num_samples, chunk_duration, use_overlap):
        """Test that the chunk count is ceil(N / stride) and windows cover the audio."""
        plan = AudioChunker(chunk_duration, use_overlap).plan(num_samples)

        assert plan.stride >= 1
        assert plan.overlap < plan.window
        assert plan.total_chunks == math.ceil(num_samples / plan.stride)
        assert (plan.total_chunks - 1) * plan.stride < num_samples
        # Every sample up to the last chunk start is inside some window
        assert plan.stride <= plan.window


class TestAudioChunkerChunks:
    """Test cutting windows out of audio."""

    def test_chunks_are_window_sized(self):
        """Test that every chunk holds exactly one float32 window."""
        audio = np.random.randn(45 * SAMPLE_RATE).astype(np.float32)
        chunks = list(AudioChunker().iter_chunks(audio))

        assert len(chunks) == 3
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_index == i
            assert chunk.audio.shape == (N_SAMPLES,)
            assert chunk.audio.dtype == np.float32

    def test_chunk_offsets_and_padding(self):
        """Test chunk offsets, copied samples and zero padding."""
        audio = np.arange(45 * SAMPLE_RATE, dtype=np.float32)
        chunks = list(AudioChunker().iter_chunks(audio))
        stride = 18 * SAMPLE_RATE

        assert chunks[1].start_time == pytest.approx(18.0)
        assert chunks[1].audio[0] == stride
        assert chunks[1].num_samples == N_SAMPLES - 3 * SAMPLE_RATE

        last = chunks[2]
        assert last.start_time == pytest.approx(36.0)
        assert last.num_samples == 9 * SAMPLE_RATE
        assert last.end_time == pytest.approx(45.0)
        np.testing.assert_array_equal(
            last.audio[:last.num_samples], audio[2 * stride:]
        )
        assert not last.audio[last.num_samples:].any()

    def test_short_audio_single_padded_chunk(self):
        """Test that audio shorter than a window gives one padded chunk."""
        audio = np.ones(SAMPLE_RATE, dtype=np.float32)
        chunks = list(AudioChunker().iter_chunks(audio))

        assert len(chunks) == 1
        assert chunks[0].num_samples == SAMPLE_RATE
        assert chunks[0].end_time == pytest.approx(1.0)
        assert chunks[0].audio.sum() == SAMPLE_RATE

    def test_empty_audio_yields_nothing(self):
        """Test that empty audio yields no chunks."""
        assert list(AudioChunker().iter_chunks(np.zeros(0, dtype=np.float32))) == []

    def test_multidimensional_audio_rejected(self):
        """Test that 2D audio raises ValueError."""
        with pytest.raises(ValueError, match="1-dimensional"):
            list(AudioChunker().iter_chunks(np.zeros((2, 100), dtype=np.float32)))

    def test_chunk_index_out_of_range(self):
        """Test that an index outside the plan raises ValueError."""
        chunker = AudioChunker()
        audio = np.zeros(SAMPLE_RATE, dtype=np.float32)
        plan = chunker.plan(len(audio))

        with pytest.raises(ValueError, match="out of range"):
            chunker.chunk_at(audio, 1, plan)

    @given(
        seconds=st.floats(min_value=0.01, max_value=200.0),
        chunk_duration=st.floats(min_value=1.0, max_value=30.0),
    )
    @settings(max_examples=50, deadline=None)
    def test_last_chunk_real_samples(self, seconds, chunk_duration):
        """Test that the last chunk carries N - (k - 1) * stride real samples."""
        num_samples = max(1, int(seconds * SAMPLE_RATE))
        chunker = AudioChunker(chunk_duration)
        plan = chunker.plan(num_samples)
        audio = np.zeros(num_samples, dtype=np.float32)

        last = chunker.chunk_at(audio, plan.total_chunks - 1, plan)
        expected = num_samples - (plan.total_chunks - 1) * plan.stride

        assert last.num_samples == min(plan.window, expected)
        assert 0 < last.num_samples <= plan.window
