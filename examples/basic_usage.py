"""Basic usage example for whisper-ort.

This example demonstrates:
1. Simple transcription of a WAV file
2. Streaming output chunk by chunk
3. Progress reporting and cancellation
4. Async transcription
"""

import asyncio
import sys
import threading
import wave

import numpy as np

from whisper_ort import (
    CancellationToken,
    TranscriptionCancelled,
    WhisperTranscriber,
    pcm16_to_float32,
)

model_dir = sys.argv[1] if len(sys.argv) > 1 else "models/whisper-small"
audio_path = sys.argv[2] if len(sys.argv) > 2 else "audio.wav"


def load_wav(path: str) -> np.ndarray:
    """Read a 16 kHz mono PCM16 WAV file as float32 samples."""
    with wave.open(path, "rb") as f:
        if f.getframerate() != 16000 or f.getnchannels() != 1 or f.getsampwidth() != 2:
            raise ValueError(f"'{path}' must be 16 kHz mono 16-bit PCM")
        return pcm16_to_float32(f.readframes(f.getnframes()))


# =============================================================================
# Example 1: Basic Transcription
# =============================================================================
print("=" * 70)
print("Example 1: Basic Transcription")
print("=" * 70)

# Load an exported model directory (encoder_model.onnx,
# decoder_model_merged.onnx, tokenizer.json, optional configs)
model = WhisperTranscriber(model_dir, providers=["CPUExecutionProvider"])

try:
    audio = load_wav(audio_path)
except FileNotFoundError:
    print(f"Audio file '{audio_path}' not found; using 45 seconds of silence.")
    audio = np.zeros(16000 * 45, dtype=np.float32)

text, info = model.transcribe_with_info(audio, language="en")
print(f"\nAudio duration: {info.duration:.2f}s")
print(f"Processing time: {info.processing_time:.2f}s")
print(f"Real-time factor: {info.real_time_factor:.2f}x")
print(f"Processed in {info.num_chunks} chunk(s), {info.chunks_failed} failed")
print("\nTranscription:")
print("-" * 70)
print(text)

# =============================================================================
# Example 2: Streaming
# =============================================================================
print("\n" + "=" * 70)
print("Example 2: Streaming")
print("=" * 70)

# One increment per chunk; increments after the first start with a newline
for increment in model.transcribe_stream(audio, chunk_duration=10.0):
    print(increment, end="", flush=True)
print()

# =============================================================================
# Example 3: Progress and Cancellation
# =============================================================================
print("\n" + "=" * 70)
print("Example 3: Progress and Cancellation")
print("=" * 70)

token = CancellationToken()
# Cancel from another thread after two seconds
threading.Timer(2.0, token.cancel).start()

try:
    model.transcribe(
        audio,
        cancel=token,
        progress_callback=lambda p: print(f"  progress: {p:.0%}"),
    )
except TranscriptionCancelled:
    print("Transcription cancelled")

# =============================================================================
# Example 4: Async
# =============================================================================
print("\n" + "=" * 70)
print("Example 4: Async")
print("=" * 70)


async def main():
    text = await model.transcribe_async(audio, translate=True)
    print(text)
    async for increment in model.transcribe_stream_async(audio):
        print(increment, end="", flush=True)
    print()


asyncio.run(main())
