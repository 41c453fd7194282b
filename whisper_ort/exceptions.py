"""Cancellation support for long-running transcriptions."""

import threading


class TranscriptionCancelled(Exception):
    """Raised when a transcription is cancelled through its token."""


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a transcription.

    The transcriber checks the token at every chunk boundary and at the start
    of every decode step. Cancelling is thread-safe and idempotent.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscriptionCancelled("transcription was cancelled")
