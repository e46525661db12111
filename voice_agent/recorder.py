"""
Whole-utterance audio buffer.

Chunks are only kept between SpeechStarted and flush(); anything captured
before speech is detected is dropped. A fresh start() discards whatever a
rejected utterance left behind.
"""

from __future__ import annotations

from logging_setup import get_logger, Component

logger = get_logger(Component.RECORDER)


class TurnRecorder:
    """Accumulates raw media chunks for the current utterance."""

    def __init__(self):
        self._chunks: list[bytes] = []
        self._accumulating = False

    @property
    def accumulating(self) -> bool:
        return self._accumulating

    @property
    def size(self) -> int:
        return sum(len(c) for c in self._chunks)

    def start(self) -> None:
        """Begin a new utterance, discarding anything buffered so far."""
        self._chunks = []
        self._accumulating = True

    def on_chunk(self, data: bytes) -> None:
        if self._accumulating and data:
            self._chunks.append(bytes(data))

    def flush(self) -> bytes:
        """Return the utterance and reset storage. Called once per turn."""
        data = b"".join(self._chunks)
        self._chunks = []
        self._accumulating = False
        return data

    def abort(self) -> None:
        if self._chunks:
            logger.debug("Recorder aborted", discarded_bytes=self.size)
        self._chunks = []
        self._accumulating = False
