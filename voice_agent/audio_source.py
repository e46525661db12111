"""
Host audio capability.

The orchestrator acquires one AudioCapture per listening cycle and releases
it when the cycle ends, so every turn starts from a clean stream.
"""

from __future__ import annotations

from typing import Callable, Protocol, Sequence

ChunkCallback = Callable[[bytes], None]


class AudioCapture(Protocol):
    """One live microphone stream plus its analysis buffer."""

    def frequency_bins(self) -> Sequence[int]:
        """Latest analyser magnitudes, 0..255 per bin. Must not block."""
        ...

    def encode(self, data: bytes) -> bytes:
        """Wrap raw captured media into the container sent for transcription."""
        ...

    async def aclose(self) -> None:
        """Stop capturing and release the input device. Safe to call twice."""
        ...


class AudioSource(Protocol):
    """Factory for captures on the session's single input device."""

    async def acquire(self, on_chunk: ChunkCallback) -> AudioCapture:
        """
        Open the input device.

        Captured media is pushed to on_chunk as it arrives. Raises
        AcquisitionError when the device or session is unavailable.
        """
        ...
