"""
Playback of synthesized replies.
"""

from __future__ import annotations

from typing import Protocol


class PlaybackSink(Protocol):
    """
    Plays one reply at a time.

    play() returns when playback ends naturally and raises PlaybackError on
    decode or output failure. stop() interrupts the active playback at once;
    play() then returns without error.
    """

    async def play(self, audio: bytes) -> None: ...

    async def stop(self) -> None: ...

    async def aclose(self) -> None: ...
