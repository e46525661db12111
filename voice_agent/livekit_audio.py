"""
LiveKit host adapters.

LiveKitAudioSource turns the remote participant's microphone track into
AudioCaptures: PCM16 mono frames are forwarded to the recorder and fed into
an AnalyserBuffer that produces byte frequency data the same way a browser
AnalyserNode does (Blackman window, dB range mapped onto 0..255, temporal
smoothing). LiveKitPlaybackSink publishes one agent track and plays PCM16
replies on it.
"""

from __future__ import annotations

import asyncio
import io
import wave
from contextlib import suppress
from typing import Optional

import numpy as np
from livekit import rtc

from logging_setup import get_logger, Component
from .audio_source import ChunkCallback
from .errors import AcquisitionError, PlaybackError

source_logger = get_logger(Component.AUDIO_SOURCE)
playback_logger = get_logger(Component.PLAYBACK)


def pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Wrap PCM16 mono in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buf.getvalue()


COMPRESSED_MAGIC = {
    b"ID3": "mp3",
    b"OggS": "ogg",
    b"fLaC": "flac",
}


def compressed_format(audio: bytes) -> Optional[str]:
    """Name of the compressed format the bytes start with, if any."""
    for magic, name in COMPRESSED_MAGIC.items():
        if audio.startswith(magic):
            return name
    # MPEG audio frame sync: eleven set bits
    if len(audio) >= 2 and audio[0] == 0xFF and audio[1] & 0xE0 == 0xE0:
        return "mp3"
    if audio[4:8] == b"ftyp":
        return "mp4"
    return None


def decode_pcm(audio: bytes, default_sample_rate: int) -> tuple[bytes, int]:
    """
    PCM16 mono samples and their rate from raw PCM or a WAV file.

    Raises ValueError for anything else, compressed audio included.
    """
    fmt = compressed_format(audio)
    if fmt is not None:
        raise ValueError(f"compressed audio ({fmt}) is not supported")
    if audio[:4] == b"RIFF":
        try:
            with wave.open(io.BytesIO(audio), "rb") as wav:
                if wav.getsampwidth() != 2 or wav.getnchannels() != 1:
                    raise ValueError("only 16-bit mono WAV is supported")
                return wav.readframes(wav.getnframes()), wav.getframerate()
        except (wave.Error, EOFError) as e:
            raise ValueError(f"invalid WAV data: {e}") from e
    if len(audio) % 2:
        raise ValueError("raw PCM16 data has an odd byte length")
    return audio, default_sample_rate


def playable_pcm(audio: bytes, track_rate: int) -> bytes:
    """PCM16 ready for a track running at track_rate, or PlaybackError."""
    try:
        pcm, sample_rate = decode_pcm(audio, track_rate)
    except ValueError as e:
        raise PlaybackError(f"cannot decode audio: {e}") from e
    if sample_rate != track_rate:
        raise PlaybackError(f"unsupported sample rate {sample_rate} (track is {track_rate})")
    return pcm


class AnalyserBuffer:
    """Rolling time-domain window with AnalyserNode-style byte frequency output."""

    def __init__(
        self,
        fft_size: int = 512,
        *,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
        smoothing: float = 0.8,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        self.fft_size = fft_size
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self.smoothing = smoothing
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._window = np.blackman(fft_size).astype(np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float32)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push_pcm16(self, pcm: bytes) -> None:
        samples = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0
        n = len(samples)
        if n == 0:
            return
        if n >= self.fft_size:
            self._samples[:] = samples[-self.fft_size:]
        else:
            self._samples = np.roll(self._samples, -n)
            self._samples[-n:] = samples

    def byte_frequency_data(self) -> list[int]:
        spectrum = np.abs(np.fft.rfft(self._samples * self._window))[: self.frequency_bin_count]
        spectrum /= self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1 - self.smoothing) * spectrum
        with np.errstate(divide="ignore"):
            db = 20 * np.log10(self._smoothed)
        scaled = (db - self.min_decibels) * (255.0 / (self.max_decibels - self.min_decibels))
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8).tolist()


class LiveKitCapture:
    """One subscription to the participant's microphone track."""

    def __init__(
        self,
        stream: rtc.AudioStream,
        on_chunk: ChunkCallback,
        *,
        sample_rate: int,
        fft_size: int,
    ):
        self._stream = stream
        self._on_chunk = on_chunk
        self._sample_rate = sample_rate
        self._analyser = AnalyserBuffer(fft_size)
        self._closed = False
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        async for event in self._stream:
            pcm = bytes(event.frame.data)
            self._analyser.push_pcm16(pcm)
            self._on_chunk(pcm)

    def frequency_bins(self) -> list[int]:
        return self._analyser.byte_frequency_data()

    def encode(self, data: bytes) -> bytes:
        return pcm_to_wav(data, self._sample_rate)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pump_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._pump_task
        await self._stream.aclose()


class LiveKitAudioSource:
    """Acquires captures from one remote participant's microphone."""

    def __init__(
        self,
        room: rtc.Room,
        participant: rtc.RemoteParticipant,
        *,
        sample_rate: int = 16000,
        fft_size: int = 512,
        track_wait_seconds: float = 10.0,
    ):
        self._room = room
        self._participant = participant
        self._sample_rate = sample_rate
        self._fft_size = fft_size
        self._track_wait_seconds = track_wait_seconds

    def _subscribed_audio_track(self) -> Optional[rtc.Track]:
        for publication in self._participant.track_publications.values():
            if publication.kind == rtc.TrackKind.KIND_AUDIO and publication.track is not None:
                return publication.track
        return None

    async def _wait_for_audio_track(self) -> rtc.Track:
        track = self._subscribed_audio_track()
        if track is not None:
            return track

        loop = asyncio.get_running_loop()
        found: asyncio.Future = loop.create_future()

        def on_track_subscribed(track, _publication, participant):
            if (
                participant.identity == self._participant.identity
                and track.kind == rtc.TrackKind.KIND_AUDIO
                and not found.done()
            ):
                found.set_result(track)

        self._room.on("track_subscribed", on_track_subscribed)
        try:
            return await asyncio.wait_for(found, timeout=self._track_wait_seconds)
        except asyncio.TimeoutError as e:
            raise AcquisitionError(
                f"no audio track from {self._participant.identity} within {self._track_wait_seconds}s"
            ) from e
        finally:
            self._room.off("track_subscribed", on_track_subscribed)

    async def acquire(self, on_chunk: ChunkCallback) -> LiveKitCapture:
        if not self._room.isconnected():
            raise AcquisitionError("room is not connected")
        track = await self._wait_for_audio_track()
        stream = rtc.AudioStream(track, sample_rate=self._sample_rate, num_channels=1)
        source_logger.debug(
            "Microphone capture acquired",
            participant_identity=self._participant.identity,
            sample_rate=self._sample_rate,
        )
        return LiveKitCapture(stream, on_chunk, sample_rate=self._sample_rate, fft_size=self._fft_size)


class LiveKitPlaybackSink:
    """Plays PCM16 mono replies on a published agent audio track."""

    def __init__(self, room: rtc.Room, *, sample_rate: int = 16000, track_name: str = "agent-voice"):
        self._room = room
        self._sample_rate = sample_rate
        self._track_name = track_name
        self._source = rtc.AudioSource(sample_rate, 1)
        self._track: Optional[rtc.LocalAudioTrack] = None
        self._playing = False
        self._interrupted = False
        self._closed = False

    async def start(self) -> None:
        """Publish the agent track. Called once per session."""
        self._track = rtc.LocalAudioTrack.create_audio_track(self._track_name, self._source)
        await self._room.local_participant.publish_track(
            self._track,
            rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE),
        )

    async def play(self, audio: bytes) -> None:
        if self._playing:
            raise PlaybackError("playback already active")
        pcm = playable_pcm(audio, self._sample_rate)

        samples_per_frame = self._sample_rate // 100
        frame_bytes = samples_per_frame * 2
        self._playing = True
        self._interrupted = False
        try:
            for offset in range(0, len(pcm), frame_bytes):
                if self._interrupted:
                    return
                chunk = pcm[offset:offset + frame_bytes]
                if len(chunk) < frame_bytes:
                    chunk = chunk + b"\x00" * (frame_bytes - len(chunk))
                await self._source.capture_frame(rtc.AudioFrame(
                    data=chunk,
                    sample_rate=self._sample_rate,
                    num_channels=1,
                    samples_per_channel=samples_per_frame,
                ))
            if not self._interrupted:
                await self._source.wait_for_playout()
        except Exception as e:
            playback_logger.error("Playback failed", error=str(e), error_type=type(e).__name__)
            raise PlaybackError(f"playback failed: {e}") from e
        finally:
            self._playing = False

    async def stop(self) -> None:
        self._interrupted = True
        self._source.clear_queue()

    async def aclose(self) -> None:
        """Stop playback and unpublish the agent track. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self.stop()
        if self._track is not None:
            try:
                await self._room.local_participant.unpublish_track(self._track.sid)
            except Exception as e:
                # Room may already be gone.
                playback_logger.warning("Unpublish failed", error=str(e), error_type=type(e).__name__)
            self._track = None
        await self._source.aclose()
