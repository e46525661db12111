"""
Energy-threshold voice activity detection.

The detector is fed one snapshot of analyser frequency magnitudes (0..255 per
bin) per frame and decides when an utterance starts and ends. It never blocks
and owns no timers: callers pass the current time in milliseconds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class PhaseEventKind(str, Enum):
    SPEECH_STARTED = "speech_started"
    END_OF_SPEECH = "end_of_speech"


class EndReason(str, Enum):
    """Why an utterance was end-pointed."""

    SILENCE_TIMEOUT = "silence_timeout"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PhaseEvent:
    """Speech boundary event raised by the detector."""

    kind: PhaseEventKind
    timestamp_ms: float
    reason: Optional[EndReason] = None
    speech_start_ms: Optional[float] = None
    speech_end_ms: Optional[float] = None

    @property
    def speech_duration_ms(self) -> Optional[float]:
        if self.speech_start_ms is None or self.speech_end_ms is None:
            return None
        return self.speech_end_ms - self.speech_start_ms


@dataclass(frozen=True)
class VADThresholds:
    """End-pointing thresholds; immutable for the lifetime of a session."""

    silence_threshold_db: float = -35.0
    silence_duration_ms: int = 800
    min_speech_duration_ms: int = 300
    max_recording_duration_ms: int = 10000


@dataclass
class VADState:
    speech_start: Optional[float] = None
    silence_start: Optional[float] = None
    is_speaking: bool = False


def energy_db(bins: Sequence[int]) -> float:
    """
    Loudness of one analyser frame in dBFS-like units.

    All bins are averaged uniformly; the speech band gets no extra weight.
    An empty or all-zero frame is -inf.
    """
    if not bins:
        return float("-inf")
    mean = sum(bins) / len(bins)
    if mean <= 0:
        return float("-inf")
    return 20 * math.log10(mean / 255)


class VoiceActivityDetector:
    """
    Classifies frames into speech/silence and raises phase events.

    - SpeechStarted when the level first rises above the threshold.
    - EndOfSpeech(SILENCE_TIMEOUT) once the level stayed at or below the
      threshold for longer than silence_duration_ms after an utterance longer
      than min_speech_duration_ms.
    - EndOfSpeech(TIMEOUT) once speech has lasted max_recording_duration_ms.

    Utterances too short to count are dropped silently and the detector goes
    back to waiting for speech. There is no timeout while waiting.
    """

    def __init__(self, thresholds: VADThresholds):
        self.thresholds = thresholds
        self.state = VADState()

    def reset(self) -> None:
        self.state = VADState()

    def sample(self, bins: Sequence[int], now: float) -> Optional[PhaseEvent]:
        level = energy_db(bins)
        state = self.state
        cfg = self.thresholds

        if level > cfg.silence_threshold_db:
            if not state.is_speaking:
                state.is_speaking = True
                state.speech_start = now
                state.silence_start = None
                return PhaseEvent(PhaseEventKind.SPEECH_STARTED, now, speech_start_ms=now)

            state.silence_start = None
            # Forced cutoff; the boundary itself counts as reached.
            if now - state.speech_start >= cfg.max_recording_duration_ms:
                return PhaseEvent(
                    PhaseEventKind.END_OF_SPEECH,
                    now,
                    reason=EndReason.TIMEOUT,
                    speech_start_ms=state.speech_start,
                    speech_end_ms=now,
                )
            return None

        if not state.is_speaking:
            return None

        if state.silence_start is None:
            state.silence_start = now
            return None

        if now - state.silence_start > cfg.silence_duration_ms:
            speech_duration = state.silence_start - state.speech_start
            if speech_duration > cfg.min_speech_duration_ms:
                return PhaseEvent(
                    PhaseEventKind.END_OF_SPEECH,
                    now,
                    reason=EndReason.SILENCE_TIMEOUT,
                    speech_start_ms=state.speech_start,
                    speech_end_ms=state.silence_start,
                )
            self.reset()
        return None
