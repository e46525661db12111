"""
Turn lifecycle observability.

Every turn emits its events with correlation_id = turn_id, so one turn can be
followed from speech start to playback (or to the point it was discarded).
Transcript and reply content never leave the process at info level; events
carry lengths and latencies only.
"""

from __future__ import annotations

from typing import Any, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity
from .conversation import Turn
from .errors import ProviderErrorHandler
from .vad import PhaseEvent


class TurnObserver:
    """Emits structured events and logs for one session's turns."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.emitter = EventEmitter(ObsComponent.ORCHESTRATOR)
        self.logger = get_logger(LogComponent.ORCHESTRATOR, session_id=session_id)

    def _emit(self, event_type: str, turn: Optional[Turn] = None, *, severity=Severity.INFO, **payload: Any):
        self.emitter.emit(
            event_type,
            session_id=self.session_id,
            severity=severity,
            correlation_id=turn.turn_id if turn else None,
            **payload,
        )

    # --- session ---

    def session_connected(self) -> None:
        self._emit("session.connected")
        self.logger.info("Session connected")

    def session_disconnected(self, *, phase: str, turns_completed: int) -> None:
        self._emit("session.disconnected", phase=phase, turns_completed=turns_completed)
        self.logger.info("Session disconnected", phase=phase, turns_completed=turns_completed)

    def acquisition_failed(self, error: BaseException) -> None:
        detail = ProviderErrorHandler.redacted_detail(error)
        self._emit("session.acquisition_failed", severity=Severity.ERROR, error=detail)
        self.logger.error("Audio acquisition failed", error=detail, error_type=type(error).__name__)

    # --- capture ---

    def speech_started(self, turn: Turn, event: PhaseEvent) -> None:
        self._emit("vad.speech_started", turn, speech_start_ms=int(event.timestamp_ms))
        self.logger.debug("Speech started", turn_id=turn.turn_id, speech_start_ms=int(event.timestamp_ms))

    def end_of_speech(self, turn: Turn, event: PhaseEvent) -> None:
        duration = event.speech_duration_ms
        self._emit(
            "vad.end_of_speech",
            turn,
            reason=event.reason.value if event.reason else None,
            speech_duration_ms=int(duration) if duration is not None else None,
        )
        self.logger.info(
            "End of speech",
            turn_id=turn.turn_id,
            reason=event.reason.value if event.reason else None,
            speech_duration_ms=int(duration) if duration is not None else None,
        )

    def turn_discarded(self, turn: Turn, reason: str, **payload: Any) -> None:
        self._emit("turn.discarded", turn, reason=reason, **payload)
        self.logger.info("Turn discarded", turn_id=turn.turn_id, reason=reason, **payload)

    # --- pipeline ---

    def transcribed(self, turn: Turn, *, latency_ms: int) -> None:
        self._emit(
            "stt.final",
            turn,
            transcript_length=len(turn.transcript or ""),
            latency_ms=latency_ms,
        )
        self.logger.debug_pii("User said", turn_id=turn.turn_id, text=turn.transcript)

    def responded(self, turn: Turn, *, latency_ms: int) -> None:
        self._emit(
            "llm.response",
            turn,
            response_length=len(turn.response or ""),
            latency_ms=latency_ms,
        )
        self.logger.debug_pii("Assistant replied", turn_id=turn.turn_id, text=turn.response)

    def synthesized(self, turn: Optional[Turn], *, audio_bytes: int, latency_ms: int) -> None:
        self._emit("tts.completed", turn, audio_bytes=audio_bytes, latency_ms=latency_ms)

    def playback_completed(self, turn: Optional[Turn], *, latency_ms: int) -> None:
        self._emit("playback.completed", turn, latency_ms=latency_ms)

    def turn_completed(self, turn: Turn, *, latency_ms: int) -> None:
        self._emit("turn.completed", turn, latency_ms=latency_ms)
        self.logger.info("Turn completed", turn_id=turn.turn_id, latency_ms=latency_ms)

    def turn_failed(self, turn: Optional[Turn], stage: str, error: BaseException, *, retry_delay_ms: int) -> None:
        category = ProviderErrorHandler.classify_error(error)
        detail = ProviderErrorHandler.redacted_detail(error)
        self._emit(
            "turn.failed",
            turn,
            severity=Severity.ERROR,
            stage=stage,
            error_type=type(error).__name__,
            category=category,
            error=detail,
            retry_delay_ms=retry_delay_ms,
        )
        self.logger.error(
            "Turn failed",
            turn_id=turn.turn_id if turn else None,
            stage=stage,
            error=detail,
            error_type=type(error).__name__,
            category=category,
            retry_delay_ms=retry_delay_ms,
        )
