"""
Continuous single-speaker turn loop.

One task samples the analyser and feeds the VAD; it hands EndOfSpeech to the
turn task through a single-slot queue and stops. The turn task runs
transcribe -> complete -> synthesize -> play strictly in sequence, then
starts the next listening cycle on a freshly acquired capture.

The phase is the single-flight guard: a capture cycle can only start from
LISTENING while no other cycle is active.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import suppress
from typing import Awaitable, Callable, Optional, Union

from logging_setup import get_logger, Component
from .audio_source import AudioCapture, AudioSource
from .config import VoiceConfig
from .conversation import ROLE_ASSISTANT, ROLE_USER, ConversationHistory, Turn, TurnPhase
from .errors import AcquisitionError, RecoverableTurnError
from .observability import TurnObserver
from .pipeline_client import RemotePipelineClient
from .playback import PlaybackSink
from .recorder import TurnRecorder
from .vad import PhaseEvent, PhaseEventKind, VoiceActivityDetector

__all__ = ["ConversationOrchestrator", "TurnPhase", "monotonic_ms"]

logger = get_logger(Component.ORCHESTRATOR)

MessageListener = Callable[[str, str], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class ConversationOrchestrator:
    """Owns one session: its audio capture, turn phase and history."""

    def __init__(
        self,
        config: VoiceConfig,
        audio_source: AudioSource,
        pipeline: RemotePipelineClient,
        playback: PlaybackSink,
        *,
        session_id: str,
        system_prompt: Optional[str] = None,
        greeting: Optional[str] = None,
        on_message: Optional[MessageListener] = None,
        now: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.session_id = session_id
        self.history = ConversationHistory(system_prompt)
        self.turn: Optional[Turn] = None
        self.turns_completed = 0
        self.failure: Optional[BaseException] = None

        self._audio_source = audio_source
        self._pipeline = pipeline
        self._playback = playback
        self._greeting = greeting
        self._on_message = on_message
        self._now = now
        self._sleep = sleep

        self._phase = TurnPhase.IDLE
        self._vad = VoiceActivityDetector(config.thresholds)
        self._recorder = TurnRecorder()
        self._capture: Optional[AudioCapture] = None
        self._cycle_active = False
        self._sampler: Optional[asyncio.Task] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._events: asyncio.Queue[Union[PhaseEvent, Exception]] = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()

        self.observer = TurnObserver(session_id)
        self.logger = logger.with_session(session_id)

    # --- state ---

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def is_connected(self) -> bool:
        return self._phase not in (TurnPhase.IDLE, TurnPhase.DISCONNECTED)

    def _set_phase(self, phase: TurnPhase) -> None:
        if phase is self._phase:
            return
        self.logger.debug("Phase changed", old_phase=self._phase.value, new_phase=phase.value)
        self._phase = phase
        if self.turn is not None:
            self.turn.phase = phase

    # --- lifecycle ---

    async def connect(self) -> None:
        """
        Idle -> Listening.

        Raises AcquisitionError if the microphone cannot be opened; the
        orchestrator is then Disconnected and never enters the turn loop.
        """
        if self._phase is not TurnPhase.IDLE:
            self.logger.warning("connect() ignored", phase=self._phase.value)
            return
        try:
            self._capture = await self._audio_source.acquire(self._recorder.on_chunk)
        except AcquisitionError as e:
            self.failure = e
            self.observer.acquisition_failed(e)
            self._set_phase(TurnPhase.DISCONNECTED)
            self._closed.set()
            raise

        self._set_phase(TurnPhase.LISTENING)
        self.observer.session_connected()
        self._turn_task = asyncio.create_task(self._run(), name=f"turn-loop-{self.session_id}")

    async def disconnect(self) -> None:
        """Abort everything in flight and release the input device. Idempotent."""
        if self._phase is TurnPhase.DISCONNECTED:
            return
        previous = self._phase
        self._set_phase(TurnPhase.DISCONNECTED)

        await self._stop_sampler()
        self._recorder.abort()
        if previous is TurnPhase.SPEAKING:
            await self._playback.stop()
        await self._release_capture()

        task = self._turn_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        self.turn = None
        self.observer.session_disconnected(phase=previous.value, turns_completed=self.turns_completed)
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def start_listening(self) -> bool:
        """
        Start a capture cycle if none is active.

        Returns False (and does nothing) unless the session is LISTENING with
        no cycle running.
        """
        if self._phase is not TurnPhase.LISTENING or self._cycle_active:
            return False
        self._cycle_active = True
        self._vad.reset()
        self._recorder.abort()

        if self._capture is None:
            try:
                capture = await self._audio_source.acquire(self._recorder.on_chunk)
            except AcquisitionError as e:
                self._cycle_active = False
                self.failure = e
                self.observer.acquisition_failed(e)
                await self.disconnect()
                return False
            if not self.is_connected:
                await capture.aclose()
                return False
            self._capture = capture

        self._sampler = asyncio.create_task(self._sample_loop(self._capture))
        return True

    # --- sampling ---

    async def _sample_loop(self, capture: AudioCapture) -> None:
        interval = self.config.sampling_interval_s
        try:
            while True:
                event = self._vad.sample(capture.frequency_bins(), self._now())
                if event is not None:
                    if event.kind is PhaseEventKind.SPEECH_STARTED:
                        # A rejected blip leaves its turn behind; the next start replaces it.
                        self.turn = Turn(speech_start_ms=event.timestamp_ms, phase=TurnPhase.LISTENING)
                        self._recorder.start()
                        self.observer.speech_started(self.turn, event)
                    else:
                        self._events.put_nowait(event)
                        return
                await self._sleep(interval)
        except Exception as e:
            self.logger.exception("Sampling failed", error=str(e), error_type=type(e).__name__)
            # The turn task owns recovery; the queue is empty while sampling.
            self._events.put_nowait(e)

    async def _stop_sampler(self) -> None:
        task, self._sampler = self._sampler, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.warning("Sampler ended with error", error=str(e), error_type=type(e).__name__)

    async def _release_capture(self) -> None:
        capture, self._capture = self._capture, None
        self._cycle_active = False
        if capture is not None:
            await capture.aclose()

    # --- turn loop ---

    async def _run(self) -> None:
        try:
            if self._greeting:
                await self._greet()
            await self.start_listening()
            while self.is_connected:
                event = await self._events.get()
                if isinstance(event, Exception):
                    await self._handle_capture_failure(event)
                else:
                    await self._handle_end_of_speech(event)
        except Exception as e:
            self.logger.exception("Turn loop crashed", error=str(e), error_type=type(e).__name__)
            self.failure = e
            await self.disconnect()

    async def _greet(self) -> None:
        self._set_phase(TurnPhase.SPEAKING)
        try:
            audio = await self._pipeline.synthesize(self._greeting)
            if self.is_connected and audio:
                await self._playback.play(audio)
        except RecoverableTurnError as e:
            self.observer.turn_failed(None, f"greeting.{e.stage}", e, retry_delay_ms=0)
        if self.is_connected:
            self._set_phase(TurnPhase.LISTENING)

    async def _handle_capture_failure(self, error: Exception) -> None:
        """
        Drop the broken capture and listen again on a fresh one.

        The cycle stays claimed through the retry delay so start_listening()
        is a no-op until then. Failing to reopen the microphone ends the
        session through the usual acquisition path.
        """
        await self._stop_sampler()
        self._recorder.abort()
        await self._release_capture()
        if not self.is_connected:
            return
        self._cycle_active = True
        delay_ms = self.config.post_error_retry_delay_ms
        self.observer.turn_failed(self.turn, "capture", error, retry_delay_ms=delay_ms)
        await self._sleep(self.config.post_error_retry_delay_s)
        self._cycle_active = False
        if not self.is_connected:
            return
        await self._resume_listening()

    async def _handle_end_of_speech(self, event: PhaseEvent) -> None:
        turn = self.turn or Turn()
        turn.speech_start_ms = event.speech_start_ms
        turn.speech_end_ms = event.speech_end_ms
        turn.started_at_ms = self._now()
        self.turn = turn
        self._set_phase(TurnPhase.SPEECH_CAPTURED)
        self.observer.end_of_speech(turn, event)

        await self._stop_sampler()
        capture = self._capture
        audio = self._recorder.flush()
        if audio and capture is not None:
            audio = capture.encode(audio)
        await self._release_capture()
        turn.audio = audio

        if len(audio) < self.config.min_capture_bytes:
            self.observer.turn_discarded(turn, "capture_too_small", audio_bytes=len(audio))
            await self._resume_listening()
            return

        try:
            await self._run_pipeline(turn)
        except RecoverableTurnError as e:
            await self._recover(turn, e.stage, e)
        except Exception as e:
            self.logger.exception("Unexpected turn failure", turn_id=turn.turn_id, phase=turn.phase.value)
            await self._recover(turn, turn.phase.value, e)

    async def _run_pipeline(self, turn: Turn) -> None:
        self._set_phase(TurnPhase.TRANSCRIBING)
        t0 = self._now()
        transcript = await self._pipeline.transcribe(turn.audio)
        if not self.is_connected:
            return
        turn.transcript = (transcript or "").strip()
        self.observer.transcribed(turn, latency_ms=int(self._now() - t0))
        if not turn.transcript:
            self.observer.turn_discarded(turn, "empty_transcript")
            await self._resume_listening()
            return

        self._set_phase(TurnPhase.RESPONDING)
        t0 = self._now()
        reply = await self._pipeline.complete(self.history.messages(pending_user=turn.transcript))
        if not self.is_connected:
            return
        turn.response = (reply or "").strip()
        self.observer.responded(turn, latency_ms=int(self._now() - t0))
        if not turn.response:
            self.observer.turn_discarded(turn, "empty_completion")
            await self._resume_listening()
            return

        self.history.commit_exchange(turn.transcript, turn.response)
        self._notify(ROLE_USER, turn.transcript)
        self._notify(ROLE_ASSISTANT, turn.response)

        self._set_phase(TurnPhase.SPEAKING)
        t0 = self._now()
        audio = await self._pipeline.synthesize(turn.response)
        if not self.is_connected:
            return
        self.observer.synthesized(turn, audio_bytes=len(audio), latency_ms=int(self._now() - t0))

        if audio:
            t0 = self._now()
            await self._playback.play(audio)
            if not self.is_connected:
                return
            self.observer.playback_completed(turn, latency_ms=int(self._now() - t0))

        self.turns_completed += 1
        self.observer.turn_completed(turn, latency_ms=int(self._now() - turn.started_at_ms))
        await self._resume_listening()

    async def _recover(self, turn: Turn, stage: str, error: BaseException) -> None:
        """Discard the turn and go back to listening after the retry delay."""
        if not self.is_connected:
            return
        delay_ms = self.config.post_error_retry_delay_ms
        self.observer.turn_failed(turn, stage, error, retry_delay_ms=delay_ms)
        await self._sleep(self.config.post_error_retry_delay_s)
        if not self.is_connected:
            return
        await self._resume_listening()

    async def _resume_listening(self) -> None:
        self.turn = None
        self._set_phase(TurnPhase.LISTENING)
        await self.start_listening()

    def _notify(self, role: str, content: str) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(role, content)
        except Exception as e:
            self.logger.warning("Message listener failed", error=str(e), error_type=type(e).__name__)
