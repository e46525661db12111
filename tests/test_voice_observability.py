"""
Tests for turn lifecycle observability.

Verifies:
- Events carry the turn id as correlation id
- Transcripts and replies never appear in emitted events
- Failures carry stage, category and a redacted error
"""
import json

from voice_agent.conversation import Turn
from voice_agent.errors import CompletionError
from voice_agent.observability import TurnObserver
from voice_agent.vad import EndReason, PhaseEvent, PhaseEventKind


def emitted(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]


def test_end_of_speech_event(capsys):
    observer = TurnObserver(session_id="sess_obs_1")
    turn = Turn()
    event = PhaseEvent(
        PhaseEventKind.END_OF_SPEECH, 1800,
        reason=EndReason.SILENCE_TIMEOUT, speech_start_ms=300, speech_end_ms=900,
    )
    observer.end_of_speech(turn, event)

    events = [e for e in emitted(capsys) if e.get("event_type") == "vad.end_of_speech"]
    assert events[0]["session_id"] == "sess_obs_1"
    assert events[0]["correlation_id"] == turn.turn_id
    assert events[0]["reason"] == "silence_timeout"
    assert events[0]["speech_duration_ms"] == 600


def test_transcript_content_stays_out_of_events(capsys):
    observer = TurnObserver(session_id="sess_obs_2")
    turn = Turn(transcript="my account number is 12345", response="Thanks, noted.")
    observer.transcribed(turn, latency_ms=120)
    observer.responded(turn, latency_ms=340)

    events = {e["event_type"]: e for e in emitted(capsys) if "event_type" in e}
    out = json.dumps(list(events.values()))
    assert "12345" not in out
    assert "noted" not in out
    assert events["stt.final"]["transcript_length"] == 26
    assert events["llm.response"]["response_length"] == 14


def test_turn_failed_event(capsys):
    observer = TurnObserver(session_id="sess_obs_3")
    turn = Turn()
    observer.turn_failed(turn, "complete", CompletionError("upstream busy", status=429), retry_delay_ms=2000)

    failed = [e for e in emitted(capsys) if e.get("event_type") == "turn.failed"][0]
    assert failed["severity"] == "error"
    assert failed["stage"] == "complete"
    assert failed["category"] == "provider.rate_limited"
    assert failed["error_type"] == "CompletionError"
    assert failed["error"] == "upstream busy"
    assert failed["retry_delay_ms"] == 2000


def test_session_events_use_session_as_correlation(capsys):
    observer = TurnObserver(session_id="sess_obs_4")
    observer.session_connected()
    observer.session_disconnected(phase="listening", turns_completed=3)

    events = emitted(capsys)
    disconnected = [e for e in events if e.get("event_type") == "session.disconnected"][0]
    assert disconnected["correlation_id"] == "sess_obs_4"
    assert disconnected["turns_completed"] == 3
