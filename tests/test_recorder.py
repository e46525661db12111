"""
Tests for TurnRecorder.
"""
from voice_agent.recorder import TurnRecorder


def test_chunks_before_start_are_dropped():
    recorder = TurnRecorder()
    recorder.on_chunk(b"noise")
    assert recorder.size == 0
    assert recorder.flush() == b""


def test_accumulates_from_start_until_flush():
    recorder = TurnRecorder()
    recorder.start()
    recorder.on_chunk(b"ab")
    recorder.on_chunk(b"")
    recorder.on_chunk(bytearray(b"cd"))

    assert recorder.accumulating is True
    assert recorder.size == 4
    assert recorder.flush() == b"abcd"

    # Storage resets after flush
    assert recorder.accumulating is False
    recorder.on_chunk(b"late")
    assert recorder.flush() == b""


def test_restart_discards_previous_utterance():
    recorder = TurnRecorder()
    recorder.start()
    recorder.on_chunk(b"blip")
    recorder.start()
    recorder.on_chunk(b"real")
    assert recorder.flush() == b"real"


def test_abort_discards_and_stops():
    recorder = TurnRecorder()
    recorder.start()
    recorder.on_chunk(b"partial")
    recorder.abort()

    assert recorder.accumulating is False
    assert recorder.size == 0
