"""
Voice agent: continuous single-speaker conversation turn loop.

Listens on a live audio stream, end-points each utterance with an energy VAD,
runs it through transcribe -> complete -> synthesize, plays the reply and
listens again, with exactly one turn in flight per session.
"""
