"""
Conversation state owned by the orchestrator: the history and the active turn.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """
    Append-only user/assistant exchange behind a fixed system prompt.

    len() and iteration cover the exchange only; messages() adds the system
    entry in front, which is what completion requests are built from.
    Exchanges are committed as a pair so roles always alternate.
    """

    def __init__(self, system_prompt: Optional[str] = None):
        self.system_prompt = system_prompt
        self._entries: List[Message] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._entries)

    @property
    def entries(self) -> tuple[Message, ...]:
        return tuple(self._entries)

    def messages(self, pending_user: Optional[str] = None) -> list[dict[str, str]]:
        """Request payload, optionally ending with a not-yet-committed user turn."""
        out = []
        if self.system_prompt:
            out.append(Message(ROLE_SYSTEM, self.system_prompt).to_dict())
        out.extend(m.to_dict() for m in self._entries)
        if pending_user is not None:
            out.append(Message(ROLE_USER, pending_user).to_dict())
        return out

    def commit_exchange(self, user_text: str, assistant_text: str) -> None:
        self._entries.append(Message(ROLE_USER, user_text))
        self._entries.append(Message(ROLE_ASSISTANT, assistant_text))


class TurnPhase(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEECH_CAPTURED = "speech_captured"
    TRANSCRIBING = "transcribing"
    RESPONDING = "responding"
    SPEAKING = "speaking"
    DISCONNECTED = "disconnected"


_turn_ids = itertools.count(1)


@dataclass
class Turn:
    """One speech-capture-to-spoken-response cycle."""

    turn_id: str = field(default_factory=lambda: f"turn_{next(_turn_ids)}")
    audio: bytes = b""
    transcript: Optional[str] = None
    response: Optional[str] = None
    speech_start_ms: Optional[float] = None
    speech_end_ms: Optional[float] = None
    started_at_ms: Optional[float] = None
    phase: TurnPhase = TurnPhase.SPEECH_CAPTURED
