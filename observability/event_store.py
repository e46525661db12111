"""
In-process record of emitted events.

The worker reads it to summarise a session when it ends; tests read it to
observe what the turn loop reported. Bounded so a long-running worker
never grows without limit.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Any, Dict, List, Optional


class EventStore:
    """Oldest events fall off once max_events is reached."""

    def __init__(self, max_events: int = 10000):
        self._events: deque[Dict[str, Any]] = deque(maxlen=max_events)

    def __len__(self) -> int:
        return len(self._events)

    def store(self, event: Dict[str, Any]) -> None:
        self._events.append(dict(event))

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Matching events, oldest first."""
        return [
            dict(e) for e in self._events
            if (session_id is None or e.get("session_id") == session_id)
            and (event_type is None or e.get("event_type") == event_type)
            and (correlation_id is None or e.get("correlation_id") == correlation_id)
        ]

    def counts(self, session_id: str) -> Dict[str, int]:
        """Number of events per event_type for one session."""
        return dict(Counter(
            e.get("event_type", "unknown") for e in self._events if e.get("session_id") == session_id
        ))

    def discard_session(self, session_id: str) -> int:
        """Forget a finished session's events; returns how many were dropped."""
        kept = [e for e in self._events if e.get("session_id") != session_id]
        dropped = len(self._events) - len(kept)
        self._events = deque(kept, maxlen=self._events.maxlen)
        return dropped


event_store = EventStore()
