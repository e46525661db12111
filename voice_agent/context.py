"""
Dispatch context for one LiveKit job.

Job metadata is a freeform string and commonly JSON. This module parses it
safely and resolves the session id and persona for the orchestrator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class DispatchContext:
    """Parsed context derived from the LiveKit dispatch and participant."""

    session_id: str
    persona: Optional[str] = None


def parse_job_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """Returns {} if metadata is missing, not valid JSON or not an object."""
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _non_blank(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_session_id(
    *,
    room_name: str,
    job_metadata: Optional[str],
    participant_attributes: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Priority:
    1) job metadata JSON key "session_id"
    2) participant attributes key "session_id"
    3) room name
    """
    sid = _non_blank(parse_job_metadata(job_metadata).get("session_id"))
    if sid:
        return sid
    if participant_attributes:
        sid = _non_blank(participant_attributes.get("session_id"))
        if sid:
            return sid
    return room_name or "unknown"


def build_dispatch_context(
    *,
    room_name: str,
    job_metadata: Optional[str],
    participant_attributes: Optional[Mapping[str, str]] = None,
) -> DispatchContext:
    md = parse_job_metadata(job_metadata)
    return DispatchContext(
        session_id=resolve_session_id(
            room_name=room_name,
            job_metadata=job_metadata,
            participant_attributes=participant_attributes,
        ),
        persona=_non_blank(md.get("persona")),
    )
