"""
Personas: the system prompt and optional greeting for a session.

Personas live as YAML files in voice_agent/personas/ and are selected by the
dispatch metadata "persona" key or the AGENT_PERSONA environment variable.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_PROMPT = (
    "You are a helpful voice assistant. Keep responses concise and natural for "
    "voice conversation. Be friendly and engaging."
)
DEFAULT_GREETING = "Hello! I'm your voice assistant. How can I help you today?"


@dataclass(frozen=True)
class Persona:
    name: str
    prompt: str
    greeting_text: Optional[str] = None


def _get_personas_dir() -> Path:
    return Path(__file__).parent / "personas"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a persona file; safe_load parses both YAML and JSON."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Persona file {path} must contain a mapping at top-level")
    return data


def _find_persona_file(name: str) -> Optional[Path]:
    personas_dir = _get_personas_dir()
    for suffix in (".yaml", ".yml", ".json"):
        candidate = personas_dir / f"{name}{suffix}"
        if candidate.exists():
            return candidate
    return None


def load_persona(name: Optional[str] = None) -> Persona:
    """
    Resolve a persona.

    Resolution order:
    1) <name>.yaml / .yml / .json
    2) assistant.yaml / .yml / .json
    3) hardcoded default
    """
    name = name or os.getenv("AGENT_PERSONA", "assistant")
    path = _find_persona_file(name) or _find_persona_file("assistant")
    if path is None:
        return Persona(name="assistant", prompt=DEFAULT_PROMPT, greeting_text=DEFAULT_GREETING)

    data = _load_file(path)
    prompt = data.get("prompt") or DEFAULT_PROMPT
    greeting = data.get("greeting_text")
    if isinstance(greeting, str):
        greeting = greeting.strip() or None
    else:
        greeting = None
    return Persona(name=data.get("name", path.stem), prompt=prompt.strip(), greeting_text=greeting)
