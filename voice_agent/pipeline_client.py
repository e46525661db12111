"""
Remote STT -> LLM -> TTS pipeline.

RemotePipelineClient is the three-call contract the orchestrator depends on.
HttpPipelineClient implements it against a pipeline service exposing:

    POST /transcribe   multipart {file, model}              -> {"text": str}
    POST /chat         {"history": [...], "max_output": int} -> {"message": str}
    POST /tts          {"text", "voice", "stability", "similarity"} -> audio bytes

Requests carry no total timeout: a stalled call stalls the turn until it
resolves or the session is disconnected.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional, Protocol, Sequence

import aiohttp

from logging_setup import get_logger, Component
from .config import VoiceConfig
from .errors import CompletionError, SynthesisError, TranscriptionError

stt_logger = get_logger(Component.STT)
llm_logger = get_logger(Component.LLM)
tts_logger = get_logger(Component.TTS)


class RemotePipelineClient(Protocol):
    async def transcribe(self, audio: bytes) -> Optional[str]:
        """Whole-utterance transcription; None or "" when no speech was recognized."""
        ...

    async def complete(self, history: Sequence[dict[str, str]]) -> str:
        """Reply to the full ordered history, ending with the latest user turn."""
        ...

    async def synthesize(self, text: str) -> bytes:
        """Spoken audio for a non-empty text."""
        ...

    async def aclose(self) -> None: ...


def extract_error_message(body: str) -> str:
    """
    Best human-readable message from an error response body.

    Prefers {"detail": "..."}, then {"detail": {"message": "..."}}, then
    {"message": "..."}, falling back to the raw text.
    """
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return body.strip()
    if isinstance(data, dict):
        detail = data.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(detail, dict) and isinstance(detail.get("message"), str):
            return detail["message"]
        if isinstance(data.get("message"), str) and data["message"]:
            return data["message"]
    return body.strip()


class HttpPipelineClient:
    """aiohttp implementation of RemotePipelineClient."""

    def __init__(
        self,
        config: VoiceConfig,
        *,
        audio_filename: str = "audio.wav",
        audio_content_type: str = "audio/wav",
    ):
        self._config = config
        self._base_url = config.pipeline_base_url.rstrip("/")
        self._audio_filename = audio_filename
        self._audio_content_type = audio_content_type
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """Shared HTTP session; keeps connections alive between turns."""
        if self._http_session is None or self._http_session.closed:
            headers = {}
            if self._config.pipeline_api_key:
                headers["Authorization"] = f"Bearer {self._config.pipeline_api_key}"
            self._http_session = aiohttp.ClientSession(
                headers=headers,
                connector=aiohttp.TCPConnector(limit=4, ttl_dns_cache=300),
                timeout=aiohttp.ClientTimeout(total=None),
            )
            stt_logger.debug("Pipeline connection pool created", base_url=self._base_url)
        return self._http_session

    async def aclose(self) -> None:
        """Close the HTTP session. Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
            finally:
                self._http_session = None

    async def transcribe(self, audio: bytes) -> Optional[str]:
        form = aiohttp.FormData()
        form.add_field(
            "file", audio, filename=self._audio_filename, content_type=self._audio_content_type
        )
        form.add_field("model", self._config.transcribe_model)

        t_start = time.perf_counter()
        data = await self._post_json("/transcribe", TranscriptionError, data=form)
        text = data.get("text")
        if text is not None and not isinstance(text, str):
            raise TranscriptionError("Transcription response 'text' is not a string")
        stt_logger.info(
            "Transcription completed",
            audio_bytes=len(audio),
            transcript_length=len(text or ""),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return text

    async def complete(self, history: Sequence[dict[str, str]]) -> str:
        payload = {"history": list(history), "max_output": self._config.max_output_tokens}

        t_start = time.perf_counter()
        data = await self._post_json("/chat", CompletionError, json=payload)
        message = data.get("message")
        if not isinstance(message, str):
            raise CompletionError("Completion response missing 'message'")
        llm_logger.info(
            "Completion received",
            history_length=len(payload["history"]),
            response_length=len(message),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return message

    async def synthesize(self, text: str) -> bytes:
        if not text or not text.strip():
            return b""
        payload = {
            "text": text,
            "voice": self._config.tts_voice,
            "stability": self._config.tts_stability,
            "similarity": self._config.tts_similarity,
        }

        t_start = time.perf_counter()
        session = self._get_or_create_session()
        try:
            async with session.post(f"{self._base_url}/tts", json=payload) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    message = extract_error_message(body) or response.reason or "unknown error"
                    tts_logger.error("Synthesis failed", status_code=response.status, error_text=message)
                    raise SynthesisError(f"TTS error: {message}", status=response.status)
                audio = await response.read()
        except aiohttp.ClientError as e:
            raise SynthesisError(f"TTS request failed: {e}") from e

        tts_logger.info(
            "Synthesis completed",
            text_length=len(text),
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return audio

    async def _post_json(self, path: str, error_cls: type, **kwargs: Any) -> dict[str, Any]:
        session = self._get_or_create_session()
        try:
            async with session.post(f"{self._base_url}{path}", **kwargs) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    raise error_cls(
                        f"{path} returned {response.status}: {extract_error_message(body)}",
                        status=response.status,
                    )
        except aiohttp.ClientError as e:
            raise error_cls(f"{path} request failed: {e}") from e

        try:
            data = json.loads(body)
        except ValueError as e:
            raise error_cls(f"{path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise error_cls(f"{path} returned malformed body")
        return data
