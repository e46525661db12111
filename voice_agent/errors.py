"""
Error taxonomy for the turn loop.

AcquisitionError is fatal to a session. Everything deriving from
RecoverableTurnError discards the active turn only; the orchestrator logs it
and returns to listening after the configured delay.
"""
from typing import Optional


class VoiceAgentError(Exception):
    """Base class for all voice agent errors."""


class AcquisitionError(VoiceAgentError):
    """Microphone, analysis buffer or session could not be acquired."""


class RecoverableTurnError(VoiceAgentError):
    """A single turn failed; the session keeps running."""

    stage = "unknown"

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TranscriptionError(RecoverableTurnError):
    stage = "transcribe"


class CompletionError(RecoverableTurnError):
    stage = "complete"


class SynthesisError(RecoverableTurnError):
    stage = "synthesize"


class PlaybackError(RecoverableTurnError):
    stage = "playback"


class ProviderErrorCategory:
    """Stable categories for pipeline failures."""

    AUTH_FAILED = "provider.auth_failed"
    NETWORK_ERROR = "provider.network_error"
    RATE_LIMITED = "provider.rate_limited"
    CAPACITY_LIMITED = "provider.capacity_limited"
    BAD_RESPONSE = "provider.bad_response"
    UNKNOWN_ERROR = "provider.unknown_error"


_SECRET_MARKERS = ("secret", "password", "key", "token", "bearer")


class ProviderErrorHandler:
    """Maps pipeline failures to stable categories without raising."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error into a ProviderErrorCategory.

        The HTTP status wins when the error carries one; otherwise the
        message is matched against known patterns.
        """
        status = getattr(error, "status", None)
        if isinstance(status, int):
            if status in (401, 403):
                return ProviderErrorCategory.AUTH_FAILED
            if status == 429:
                return ProviderErrorCategory.RATE_LIMITED
            if status in (502, 503, 504):
                return ProviderErrorCategory.CAPACITY_LIMITED
            if 400 <= status < 600:
                return ProviderErrorCategory.BAD_RESPONSE

        error_str = str(error).lower()

        if "auth" in error_str or "unauthorized" in error_str or "401" in error_str:
            return ProviderErrorCategory.AUTH_FAILED

        if "rate limit" in error_str or "429" in error_str or "throttle" in error_str:
            return ProviderErrorCategory.RATE_LIMITED

        if "capacity" in error_str or "503" in error_str or "overloaded" in error_str:
            return ProviderErrorCategory.CAPACITY_LIMITED

        if (
            "network" in error_str
            or "timeout" in error_str
            or "connection" in error_str
            or "connect" in error_str
        ):
            return ProviderErrorCategory.NETWORK_ERROR

        if "invalid json" in error_str or "malformed" in error_str or "missing" in error_str:
            return ProviderErrorCategory.BAD_RESPONSE

        return ProviderErrorCategory.UNKNOWN_ERROR

    @staticmethod
    def redacted_detail(error: BaseException) -> str:
        """Error text safe for logs and events."""
        detail = str(error)
        lowered = detail.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS):
            return "[redacted: potential secret]"
        return detail
