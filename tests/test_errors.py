"""
Pipeline error classification and redaction tests.
"""
import pytest

from voice_agent.errors import (
    CompletionError,
    PlaybackError,
    ProviderErrorCategory,
    ProviderErrorHandler,
    RecoverableTurnError,
    SynthesisError,
    TranscriptionError,
)


class TestStages:
    @pytest.mark.parametrize("cls, stage", [
        (TranscriptionError, "transcribe"),
        (CompletionError, "complete"),
        (SynthesisError, "synthesize"),
        (PlaybackError, "playback"),
    ])
    def test_each_error_names_its_stage(self, cls, stage):
        error = cls("boom", status=500)
        assert isinstance(error, RecoverableTurnError)
        assert error.stage == stage
        assert error.status == 500


class TestProviderErrorClassification:
    @pytest.mark.parametrize("status, category", [
        (401, ProviderErrorCategory.AUTH_FAILED),
        (403, ProviderErrorCategory.AUTH_FAILED),
        (429, ProviderErrorCategory.RATE_LIMITED),
        (503, ProviderErrorCategory.CAPACITY_LIMITED),
        (504, ProviderErrorCategory.CAPACITY_LIMITED),
        (400, ProviderErrorCategory.BAD_RESPONSE),
        (500, ProviderErrorCategory.BAD_RESPONSE),
    ])
    def test_status_wins(self, status, category):
        error = CompletionError("Connection reset", status=status)
        assert ProviderErrorHandler.classify_error(error) == category

    def test_message_patterns(self):
        classify = ProviderErrorHandler.classify_error
        assert classify(Exception("Unauthorized: 401")) == ProviderErrorCategory.AUTH_FAILED
        assert classify(Exception("Rate limit exceeded")) == ProviderErrorCategory.RATE_LIMITED
        assert classify(Exception("Model overloaded")) == ProviderErrorCategory.CAPACITY_LIMITED
        assert classify(Exception("Network timeout")) == ProviderErrorCategory.NETWORK_ERROR
        assert classify(TranscriptionError("Cannot connect to host")) == ProviderErrorCategory.NETWORK_ERROR
        assert classify(CompletionError("/chat returned invalid JSON")) == ProviderErrorCategory.BAD_RESPONSE
        assert classify(RuntimeError("something odd")) == ProviderErrorCategory.UNKNOWN_ERROR


class TestRedaction:
    def test_plain_errors_pass_through(self):
        assert ProviderErrorHandler.redacted_detail(Exception("Network timeout")) == "Network timeout"

    def test_secret_like_errors_are_redacted(self):
        error = Exception("invalid api key sk-123")
        assert ProviderErrorHandler.redacted_detail(error) == "[redacted: potential secret]"
        error = Exception("Bearer abc rejected")
        assert ProviderErrorHandler.redacted_detail(error) == "[redacted: potential secret]"
