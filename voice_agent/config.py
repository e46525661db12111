"""
Voice agent configuration.

Loads turn-loop thresholds, pipeline endpoint and host audio settings from
environment variables. LiveKit credentials (LIVEKIT_URL, LIVEKIT_API_KEY,
LIVEKIT_API_SECRET) are read by the livekit-agents worker itself.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .vad import VADThresholds


def load_local_env() -> None:
    """Load .env_local / .env.local without overriding the real environment."""
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _clean_env(key: str) -> Optional[str]:
    """
    Read an environment variable, stripping trailing comments and whitespace.

    "300  # comment" -> "300"; unset or blank -> None
    """
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class VoiceConfig:
    """Voice agent configuration."""

    # Remote pipeline (POST /transcribe, /chat, /tts)
    pipeline_base_url: str = "http://127.0.0.1:8080"
    pipeline_api_key: Optional[str] = None
    transcribe_model: str = "whisper-1"
    max_output_tokens: int = 150
    tts_voice: str = "UgBBYS2sOqTuMpoF3BR0"
    tts_stability: float = 0.5
    tts_similarity: float = 0.5

    # End-pointing
    thresholds: VADThresholds = field(default_factory=VADThresholds)
    min_capture_bytes: int = 1000
    post_error_retry_delay_ms: int = 2000
    sampling_rate_hz: int = 60

    # Host audio
    audio_sample_rate: int = 16000
    fft_size: int = 512

    persona: str = "assistant"

    def __post_init__(self):
        if self.sampling_rate_hz <= 0:
            raise ValueError("sampling_rate_hz must be positive")
        if self.min_capture_bytes < 0:
            raise ValueError("min_capture_bytes must not be negative")
        if self.post_error_retry_delay_ms < 0:
            raise ValueError("post_error_retry_delay_ms must not be negative")

    @property
    def sampling_interval_s(self) -> float:
        return 1.0 / self.sampling_rate_hz

    @property
    def post_error_retry_delay_s(self) -> float:
        return self.post_error_retry_delay_ms / 1000

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        """Load configuration from environment variables."""
        defaults = VADThresholds()
        return cls(
            pipeline_base_url=os.environ.get("PIPELINE_BASE_URL", "http://127.0.0.1:8080").rstrip("/"),
            pipeline_api_key=os.environ.get("PIPELINE_API_KEY") or None,
            transcribe_model=os.environ.get("TRANSCRIBE_MODEL", "whisper-1"),
            max_output_tokens=_parse_int_env("MAX_OUTPUT_TOKENS", default=150),
            tts_voice=os.environ.get("TTS_VOICE", "UgBBYS2sOqTuMpoF3BR0"),
            tts_stability=_parse_float_env("TTS_STABILITY", default=0.5),
            tts_similarity=_parse_float_env("TTS_SIMILARITY", default=0.5),
            thresholds=VADThresholds(
                silence_threshold_db=_parse_float_env("VAD_SILENCE_THRESHOLD_DB", defaults.silence_threshold_db),
                silence_duration_ms=_parse_int_env("VAD_SILENCE_DURATION_MS", defaults.silence_duration_ms),
                min_speech_duration_ms=_parse_int_env("VAD_MIN_SPEECH_DURATION_MS", defaults.min_speech_duration_ms),
                max_recording_duration_ms=_parse_int_env(
                    "VAD_MAX_RECORDING_DURATION_MS", defaults.max_recording_duration_ms
                ),
            ),
            min_capture_bytes=_parse_int_env("MIN_CAPTURE_BYTES", default=1000),
            post_error_retry_delay_ms=_parse_int_env("POST_ERROR_RETRY_DELAY_MS", default=2000),
            sampling_rate_hz=_parse_int_env("VAD_SAMPLING_RATE_HZ", default=60),
            audio_sample_rate=_parse_int_env("AUDIO_SAMPLE_RATE", default=16000),
            fft_size=_parse_int_env("ANALYSER_FFT_SIZE", default=512),
            persona=os.environ.get("AGENT_PERSONA", "assistant"),
        )


def get_config() -> VoiceConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        load_local_env()
        _config = VoiceConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[VoiceConfig] = None
