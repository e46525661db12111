"""
Tests for voice agent configuration.

Verifies:
- Configuration loading from environment
- Default values
- Comment and garbage tolerance in numeric variables
"""
import pytest

import voice_agent.config as config_module
from voice_agent.config import VoiceConfig, get_config

ENV_KEYS = [
    "PIPELINE_BASE_URL", "PIPELINE_API_KEY", "TRANSCRIBE_MODEL", "MAX_OUTPUT_TOKENS",
    "TTS_VOICE", "TTS_STABILITY", "TTS_SIMILARITY", "VAD_SILENCE_THRESHOLD_DB",
    "VAD_SILENCE_DURATION_MS", "VAD_MIN_SPEECH_DURATION_MS", "VAD_MAX_RECORDING_DURATION_MS",
    "MIN_CAPTURE_BYTES", "POST_ERROR_RETRY_DELAY_MS", "VAD_SAMPLING_RATE_HZ",
    "AUDIO_SAMPLE_RATE", "ANALYSER_FFT_SIZE", "AGENT_PERSONA",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_config_from_env_defaults(clean_env):
    config = VoiceConfig.from_env()

    assert config.pipeline_base_url == "http://127.0.0.1:8080"
    assert config.pipeline_api_key is None
    assert config.max_output_tokens == 150
    assert config.thresholds.silence_threshold_db == -35
    assert config.thresholds.silence_duration_ms == 800
    assert config.thresholds.min_speech_duration_ms == 300
    assert config.thresholds.max_recording_duration_ms == 10000
    assert config.min_capture_bytes == 1000
    assert config.post_error_retry_delay_s == 2.0
    assert config.sampling_interval_s == pytest.approx(1 / 60)
    assert config.persona == "assistant"


def test_config_from_env_all_fields(clean_env):
    clean_env.setenv("PIPELINE_BASE_URL", "https://pipeline.example.com/api/")
    clean_env.setenv("PIPELINE_API_KEY", "k")
    clean_env.setenv("TRANSCRIBE_MODEL", "whisper-large")
    clean_env.setenv("MAX_OUTPUT_TOKENS", "300")
    clean_env.setenv("TTS_VOICE", "voice-2")
    clean_env.setenv("TTS_STABILITY", "0.7")
    clean_env.setenv("VAD_SILENCE_THRESHOLD_DB", "-40")
    clean_env.setenv("VAD_SILENCE_DURATION_MS", "600")
    clean_env.setenv("MIN_CAPTURE_BYTES", "2048")
    clean_env.setenv("POST_ERROR_RETRY_DELAY_MS", "500")
    clean_env.setenv("AGENT_PERSONA", "desktop")

    config = VoiceConfig.from_env()

    assert config.pipeline_base_url == "https://pipeline.example.com/api"
    assert config.pipeline_api_key == "k"
    assert config.transcribe_model == "whisper-large"
    assert config.max_output_tokens == 300
    assert config.tts_voice == "voice-2"
    assert config.tts_stability == 0.7
    assert config.thresholds.silence_threshold_db == -40.0
    assert config.thresholds.silence_duration_ms == 600
    assert config.min_capture_bytes == 2048
    assert config.post_error_retry_delay_s == 0.5
    assert config.persona == "desktop"


def test_numeric_env_strips_comments(clean_env):
    clean_env.setenv("VAD_SILENCE_DURATION_MS", "1200  # longer pauses")
    assert VoiceConfig.from_env().thresholds.silence_duration_ms == 1200


def test_unparseable_numbers_fall_back_to_defaults(clean_env):
    clean_env.setenv("MIN_CAPTURE_BYTES", "lots")
    clean_env.setenv("TTS_SIMILARITY", "high")

    config = VoiceConfig.from_env()
    assert config.min_capture_bytes == 1000
    assert config.tts_similarity == 0.5


@pytest.mark.parametrize("field, value", [
    ("sampling_rate_hz", 0),
    ("min_capture_bytes", -1),
    ("post_error_retry_delay_ms", -5),
])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValueError):
        VoiceConfig(**{field: value})


def test_get_config_is_cached(clean_env, monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(config_module, "load_local_env", lambda: None)

    assert get_config() is get_config()
