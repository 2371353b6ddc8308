"""Configuration helpers for the voice shopping assistant."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env if present to simplify local development.
load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Holds configuration derived from environment variables."""

    openai_api_key: str | None
    openai_base_url: str | None
    llm_model: str
    llm_temperature: float
    stt_model: str
    tts_model: str
    default_voice: str
    audio_format: str
    tavily_api_key: str | None
    serpapi_api_key: str | None
    search_timeout_seconds: float
    session_timeout_seconds: int
    sweep_interval_seconds: int
    idle_timeout_seconds: int
    cache_max_entries: int
    cache_ttl_seconds: float
    min_match_confidence: float
    min_transcription_confidence: float
    max_audio_bytes: int
    app_host: str
    app_port: int
    log_level: str

    @property
    def has_search_credentials(self) -> bool:
        """Return ``True`` when at least one search provider can be built."""

        return bool(self.tavily_api_key or self.serpapi_api_key)


def _int_from_env(key: str, default: int) -> int:
    """Parse a positive integer from the environment."""

    raw_value = os.getenv(key)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError as exc:  # pragma: no cover
        raise RuntimeError(f"Environment variable '{key}' must be an integer") from exc

    if value <= 0:
        raise RuntimeError(f"Environment variable '{key}' must be greater than zero")

    return value


def _float_from_env(key: str, default: float) -> float:
    """Parse a floating-point value in the inclusive range ``[0.0, 1.0]``."""

    raw_value = os.getenv(key)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:  # pragma: no cover
        raise RuntimeError(
            f"Environment variable '{key}' must be a floating-point number"
        ) from exc

    if not 0.0 <= value <= 1.0:
        raise RuntimeError(f"Environment variable '{key}' must be between 0.0 and 1.0")

    return value


def _positive_float_from_env(key: str, default: float) -> float:
    """Parse a strictly positive floating-point value from the environment."""

    raw_value = os.getenv(key)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:  # pragma: no cover
        raise RuntimeError(
            f"Environment variable '{key}' must be a floating-point number"
        ) from exc

    if value <= 0:
        raise RuntimeError(f"Environment variable '{key}' must be greater than zero")

    return value


def get_settings() -> Settings:
    """Create settings populated from the environment."""

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL"),
        llm_model=os.getenv("VOICESHOP_LLM_MODEL", "gpt-4o"),
        llm_temperature=_float_from_env("VOICESHOP_LLM_TEMPERATURE", 0.3),
        stt_model=os.getenv("VOICESHOP_STT_MODEL", "whisper-1"),
        tts_model=os.getenv("VOICESHOP_TTS_MODEL", "tts-1"),
        default_voice=os.getenv("VOICESHOP_DEFAULT_VOICE", "alloy"),
        audio_format=os.getenv("VOICESHOP_AUDIO_FORMAT", "mp3"),
        tavily_api_key=os.getenv("TAVILY_API_KEY"),
        serpapi_api_key=os.getenv("SERPAPI_API_KEY"),
        search_timeout_seconds=_positive_float_from_env(
            "VOICESHOP_SEARCH_TIMEOUT_SECONDS", 20.0
        ),
        session_timeout_seconds=_int_from_env("VOICESHOP_SESSION_TIMEOUT_SECONDS", 30 * 60),
        sweep_interval_seconds=_int_from_env("VOICESHOP_SWEEP_INTERVAL_SECONDS", 5 * 60),
        idle_timeout_seconds=_int_from_env("VOICESHOP_IDLE_TIMEOUT_SECONDS", 30),
        cache_max_entries=_int_from_env("VOICESHOP_CACHE_MAX_ENTRIES", 100),
        cache_ttl_seconds=_positive_float_from_env(
            "VOICESHOP_CACHE_TTL_SECONDS", 24 * 60 * 60.0
        ),
        min_match_confidence=_float_from_env("VOICESHOP_MIN_MATCH_CONFIDENCE", 0.6),
        min_transcription_confidence=_float_from_env(
            "VOICESHOP_MIN_TRANSCRIPTION_CONFIDENCE", 0.7
        ),
        max_audio_bytes=_int_from_env("VOICESHOP_MAX_AUDIO_BYTES", 10 * 1024 * 1024),
        app_host=os.getenv("APP_HOST", "0.0.0.0"),
        app_port=_int_from_env("APP_PORT", 8000),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


settings = get_settings()


__all__ = ["Settings", "get_settings", "settings"]
