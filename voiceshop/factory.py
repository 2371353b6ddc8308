"""Factory helpers that wire a production orchestrator from settings."""

from __future__ import annotations

from functools import lru_cache

from openai import AsyncOpenAI

from .config import Settings, get_settings
from .conversation.cache import COMMON_PHRASES, ResponseCache
from .conversation.orchestrator import TurnOrchestrator
from .conversation.ranking import ResultRanker
from .conversation.store import SessionStore
from .conversation.utils import FIXED_REPLIES
from .logging import _ensure_logfire
from .services.agent import PydanticAILanguageAgent
from .services.base import SearchProvider
from .services.search import (
    FallbackSearchProvider,
    SerpAPISearchProvider,
    TavilySearchProvider,
)
from .services.synthesizer import OpenAISynthesizer
from .services.transcriber import OpenAITranscriber


def build_search_provider(settings: Settings) -> FallbackSearchProvider:
    """Tavily first, SerpAPI when Tavily fails or finds nothing."""

    providers: list[SearchProvider] = []
    if settings.tavily_api_key:
        providers.append(
            TavilySearchProvider(settings.tavily_api_key, timeout=settings.search_timeout_seconds)
        )
    if settings.serpapi_api_key:
        providers.append(
            SerpAPISearchProvider(
                settings.serpapi_api_key, timeout=settings.search_timeout_seconds
            )
        )
    return FallbackSearchProvider(providers)


def build_response_cache(settings: Settings) -> ResponseCache:
    phrases = tuple(dict.fromkeys(COMMON_PHRASES + FIXED_REPLIES))
    return ResponseCache(
        max_entries=settings.cache_max_entries,
        ttl_seconds=settings.cache_ttl_seconds,
        phrases=phrases,
    )


def build_orchestrator(settings: Settings) -> TurnOrchestrator:
    """Assemble the turn orchestrator and its OpenAI-backed collaborators."""

    _ensure_logfire()
    client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    return TurnOrchestrator(
        transcriber=OpenAITranscriber(client, model=settings.stt_model),
        agent=PydanticAILanguageAgent.from_settings(settings),
        search=build_search_provider(settings),
        synthesizer=OpenAISynthesizer(
            client,
            model=settings.tts_model,
            voice=settings.default_voice,
            audio_format=settings.audio_format,
        ),
        store=SessionStore(
            timeout_seconds=settings.session_timeout_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        ),
        ranker=ResultRanker(min_confidence=settings.min_match_confidence),
        cache=build_response_cache(settings),
        voice=settings.default_voice,
        audio_format=settings.audio_format,
        min_transcription_confidence=settings.min_transcription_confidence,
        idle_timeout_seconds=settings.idle_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> TurnOrchestrator:
    """Return the process-wide orchestrator."""

    return build_orchestrator(get_settings())


__all__ = [
    "build_orchestrator",
    "build_response_cache",
    "build_search_provider",
    "get_orchestrator",
]
