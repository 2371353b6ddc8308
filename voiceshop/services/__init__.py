"""Concrete collaborators for transcription, language, search and speech."""

from .agent import PydanticAILanguageAgent
from .audio import detect_audio_format, ensure_supported_audio
from .base import LanguageAgent, SearchProvider, Synthesizer, Transcriber
from .search import FallbackSearchProvider, SerpAPISearchProvider, TavilySearchProvider
from .synthesizer import OpenAISynthesizer
from .transcriber import OpenAITranscriber

__all__ = [
    "FallbackSearchProvider",
    "LanguageAgent",
    "OpenAISynthesizer",
    "OpenAITranscriber",
    "PydanticAILanguageAgent",
    "SearchProvider",
    "SerpAPISearchProvider",
    "Synthesizer",
    "TavilySearchProvider",
    "Transcriber",
    "detect_audio_format",
    "ensure_supported_audio",
]
