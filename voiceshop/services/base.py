"""Collaborator protocols consumed by the turn orchestrator."""

from __future__ import annotations

from typing import Protocol, Sequence

from ..conversation.contracts import (
    Interpretation,
    Message,
    ProductInfo,
    ProductQuery,
    SearchResult,
    SpecValidation,
    Transcription,
)


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes) -> Transcription:
        """Convert an audio payload into text."""


class LanguageAgent(Protocol):
    async def interpret(
        self,
        utterance: str,
        history: Sequence[Message],
        current_product: ProductQuery | None = None,
    ) -> Interpretation:
        """Decide the reply and next action for one user utterance."""

    async def extract_product_info(self, text: str) -> ProductInfo:
        ...

    async def validate_specifications(self, query: ProductQuery) -> SpecValidation:
        ...

    async def summarize(self, query: ProductQuery, results: Sequence[SearchResult]) -> str:
        ...


class SearchProvider(Protocol):
    async def search(self, query: ProductQuery) -> list[SearchResult]:
        """Return raw, unranked listings; an empty list is a valid answer."""


class Synthesizer(Protocol):
    async def synthesize(
        self, text: str, voice: str | None = None, audio_format: str | None = None
    ) -> bytes:
        """Convert text into audio bytes."""


__all__ = ["LanguageAgent", "SearchProvider", "Synthesizer", "Transcriber"]
