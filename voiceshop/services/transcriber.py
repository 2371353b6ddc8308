"""Speech-to-text collaborator built on OpenAI's transcription endpoint."""

from __future__ import annotations

import io
import math
import re
from time import monotonic
from typing import Any

import logfire
from openai import AsyncOpenAI

from ..conversation.contracts import Transcription
from ..errors import TranscriptionFailed
from .audio import ensure_supported_audio


DEFAULT_CONFIDENCE = 0.85
_SPECIAL_CHARS = re.compile(r"[^a-zA-Z0-9\s.,!?'-]")


def _segment_confidence(segments: Any) -> float | None:
    """Return ``exp(mean avg_logprob)`` over the segments, if present."""

    logprobs = []
    for segment in segments or ():
        value = getattr(segment, "avg_logprob", None)
        if value is None and isinstance(segment, dict):
            value = segment.get("avg_logprob")
        if isinstance(value, (int, float)):
            logprobs.append(float(value))
    if not logprobs:
        return None
    return math.exp(sum(logprobs) / len(logprobs))


def adjust_confidence(base: float, text: str, audio_length: int) -> float:
    """Lower the backend confidence for transcripts that look suspicious."""

    confidence = base
    if len(text) < 10:
        confidence *= 0.85
    if audio_length and len(text) / audio_length > 0.1:
        confidence *= 0.9
    if len(text) > 20 and not any(char.isupper() for char in text):
        confidence *= 0.95
    if len(_SPECIAL_CHARS.findall(text)) > len(text) * 0.1:
        confidence *= 0.9
    return max(0.0, min(1.0, confidence))


class OpenAITranscriber:
    """Create text transcriptions from uploaded recordings."""

    def __init__(self, client: AsyncOpenAI, *, model: str = "whisper-1") -> None:
        if client is None:
            raise ValueError("OpenAI client is required for transcription.")
        self.client = client
        self.model = model

    async def transcribe(self, audio: bytes) -> Transcription:
        audio_format = ensure_supported_audio(audio)
        audio_file = io.BytesIO(audio)
        audio_file.name = f"audio.{audio_format}"

        started = monotonic()
        try:
            response = await self.client.audio.transcriptions.create(
                model=self.model,
                file=audio_file,
                response_format="verbose_json",
            )
        except Exception as exc:
            logfire.warning("stt.request_failed", model=self.model, error=str(exc))
            raise TranscriptionFailed(f"Transcription request failed: {exc}") from exc

        text = (getattr(response, "text", None) or "").strip()
        base = _segment_confidence(getattr(response, "segments", None))
        confidence = adjust_confidence(
            DEFAULT_CONFIDENCE if base is None else base, text, len(audio)
        )
        duration_ms = (monotonic() - started) * 1000
        logfire.info(
            "stt.transcribed",
            model=self.model,
            audio_format=audio_format,
            confidence=round(confidence, 3),
            characters=len(text),
        )
        return Transcription(
            text=text,
            confidence=confidence,
            language=getattr(response, "language", None) or "en",
            duration_ms=duration_ms,
        )


__all__ = ["DEFAULT_CONFIDENCE", "OpenAITranscriber", "adjust_confidence"]
