"""Text-to-speech collaborator built on OpenAI's speech endpoint."""

from __future__ import annotations

import logfire
from openai import AsyncOpenAI

from ..errors import InputValidationError, SynthesisFailed


SUPPORTED_OUTPUT_FORMATS: tuple[str, ...] = ("mp3", "wav", "opus", "aac", "flac")
MAX_INPUT_CHARACTERS = 4096


class OpenAISynthesizer:
    """Render assistant replies as audio."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str = "tts-1",
        voice: str = "alloy",
        audio_format: str = "mp3",
    ) -> None:
        if client is None:
            raise ValueError("OpenAI client is required for speech synthesis.")
        if audio_format not in SUPPORTED_OUTPUT_FORMATS:
            raise ValueError(f"Unsupported output format: {audio_format}")
        self.client = client
        self.model = model
        self.voice = voice
        self.audio_format = audio_format

    async def synthesize(
        self, text: str, voice: str | None = None, audio_format: str | None = None
    ) -> bytes:
        text = text.strip()
        if not text:
            raise InputValidationError("Cannot synthesize empty text.")
        if len(text) > MAX_INPUT_CHARACTERS:
            text = text[:MAX_INPUT_CHARACTERS]

        fmt = audio_format or self.audio_format
        if fmt not in SUPPORTED_OUTPUT_FORMATS:
            raise InputValidationError(f"Unsupported output format: {fmt}")

        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice or self.voice,
                input=text,
                response_format=fmt,
            )
        except Exception as exc:
            logfire.warning("tts.request_failed", model=self.model, error=str(exc))
            raise SynthesisFailed(f"Speech synthesis request failed: {exc}") from exc

        audio = response.content
        if not audio:
            raise SynthesisFailed("Speech synthesis returned no audio.")
        logfire.info("tts.synthesized", model=self.model, audio_format=fmt, audio_bytes=len(audio))
        return audio


__all__ = ["OpenAISynthesizer", "SUPPORTED_OUTPUT_FORMATS"]
