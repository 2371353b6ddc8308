"""Tests for audio sniffing and the OpenAI speech collaborators."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from voiceshop.errors import (
    InputValidationError,
    SynthesisFailed,
    TranscriptionFailed,
    UnsupportedAudioFormat,
)
from voiceshop.services.audio import detect_audio_format, ensure_supported_audio
from voiceshop.services.synthesizer import MAX_INPUT_CHARACTERS, OpenAISynthesizer
from voiceshop.services.transcriber import (
    DEFAULT_CONFIDENCE,
    OpenAITranscriber,
    adjust_confidence,
)


WAV = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 64


@pytest.fixture
def anyio_backend() -> str:
    """Limit AnyIO tests to the asyncio backend."""

    return "asyncio"


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (b"RIFF\x00\x00\x00\x00WAVE", "wav"),
        (b"ID3\x04\x00\x00\x00\x00", "mp3"),
        (b"\xff\xfb\x90\x00", "mp3"),
        (b"\xff\xf1\x50\x80", "mpeg"),
        (b"\x1a\x45\xdf\xa3\x01\x00", "webm"),
        (b"OggS\x00\x02", "ogg"),
        (b"fLaC\x00\x00", "flac"),
        (b"\x00\x00\x00\x20ftypM4A ", "m4a"),
        (b"\x00\x00\x00\x20ftypisom", "mp4"),
        (b"hello world!", "unknown"),
        (b"RI", "unknown"),
    ],
)
def test_detect_audio_format(header: bytes, expected: str) -> None:
    assert detect_audio_format(header) == expected


def test_ensure_supported_audio_rejects_empty_and_unknown() -> None:
    assert ensure_supported_audio(WAV) == "wav"
    with pytest.raises(UnsupportedAudioFormat):
        ensure_supported_audio(b"")
    with pytest.raises(UnsupportedAudioFormat, match="WAV"):
        ensure_supported_audio(b"plain text payload")


def test_adjust_confidence_penalises_suspicious_text() -> None:
    clean = "Show me the MacBook Pro prices please"

    assert adjust_confidence(0.9, clean, 100_000) == pytest.approx(0.9)
    assert adjust_confidence(0.9, "hi", 100_000) == pytest.approx(0.9 * 0.85)
    assert adjust_confidence(0.9, clean.lower(), 100_000) == pytest.approx(0.9 * 0.95)
    assert adjust_confidence(0.9, clean, 10) == pytest.approx(0.9 * 0.9)


class _FakeTranscriptions:
    def __init__(self, response: object | Exception) -> None:
        self.response = response
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class _FakeSpeech:
    def __init__(self, content: bytes | Exception) -> None:
        self.content = content
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.content, Exception):
            raise self.content
        return SimpleNamespace(content=self.content)


def _client(transcriptions=None, speech=None) -> SimpleNamespace:
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions, speech=speech))


@pytest.mark.anyio("asyncio")
async def test_transcriber_uses_segment_logprobs() -> None:
    response = SimpleNamespace(
        text=" Show me the MacBook Pro prices please ",
        language="english",
        segments=[SimpleNamespace(avg_logprob=-0.1), {"avg_logprob": -0.1}],
    )
    transcriptions = _FakeTranscriptions(response)
    transcriber = OpenAITranscriber(_client(transcriptions=transcriptions))

    result = await transcriber.transcribe(WAV)

    assert result.text == "Show me the MacBook Pro prices please"
    assert result.language == "english"
    assert 0.0 < result.confidence < 1.0
    request = transcriptions.requests[0]
    assert request["model"] == "whisper-1"
    assert request["response_format"] == "verbose_json"
    assert request["file"].name == "audio.wav"


@pytest.mark.anyio("asyncio")
async def test_transcriber_defaults_confidence_without_segments() -> None:
    response = SimpleNamespace(text="Show me the MacBook Pro prices please", segments=None)
    transcriber = OpenAITranscriber(_client(transcriptions=_FakeTranscriptions(response)))

    result = await transcriber.transcribe(b"ID3" + b"\x00" * 500)

    assert result.confidence == pytest.approx(DEFAULT_CONFIDENCE)
    assert result.language == "en"


@pytest.mark.anyio("asyncio")
async def test_transcriber_wraps_backend_errors() -> None:
    transcriber = OpenAITranscriber(
        _client(transcriptions=_FakeTranscriptions(RuntimeError("rate limited")))
    )

    with pytest.raises(TranscriptionFailed):
        await transcriber.transcribe(WAV)
    with pytest.raises(UnsupportedAudioFormat):
        await transcriber.transcribe(b"not audio")


@pytest.mark.anyio("asyncio")
async def test_synthesizer_requests_voice_and_format() -> None:
    speech = _FakeSpeech(b"mp3-bytes")
    synthesizer = OpenAISynthesizer(_client(speech=speech), voice="nova")

    audio = await synthesizer.synthesize("  Hello there  ", audio_format="wav")

    assert audio == b"mp3-bytes"
    assert speech.requests[0] == {
        "model": "tts-1",
        "voice": "nova",
        "input": "Hello there",
        "response_format": "wav",
    }


@pytest.mark.anyio("asyncio")
async def test_synthesizer_truncates_long_input() -> None:
    speech = _FakeSpeech(b"audio")
    synthesizer = OpenAISynthesizer(_client(speech=speech))

    await synthesizer.synthesize("a" * (MAX_INPUT_CHARACTERS + 100))

    assert len(speech.requests[0]["input"]) == MAX_INPUT_CHARACTERS


@pytest.mark.anyio("asyncio")
async def test_synthesizer_validation_and_failures() -> None:
    synthesizer = OpenAISynthesizer(_client(speech=_FakeSpeech(RuntimeError("down"))))

    with pytest.raises(InputValidationError):
        await synthesizer.synthesize("   ")
    with pytest.raises(InputValidationError):
        await synthesizer.synthesize("hello", audio_format="ogg")
    with pytest.raises(SynthesisFailed):
        await synthesizer.synthesize("hello")

    empty = OpenAISynthesizer(_client(speech=_FakeSpeech(b"")))
    with pytest.raises(SynthesisFailed):
        await empty.synthesize("hello")


def test_synthesizer_rejects_unknown_default_format() -> None:
    with pytest.raises(ValueError):
        OpenAISynthesizer(_client(speech=_FakeSpeech(b"")), audio_format="ogg")
