"""Container sniffing for uploaded audio."""

from __future__ import annotations

from typing import Literal

from ..errors import UnsupportedAudioFormat


AudioFormat = Literal["wav", "mp3", "webm", "ogg", "flac", "m4a", "mp4", "mpeg", "unknown"]

SUPPORTED_FORMATS: tuple[str, ...] = ("wav", "mp3", "webm", "ogg", "flac", "m4a", "mp4", "mpeg")

MIME_TYPES: dict[str, str] = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
    "mpeg": "audio/mpeg",
    "opus": "audio/opus",
    "aac": "audio/aac",
}


def detect_audio_format(audio: bytes) -> AudioFormat:
    """Identify the container from its leading magic bytes."""

    header = audio[:12]
    if len(header) < 4:
        return "unknown"

    if header[:4] == b"RIFF" and header[8:12] == b"WAVE":
        return "wav"
    if header[:3] == b"ID3":
        return "mp3"
    if header[0] == 0xFF and header[1] & 0xE0 == 0xE0:
        # MPEG audio frame sync; layer III dominates uploads.
        return "mp3" if header[1] & 0x06 == 0x02 else "mpeg"
    if header[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if header[:4] == b"OggS":
        return "ogg"
    if header[:4] == b"fLaC":
        return "flac"
    if header[4:8] == b"ftyp":
        return "m4a" if header[8:11] == b"M4A" else "mp4"
    return "unknown"


def ensure_supported_audio(audio: bytes) -> AudioFormat:
    """Return the detected format or raise :class:`UnsupportedAudioFormat`."""

    if not audio:
        raise UnsupportedAudioFormat("Audio payload is empty.")
    detected = detect_audio_format(audio)
    if detected == "unknown":
        raise UnsupportedAudioFormat(
            "Unsupported audio format. Please use "
            + ", ".join(fmt.upper() for fmt in SUPPORTED_FORMATS)
            + "."
        )
    return detected


__all__ = [
    "AudioFormat",
    "MIME_TYPES",
    "SUPPORTED_FORMATS",
    "detect_audio_format",
    "ensure_supported_audio",
]
