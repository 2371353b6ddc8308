"""Error taxonomy shared by the conversation core and its collaborators."""

from __future__ import annotations


class VoiceShopError(Exception):
    """Base class for every error raised by the assistant."""


class SessionNotFound(VoiceShopError, LookupError):
    """The session is absent, expired, or already ended."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionAlreadyExists(VoiceShopError, ValueError):
    """A session with the requested identifier is already stored."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class TranscriptionFailed(VoiceShopError):
    """Speech could not be converted into text."""


class SynthesisFailed(VoiceShopError):
    """Text could not be converted into audio."""


class ApologyUndeliverable(SynthesisFailed):
    """The apology for a failed transcription could not be synthesized either."""

    def __init__(
        self, transcription_error: BaseException, synthesis_error: BaseException
    ) -> None:
        super().__init__(
            "Transcription failed and the apology could not be synthesized: "
            f"{transcription_error}; {synthesis_error}"
        )
        self.transcription_error = transcription_error
        self.synthesis_error = synthesis_error


class SearchFailed(VoiceShopError):
    """No search provider could answer the product query."""


class InputValidationError(VoiceShopError, ValueError):
    """Structurally invalid input that must not be retried."""


class UnsupportedAudioFormat(InputValidationError):
    """The audio payload is empty or its container format is not recognised."""


class InvalidTransition(VoiceShopError):
    """A conversation state change not permitted by the state machine."""


__all__ = [
    "ApologyUndeliverable",
    "InputValidationError",
    "InvalidTransition",
    "SearchFailed",
    "SessionAlreadyExists",
    "SessionNotFound",
    "SynthesisFailed",
    "TranscriptionFailed",
    "UnsupportedAudioFormat",
    "VoiceShopError",
]
