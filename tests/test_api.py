"""Tests for the HTTP surface over the turn orchestrator."""

from __future__ import annotations

import base64
import dataclasses

import pytest
from fastapi.testclient import TestClient

import voiceshop.main as app_main
from voiceshop.conversation.cache import ResponseCache
from voiceshop.conversation.contracts import Interpretation, Transcription
from voiceshop.conversation.orchestrator import TurnOrchestrator
from voiceshop.conversation.store import SessionStore
from voiceshop.conversation.utils import GOODBYE_MESSAGE
from voiceshop.errors import SynthesisFailed
from voiceshop.main import app


WAV = b"RIFF\x00\x00\x00\x00WAVEfmt "


class _Transcriber:
    def __init__(self) -> None:
        self.text = "show me laptops"

    async def transcribe(self, audio: bytes) -> Transcription:
        return Transcription(text=self.text, confidence=0.95)


class _Agent:
    async def interpret(self, utterance, history, current_product):
        return Interpretation(reply_text="Which processor would you like?")

    async def extract_product_info(self, text):  # pragma: no cover - not used here
        raise AssertionError("Extraction should not run in API tests.")

    async def validate_specifications(self, query):  # pragma: no cover - not used here
        raise AssertionError("Validation should not run in API tests.")

    async def summarize(self, query, results):  # pragma: no cover - not used here
        return ""


class _Search:
    async def search(self, query):  # pragma: no cover - not used here
        return []


class _Synthesizer:
    def __init__(self) -> None:
        self.broken = False

    async def synthesize(self, text, voice=None, audio_format=None) -> bytes:
        if self.broken:
            raise SynthesisFailed("tts down")
        return f"audio:{text}".encode()


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def orchestrator(monkeypatch: pytest.MonkeyPatch) -> TurnOrchestrator:
    instance = TurnOrchestrator(
        transcriber=_Transcriber(),
        agent=_Agent(),
        search=_Search(),
        synthesizer=_Synthesizer(),
        store=SessionStore(),
        cache=ResponseCache(phrases=()),
        audio_format="mp3",
        sleep=_no_sleep,
    )
    monkeypatch.setattr(app_main, "get_orchestrator", lambda: instance)
    return instance


@pytest.fixture
def client(orchestrator: TurnOrchestrator):
    with TestClient(app) as test_client:
        yield test_client


def _encoded(audio: bytes = WAV) -> str:
    return base64.b64encode(audio).decode("ascii")


def _start(client: TestClient) -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def test_health_reports_session_count(client: TestClient) -> None:
    _start(client)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 1}


def test_turn_returns_audio_and_conversation_headers(client: TestClient) -> None:
    session_id = _start(client)

    response = client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})

    assert response.status_code == 200
    assert response.content == b"audio:Which processor would you like?"
    assert response.headers["content-type"].startswith("audio/mpeg")
    assert response.headers["x-conversation-state"] == "initial"
    assert response.headers["x-session-ended"] == "false"
    assert response.headers["x-requires-input"] == "true"

    state = client.get(f"/sessions/{session_id}")
    assert state.status_code == 200
    body = state.json()
    assert body["message_count"] == 2
    assert body["status"] == "waiting"


def test_turn_accepts_data_urls(client: TestClient) -> None:
    session_id = _start(client)
    payload = f"data:audio/wav;base64,{_encoded()}"

    response = client.post(f"/sessions/{session_id}/turns", json={"audio": payload})

    assert response.status_code == 200


def test_exit_phrase_ends_session(client: TestClient, orchestrator: TurnOrchestrator) -> None:
    orchestrator._transcriber.text = "okay goodbye"
    session_id = _start(client)

    response = client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})

    assert response.status_code == 200
    assert response.content == f"audio:{GOODBYE_MESSAGE}".encode()
    assert response.headers["x-session-ended"] == "true"
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_invalid_payloads_are_rejected(client: TestClient) -> None:
    session_id = _start(client)

    bad_base64 = client.post(f"/sessions/{session_id}/turns", json={"audio": "not base64!!"})
    unsupported = client.post(
        f"/sessions/{session_id}/turns", json={"audio": _encoded(b"plain text, not audio")}
    )

    assert bad_base64.status_code == 400
    assert unsupported.status_code == 415


def test_oversized_audio_is_rejected(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        app_main, "settings", dataclasses.replace(app_main.settings, max_audio_bytes=8)
    )
    session_id = _start(client)

    response = client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})

    assert response.status_code == 413


def test_unknown_sessions_return_404(client: TestClient) -> None:
    assert client.get("/sessions/missing").status_code == 404
    assert client.delete("/sessions/missing").status_code == 404
    assert client.post("/sessions/missing/idle").status_code == 404
    assert (
        client.post("/sessions/missing/turns", json={"audio": _encoded()}).status_code == 404
    )


def test_delete_ends_session(client: TestClient) -> None:
    session_id = _start(client)

    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_idle_check_without_timeout_is_empty(client: TestClient) -> None:
    session_id = _start(client)

    response = client.post(f"/sessions/{session_id}/idle")

    assert response.status_code == 204


def test_synthesis_failure_maps_to_503(
    client: TestClient, orchestrator: TurnOrchestrator
) -> None:
    orchestrator._synthesizer.broken = True
    session_id = _start(client)

    response = client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})

    assert response.status_code == 503
    assert "spoken reply" in response.json()["detail"]


def test_cache_stats(client: TestClient) -> None:
    session_id = _start(client)
    client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})
    client.post(f"/sessions/{session_id}/turns", json={"audio": _encoded()})

    response = client.get("/cache/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["hits"] == 1
    assert body["misses"] == 1
    assert body["size"] == 1
    assert body["hit_rate"] == 50.0
    assert body["memory_bytes"] == len(b"audio:Which processor would you like?")
