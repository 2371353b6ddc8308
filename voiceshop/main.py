"""FastAPI surface over the turn orchestrator."""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .config import settings
from .conversation.contracts import SessionSnapshot
from .conversation.orchestrator import TurnOrchestrator
from .errors import (
    InputValidationError,
    SessionNotFound,
    SynthesisFailed,
    UnsupportedAudioFormat,
)
from .factory import get_orchestrator
from .services.audio import MIME_TYPES


logger = logging.getLogger(__name__)


class SessionCreated(BaseModel):
    session_id: str


class TurnRequest(BaseModel):
    """Payload sent to the turn endpoint; audio is base64 or a data URL."""

    audio: str


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    size: int
    hit_rate: float
    memory_bytes: int


def orchestrator_dependency() -> TurnOrchestrator:
    return get_orchestrator()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    orchestrator = get_orchestrator()
    orchestrator.store.start()

    async def _prewarm() -> None:
        try:
            await orchestrator.prewarm_cache()
        except Exception:  # pragma: no cover - best effort warm-up
            logger.exception("Failed to prewarm the response cache")

    prewarm_task = asyncio.create_task(_prewarm(), name="cache-prewarm")
    try:
        yield
    finally:
        prewarm_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await prewarm_task
        await orchestrator.store.stop()


app = FastAPI(title="Voice Shopping Assistant API", version="0.1.0", lifespan=lifespan)


@app.exception_handler(SessionNotFound)
async def _session_not_found(_: Request, exc: SessionNotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InputValidationError)
async def _invalid_input(_: Request, exc: InputValidationError) -> JSONResponse:
    code = (
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        if isinstance(exc, UnsupportedAudioFormat)
        else status.HTTP_400_BAD_REQUEST
    )
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(SynthesisFailed)
async def _synthesis_failed(_: Request, exc: SynthesisFailed) -> JSONResponse:
    logger.error("Speech synthesis failed: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "The assistant could not produce a spoken reply. Please try again."},
    )


def _decode_audio_payload(data: str) -> Tuple[bytes, Optional[str]]:
    """Return raw audio bytes and mime type from a base64 payload."""

    payload = data.strip()
    if not payload:
        raise ValueError("Empty audio payload.")

    mime_type: Optional[str] = None
    if payload.startswith("data:"):
        header, _, encoded = payload.partition(",")
        if not encoded:
            raise ValueError("Malformed data URL.")
        mime_section = header.split(";", maxsplit=1)[0]
        mime_type = mime_section[5:] or None
        payload = encoded

    try:
        audio_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 audio data.") from exc

    if not audio_bytes:
        raise ValueError("Decoded audio payload is empty.")

    return audio_bytes, mime_type


def _audio_response(
    audio: bytes, audio_format: str | None, headers: dict[str, str] | None = None
) -> Response:
    media_type = MIME_TYPES.get(audio_format or "mp3", "application/octet-stream")
    return Response(content=audio, media_type=media_type, headers=headers)


@app.get("/health")
async def health(
    orchestrator: TurnOrchestrator = Depends(orchestrator_dependency),
) -> dict[str, Any]:
    return {"status": "ok", "sessions": await orchestrator.store.session_count()}


@app.post("/sessions", response_model=SessionCreated, status_code=status.HTTP_201_CREATED)
async def start_session(
    orchestrator: TurnOrchestrator = Depends(orchestrator_dependency),
) -> SessionCreated:
    return SessionCreated(session_id=await orchestrator.start_session())


@app.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session_state(
    session_id: str, orchestrator: TurnOrchestrator = Depends(orchestrator_dependency)
) -> SessionSnapshot:
    return await orchestrator.get_state(session_id)


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(
    session_id: str, orchestrator: TurnOrchestrator = Depends(orchestrator_dependency)
) -> Response:
    await orchestrator.end_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/sessions/{session_id}/turns")
async def handle_turn(
    session_id: str,
    request: TurnRequest,
    orchestrator: TurnOrchestrator = Depends(orchestrator_dependency),
) -> Response:
    """Accept one spoken utterance and answer with synthesized audio."""

    try:
        audio, _ = _decode_audio_payload(request.audio)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if len(audio) > settings.max_audio_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Maximum audio size is {settings.max_audio_bytes // (1024 * 1024)}MB",
        )

    result = await orchestrator.process_turn(session_id, audio)
    return _audio_response(
        result.audio,
        orchestrator.audio_format,
        {
            "X-Conversation-State": result.conversation_state.value,
            "X-Session-Ended": str(result.ended).lower(),
            "X-Requires-Input": str(result.requires_user_input).lower(),
        },
    )


@app.post("/sessions/{session_id}/idle")
async def idle_check(
    session_id: str, orchestrator: TurnOrchestrator = Depends(orchestrator_dependency)
) -> Response:
    audio = await orchestrator.handle_idle(session_id)
    if audio is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return _audio_response(audio, orchestrator.audio_format)


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    orchestrator: TurnOrchestrator = Depends(orchestrator_dependency),
) -> CacheStatsResponse:
    stats = orchestrator.cache.stats()
    return CacheStatsResponse(
        hits=stats.hits,
        misses=stats.misses,
        size=stats.size,
        hit_rate=stats.hit_rate,
        memory_bytes=orchestrator.cache.memory_usage(),
    )


__all__ = ["app"]
