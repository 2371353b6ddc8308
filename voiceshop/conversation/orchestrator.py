"""Coordinator that turns one unit of user audio into one spoken reply."""

from __future__ import annotations

import asyncio
import uuid
import weakref
from dataclasses import dataclass
from time import monotonic
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, Literal, TypeVar

import logfire
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)

from ..errors import (
    ApologyUndeliverable,
    InputValidationError,
    SearchFailed,
    SessionNotFound,
    SynthesisFailed,
    TranscriptionFailed,
)
from ..logging import _ensure_logfire
from ..services.audio import ensure_supported_audio
from .cache import ResponseCache
from .contracts import (
    ClarifyAction,
    CompareAction,
    ConversationState,
    EndAction,
    GENERIC_CLARIFICATION,
    Interpretation,
    Message,
    ProductQuery,
    SearchAction,
    SearchResult,
    Session,
    SessionSnapshot,
    SessionStatus,
    Transcription,
)
from .ranking import ResultRanker
from .state import ConversationStateMachine, target_state_for
from .store import SessionStore
from .utils import (
    APOLOGY_MESSAGE,
    CLOSING_MESSAGE,
    GOODBYE_MESSAGE,
    IDLE_PROMPT,
    REPEAT_MESSAGE,
    SEARCH_UNAVAILABLE_MESSAGE,
    contains_exit_phrase,
    fallback_summary,
)

if TYPE_CHECKING:
    from ..services.base import LanguageAgent, SearchProvider, Synthesizer, Transcriber


TRANSCRIBE_ATTEMPTS = 3
SYNTHESIZE_ATTEMPTS = 2
DEFAULT_MIN_TRANSCRIPTION_CONFIDENCE = 0.7
DEFAULT_IDLE_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    """Result of one pipeline step: success, degraded success or failure."""

    status: Literal["success", "degraded", "failed"]
    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: T) -> "StepOutcome[T]":
        return cls(status="success", value=value)

    @classmethod
    def degraded(cls, value: T, error: BaseException | None = None) -> "StepOutcome[T]":
        return cls(status="degraded", value=value, error=error)

    @classmethod
    def failed(cls, error: BaseException) -> "StepOutcome[T]":
        return cls(status="failed", error=error)

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass(frozen=True)
class TurnResult:
    """Everything the caller may want to know about a finished turn."""

    session_id: str
    audio: bytes
    reply_text: str
    transcript: str | None
    conversation_state: ConversationState
    requires_user_input: bool
    ended: bool = False


@dataclass
class _Reply:
    text: str
    requires_user_input: bool = True
    ended: bool = False


class TurnOrchestrator:
    """Runs the transcribe, interpret, act and respond pipeline per session."""

    def __init__(
        self,
        *,
        transcriber: "Transcriber",
        agent: "LanguageAgent",
        search: "SearchProvider",
        synthesizer: "Synthesizer",
        store: SessionStore | None = None,
        ranker: ResultRanker | None = None,
        state_machine: ConversationStateMachine | None = None,
        cache: ResponseCache | None = None,
        voice: str | None = None,
        audio_format: str | None = None,
        min_transcription_confidence: float = DEFAULT_MIN_TRANSCRIPTION_CONFIDENCE,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        _ensure_logfire()
        self._transcriber = transcriber
        self._agent = agent
        self._search = search
        self._synthesizer = synthesizer
        self.store = store or SessionStore()
        self.ranker = ranker or ResultRanker()
        self.state_machine = state_machine or ConversationStateMachine()
        self.cache = cache or ResponseCache()
        self.voice = voice
        self.audio_format = audio_format
        self._min_confidence = min_transcription_confidence
        self._idle_timeout = idle_timeout_seconds
        self._sleep = sleep
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # Caller-facing operations

    async def start_session(self, session_id: str | None = None) -> str:
        session_id = session_id or uuid.uuid4().hex
        await self.store.create(session_id)
        logfire.info("turn.session_started", session_id=session_id)
        return session_id

    async def get_state(self, session_id: str) -> SessionSnapshot:
        session = await self.store.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return SessionSnapshot.from_session(session)

    async def end_session(self, session_id: str) -> None:
        """Mark the session ended and delete it."""

        async with self._lock_for(session_id):
            session = await self.store.load(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            await self._close(session)

    async def handle_turn(self, session_id: str, audio: bytes) -> bytes:
        """Process one audio input and return the spoken reply."""

        result = await self.process_turn(session_id, audio)
        return result.audio

    async def process_turn(self, session_id: str, audio: bytes) -> TurnResult:
        """Process one audio input and describe the outcome."""

        async with self._lock_for(session_id):
            with logfire.span("turn", session_id=session_id, audio_bytes=len(audio)):
                return await self._run_turn(session_id, audio)

    async def handle_idle(self, session_id: str) -> bytes | None:
        """Prompt a silent user once the idle threshold has passed.

        Returns the spoken prompt, or ``None`` when the session was active
        recently. Conversation phase and status are left untouched.
        """

        async with self._lock_for(session_id):
            session = await self.store.load(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            idle_for = (self.store.now() - session.last_activity).total_seconds()
            if idle_for <= self._idle_timeout:
                return None

            logfire.info("turn.idle_prompt", session_id=session_id, idle_seconds=idle_for)
            audio = await self._speak(IDLE_PROMPT)
            session.history.append(self._message("assistant", IDLE_PROMPT))
            await self.store.save(session)
            return audio

    async def prewarm_cache(self) -> int:
        """Synthesize the common phrase catalogue into the response cache."""

        return await self.cache.prewarm(
            self._synthesizer.synthesize, self.voice, self.audio_format
        )

    # Turn pipeline

    async def _run_turn(self, session_id: str, audio: bytes) -> TurnResult:
        started = monotonic()
        session = await self.store.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if self.state_machine.is_terminal(session.conversation_state):
            await self.store.delete(session_id)
            raise SessionNotFound(session_id)

        session.status = SessionStatus.ACTIVE
        session = await self.store.save(session)

        ensure_supported_audio(audio)

        heard = await self._transcribe(session_id, audio)
        if not heard.ok:
            audio_reply = await self._speak(APOLOGY_MESSAGE, prior_error=heard.error)
            return await self._finish(session, None, _Reply(APOLOGY_MESSAGE), audio_reply, started)

        transcript = heard.value.text.strip()
        if not transcript:
            logfire.warning("turn.empty_transcript", session_id=session_id)
            audio_reply = await self._speak(REPEAT_MESSAGE)
            return await self._finish(session, None, _Reply(REPEAT_MESSAGE), audio_reply, started)

        session.history.append(self._message("user", transcript))
        session = await self.store.save(session)

        if contains_exit_phrase(transcript):
            logfire.info("turn.exit_phrase", session_id=session_id)
            reply = _Reply(GOODBYE_MESSAGE, requires_user_input=False, ended=True)
            session.history.append(self._message("assistant", GOODBYE_MESSAGE))
            await self._close(session)
            audio_reply = await self._speak(GOODBYE_MESSAGE)
            return self._result(session, transcript, reply, audio_reply, started)

        interpretation = await self._interpret(session, transcript)
        reply = await self._act(session, interpretation)

        if reply.ended:
            session.history.append(self._message("assistant", reply.text))
            await self._close(session)
            audio_reply = await self._speak(reply.text)
            return self._result(session, transcript, reply, audio_reply, started)

        audio_reply = await self._speak(reply.text)
        return await self._finish(session, transcript, reply, audio_reply, started)

    async def _finish(
        self,
        session: Session,
        transcript: str | None,
        reply: _Reply,
        audio: bytes,
        started: float,
    ) -> TurnResult:
        session.history.append(self._message("assistant", reply.text))
        if reply.requires_user_input:
            session.status = SessionStatus.WAITING
        session = await self.store.save(session)
        return self._result(session, transcript, reply, audio, started)

    def _result(
        self,
        session: Session,
        transcript: str | None,
        reply: _Reply,
        audio: bytes,
        started: float,
    ) -> TurnResult:
        logfire.info(
            "turn.completed",
            session_id=session.session_id,
            conversation_state=session.conversation_state.value,
            ended=reply.ended,
            duration_ms=round((monotonic() - started) * 1000, 1),
        )
        return TurnResult(
            session_id=session.session_id,
            audio=audio,
            reply_text=reply.text,
            transcript=transcript,
            conversation_state=session.conversation_state,
            requires_user_input=reply.requires_user_input,
            ended=reply.ended,
        )

    async def _transcribe(self, session_id: str, audio: bytes) -> StepOutcome[Transcription]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(TRANSCRIBE_ATTEMPTS),
                wait=wait_exponential(multiplier=1, min=1, max=4),
                retry=retry_if_not_exception_type(InputValidationError),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    logfire.debug(
                        "turn.transcribe_attempt",
                        session_id=session_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    transcription = await self._transcriber.transcribe(audio)
        except InputValidationError:
            raise
        except Exception as exc:
            logfire.exception(
                "turn.transcription_failed",
                session_id=session_id,
                attempts=TRANSCRIBE_ATTEMPTS,
            )
            error = exc if isinstance(exc, TranscriptionFailed) else TranscriptionFailed(str(exc))
            return StepOutcome.failed(error)

        if transcription.confidence < self._min_confidence:
            logfire.warning(
                "turn.degraded_transcript",
                session_id=session_id,
                confidence=transcription.confidence,
                threshold=self._min_confidence,
            )
            return StepOutcome.degraded(transcription)
        return StepOutcome.success(transcription)

    async def _interpret(self, session: Session, transcript: str) -> Interpretation:
        try:
            return await self._agent.interpret(
                transcript, list(session.history), session.current_product
            )
        except Exception:
            logfire.exception("turn.interpret_failed", session_id=session.session_id)
            return Interpretation(reply_text=APOLOGY_MESSAGE, requires_user_input=True)

    async def _act(self, session: Session, interpretation: Interpretation) -> _Reply:
        action = interpretation.action
        reply_text = interpretation.reply_text.strip()
        requires_input = interpretation.requires_user_input

        if action is None:
            if interpretation.new_state is ConversationState.ENDED:
                return _Reply(reply_text or CLOSING_MESSAGE, requires_user_input=False, ended=True)
            if interpretation.new_state is not None:
                self._advance(session, interpretation.new_state)
            elif session.conversation_state is ConversationState.PRESENTING_RESULTS:
                self._advance(session, ConversationState.FOLLOW_UP)
            return _Reply(reply_text or GENERIC_CLARIFICATION, requires_input)

        logfire.info("turn.action", session_id=session.session_id, action=action.type)

        if isinstance(action, SearchAction):
            return _Reply(await self._run_search(session, action.query), requires_input)

        if isinstance(action, ClarifyAction):
            self._advance(session, target_state_for(action))
            return _Reply(action.question or GENERIC_CLARIFICATION, requires_input)

        if isinstance(action, CompareAction):
            # Comparison happens inside the search summary; the phase stays put.
            return _Reply(reply_text or GENERIC_CLARIFICATION, requires_input)

        if isinstance(action, EndAction):
            return _Reply(CLOSING_MESSAGE, requires_user_input=False, ended=True)

        return _Reply(GENERIC_CLARIFICATION, requires_input)

    async def _run_search(self, session: Session, query: ProductQuery) -> str:
        session.current_product = query
        self._advance(session, ConversationState.SEARCHING)

        found = await self._search_step(session.session_id, query)
        if not found.ok:
            self._advance(session, ConversationState.PRESENTING_RESULTS)
            return SEARCH_UNAVAILABLE_MESSAGE

        ranked = self.ranker.filter_and_rank(found.value or [], query.specifications)
        summary = await self._summarize(session.session_id, query, ranked)
        self._advance(session, ConversationState.PRESENTING_RESULTS)
        return summary.value or fallback_summary(query, ranked)

    async def _search_step(
        self, session_id: str, query: ProductQuery
    ) -> StepOutcome[list[SearchResult]]:
        with logfire.span("turn.search", session_id=session_id, product=query.product_name):
            try:
                results = list(await self._search.search(query))
            except SearchFailed as exc:
                logfire.warning("turn.search_failed", session_id=session_id, error=str(exc))
                return StepOutcome.failed(exc)
            except Exception as exc:
                logfire.exception("turn.search_error", session_id=session_id)
                return StepOutcome.failed(SearchFailed(f"Search provider error: {exc}"))
        return StepOutcome.success(results)

    async def _summarize(
        self, session_id: str, query: ProductQuery, ranked: list[SearchResult]
    ) -> StepOutcome[str]:
        try:
            summary = (await self._agent.summarize(query, ranked)).strip()
        except Exception as exc:
            logfire.warning("turn.summary_fallback", session_id=session_id, error=str(exc))
            return StepOutcome.degraded(fallback_summary(query, ranked), exc)
        if not summary:
            return StepOutcome.degraded(fallback_summary(query, ranked))
        return StepOutcome.success(summary)

    async def _synthesize(self, text: str) -> StepOutcome[bytes]:
        cached = self.cache.get(text, self.voice, self.audio_format)
        if cached is not None:
            return StepOutcome.success(cached)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(SYNTHESIZE_ATTEMPTS),
                wait=wait_incrementing(start=1, increment=1),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    logfire.debug(
                        "turn.synthesize_attempt",
                        attempt=attempt.retry_state.attempt_number,
                    )
                    audio = await self._synthesizer.synthesize(
                        text, self.voice, self.audio_format
                    )
        except Exception as exc:
            logfire.exception("turn.synthesis_failed", attempts=SYNTHESIZE_ATTEMPTS)
            return StepOutcome.failed(exc)

        self.cache.set(text, audio, self.voice, self.audio_format)
        return StepOutcome.success(audio)

    async def _speak(self, text: str, *, prior_error: BaseException | None = None) -> bytes:
        spoken = await self._synthesize(text)
        if spoken.ok:
            return spoken.value
        if prior_error is not None:
            raise ApologyUndeliverable(prior_error, spoken.error) from spoken.error
        raise SynthesisFailed(f"Could not synthesize reply: {spoken.error}") from spoken.error

    # State helpers

    def _advance(self, session: Session, target: ConversationState) -> None:
        """Walk the shortest legal path to ``target``; unreachable targets are skipped."""

        chain = self.state_machine.path(session.conversation_state, target)
        if chain is None:
            logfire.warning(
                "turn.transition_skipped",
                session_id=session.session_id,
                current=session.conversation_state.value,
                target=target.value,
            )
            return
        for state in chain:
            previous = session.conversation_state
            session.conversation_state = self.state_machine.transition(previous, state)
            logfire.info(
                "session.state_changed",
                session_id=session.session_id,
                previous=previous.value,
                current=state.value,
            )

    async def _close(self, session: Session) -> None:
        self._advance(session, ConversationState.ENDED)
        session.status = SessionStatus.COMPLETED
        await self.store.save(session)
        await self.store.delete(session.session_id)
        logfire.info("turn.session_ended", session_id=session.session_id)

    def _message(self, role: Literal["user", "assistant"], content: str) -> Message:
        return Message(role=role, content=content, timestamp=self.store.now())

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock


__all__ = [
    "StepOutcome",
    "SYNTHESIZE_ATTEMPTS",
    "TRANSCRIBE_ATTEMPTS",
    "TurnOrchestrator",
    "TurnResult",
]
