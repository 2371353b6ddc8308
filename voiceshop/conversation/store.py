"""In-memory session store with TTL expiry and a periodic sweep."""

from __future__ import annotations

import asyncio
import contextlib
import math
from datetime import datetime, timedelta
from typing import Callable

import logfire
from cachetools import TTLCache

from ..errors import SessionAlreadyExists, SessionNotFound
from .contracts import (
    ConversationState,
    Message,
    ProductQuery,
    Session,
    SessionStatus,
    utcnow,
)


DEFAULT_SESSION_TIMEOUT_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class SessionStore:
    """Owns every session record keyed by session identifier.

    Records live in a ``TTLCache`` timed by the injected clock, so every save
    refreshes the session's lifetime. Reads and writes hand out deep copies
    so no caller keeps a live reference to stored state.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_SESSION_TIMEOUT_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._sessions: TTLCache[str, Session] = TTLCache(
            maxsize=math.inf,
            ttl=timeout_seconds,
            timer=lambda: self._clock().timestamp(),
        )
        self._lock = asyncio.Lock()
        self._timeout = timedelta(seconds=timeout_seconds)
        self._sweep_interval = sweep_interval_seconds
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    def now(self) -> datetime:
        return self._clock()

    async def create(self, session_id: str) -> Session:
        """Insert a fresh session in the initial phase."""

        async with self._lock:
            self._purge_expired()
            if session_id in self._sessions:
                raise SessionAlreadyExists(session_id)
            session = Session(session_id=session_id, last_activity=self._clock())
            self._sessions[session_id] = session
            logfire.info("session.created", session_id=session_id)
            return session.model_copy(deep=True)

    async def load(self, session_id: str) -> Session | None:
        """Return the session unless it is missing, completed or expired."""

        async with self._lock:
            self._purge_expired()
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.status is SessionStatus.COMPLETED:
                del self._sessions[session_id]
                logfire.info("session.completed_removed", session_id=session_id)
                return None
            return session.model_copy(deep=True)

    async def save(self, session: Session) -> Session:
        """Persist the full record and refresh its activity timestamp."""

        async with self._lock:
            stored = session.model_copy(deep=True, update={"last_activity": self._clock()})
            self._sessions[session.session_id] = stored
            return stored.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        """Remove a session; deleting an absent session is not an error."""

        async with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logfire.info("session.deleted", session_id=session_id)
        return removed

    async def sweep(self, max_age_seconds: float | None = None) -> int:
        """Delete every session idle for longer than the timeout or ``max_age_seconds``."""

        async with self._lock:
            removed = self._purge_expired()
            if max_age_seconds is not None:
                max_age = timedelta(seconds=max_age_seconds)
                now = self._clock()
                stale = [
                    session_id
                    for session_id, session in list(self._sessions.items())
                    if now - session.last_activity > max_age
                ]
                for session_id in stale:
                    del self._sessions[session_id]
                removed += len(stale)

        if removed:
            logfire.info(
                "session.sweep",
                removed=removed,
                max_age_seconds=(
                    self._timeout.total_seconds() if max_age_seconds is None else max_age_seconds
                ),
            )
        return removed

    def _purge_expired(self) -> int:
        expired = list(self._sessions.expire())
        for session_id, _ in expired:
            logfire.info("session.expired", session_id=session_id)
        return len(expired)

    # Periodic sweep lifecycle

    def start(self) -> None:
        """Launch the background sweep task on the running event loop."""

        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_forever(), name="session-sweep"
        )
        logfire.info("session.sweep_started", interval_seconds=self._sweep_interval)

    async def stop(self) -> None:
        """Cancel the background sweep task, if running."""

        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logfire.info("session.sweep_stopped")

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception:  # pragma: no cover - keep the loop alive
                logfire.exception("session.sweep_failed")

    # Conversation context helpers (load -> mutate -> save)

    async def _require(self, session_id: str) -> Session:
        session = await self.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def append_message(
        self, session_id: str, role: str, content: str
    ) -> Session:
        session = await self._require(session_id)
        session.history.append(Message(role=role, content=content, timestamp=self._clock()))
        return await self.save(session)

    async def set_product_query(self, session_id: str, query: ProductQuery | None) -> Session:
        session = await self._require(session_id)
        session.current_product = query
        saved = await self.save(session)
        logfire.debug(
            "session.product_updated",
            session_id=session_id,
            product=query.product_name if query else None,
        )
        return saved

    async def set_conversation_state(
        self, session_id: str, state: ConversationState
    ) -> Session:
        session = await self._require(session_id)
        previous = session.conversation_state
        session.conversation_state = state
        saved = await self.save(session)
        logfire.info(
            "session.state_changed",
            session_id=session_id,
            previous=previous.value,
            current=state.value,
        )
        return saved

    async def set_status(self, session_id: str, status: SessionStatus) -> Session:
        session = await self._require(session_id)
        session.status = status
        return await self.save(session)

    async def get_history(self, session_id: str) -> list[Message]:
        session = await self._require(session_id)
        return list(session.history)

    async def get_current_product(self, session_id: str) -> ProductQuery | None:
        session = await self._require(session_id)
        return session.current_product

    async def clear_current_product(self, session_id: str) -> Session:
        return await self.set_product_query(session_id, None)

    async def specification_progress(self, session_id: str) -> dict[str, object]:
        """Describe which product details have been gathered so far."""

        product = await self.get_current_product(session_id)
        if product is None:
            return {
                "has_product": False,
                "has_category": False,
                "specification_count": 0,
                "specifications": [],
            }
        return {
            "has_product": bool(product.product_name),
            "has_category": product.category is not None,
            "specification_count": len(product.specifications),
            "specifications": list(product.specifications),
        }

    async def summary(self, session_id: str) -> dict[str, object]:
        session = await self._require(session_id)
        return {
            "session_id": session.session_id,
            "message_count": len(session.history),
            "conversation_state": session.conversation_state.value,
            "status": session.status.value,
            "has_current_product": session.current_product is not None,
            "last_activity": session.last_activity.isoformat(),
        }

    # Introspection

    async def session_ids(self) -> list[str]:
        async with self._lock:
            self._purge_expired()
            return list(self._sessions)

    async def session_count(self) -> int:
        async with self._lock:
            self._purge_expired()
            return len(self._sessions)

    async def clear(self) -> None:
        """Remove all sessions (useful for testing)."""

        async with self._lock:
            self._sessions.clear()


__all__ = [
    "DEFAULT_SESSION_TIMEOUT_SECONDS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "SessionStore",
]
