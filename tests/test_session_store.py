"""Tests for the in-memory session store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from voiceshop.conversation.contracts import (
    ConversationState,
    ProductCategory,
    ProductQuery,
    SessionStatus,
)
from voiceshop.conversation.store import SessionStore
from voiceshop.errors import SessionAlreadyExists, SessionNotFound


@pytest.fixture
def anyio_backend() -> str:
    """Limit AnyIO tests to the asyncio backend."""

    return "asyncio"


class _Clock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def store(clock: _Clock) -> SessionStore:
    return SessionStore(timeout_seconds=1800, clock=clock)


@pytest.mark.anyio("asyncio")
async def test_create_starts_initial_and_active(store: SessionStore) -> None:
    session = await store.create("s-1")

    assert session.conversation_state is ConversationState.INITIAL
    assert session.status is SessionStatus.ACTIVE
    assert session.history == []

    with pytest.raises(SessionAlreadyExists):
        await store.create("s-1")


@pytest.mark.anyio("asyncio")
async def test_load_purges_sessions_past_timeout(store: SessionStore, clock: _Clock) -> None:
    await store.create("s-1")

    clock.advance(1799)
    assert await store.load("s-1") is not None

    clock.advance(1)
    assert await store.load("s-1") is None
    assert await store.load("s-1") is None
    assert await store.session_count() == 0


@pytest.mark.anyio("asyncio")
async def test_completed_sessions_are_absent(store: SessionStore) -> None:
    await store.create("s-1")
    await store.set_status("s-1", SessionStatus.COMPLETED)

    assert await store.load("s-1") is None
    assert await store.session_ids() == []


@pytest.mark.anyio("asyncio")
async def test_save_refreshes_activity_and_replaces_record(
    store: SessionStore, clock: _Clock
) -> None:
    session = await store.create("s-1")
    clock.advance(1000)

    session.conversation_state = ConversationState.GATHERING_SPECS
    saved = await store.save(session)

    assert saved.last_activity == clock.now
    clock.advance(1000)
    loaded = await store.load("s-1")
    assert loaded is not None
    assert loaded.conversation_state is ConversationState.GATHERING_SPECS


@pytest.mark.anyio("asyncio")
async def test_loaded_sessions_are_copies(store: SessionStore) -> None:
    await store.create("s-1")
    first = await store.load("s-1")
    assert first is not None
    first.history.clear()
    first.status = SessionStatus.WAITING

    await store.append_message("s-1", "user", "hello")
    second = await store.load("s-1")

    assert second is not None
    assert [message.content for message in second.history] == ["hello"]
    assert second.status is SessionStatus.ACTIVE


@pytest.mark.anyio("asyncio")
async def test_delete_is_idempotent(store: SessionStore) -> None:
    await store.create("s-1")

    assert await store.delete("s-1") is True
    assert await store.delete("s-1") is False
    assert await store.delete("never-existed") is False


@pytest.mark.anyio("asyncio")
async def test_sweep_removes_stale_sessions_once(store: SessionStore, clock: _Clock) -> None:
    await store.create("stale")
    await store.create("fresh")
    clock.advance(400)
    await store.append_message("fresh", "user", "still here")

    assert await store.sweep(max_age_seconds=300) == 1
    assert await store.sweep(max_age_seconds=300) == 0
    assert await store.session_ids() == ["fresh"]


@pytest.mark.anyio("asyncio")
async def test_default_sweep_uses_session_timeout(store: SessionStore, clock: _Clock) -> None:
    await store.create("idle")
    clock.advance(1000)
    await store.create("recent")
    clock.advance(900)

    assert await store.sweep() == 1
    assert await store.session_ids() == ["recent"]

    clock.advance(900)
    assert await store.sweep() == 1
    assert await store.session_count() == 0


@pytest.mark.anyio("asyncio")
async def test_helpers_fail_for_missing_sessions(store: SessionStore) -> None:
    with pytest.raises(SessionNotFound):
        await store.append_message("missing", "user", "hi")
    with pytest.raises(SessionNotFound):
        await store.set_conversation_state("missing", ConversationState.SEARCHING)
    with pytest.raises(SessionNotFound):
        await store.set_product_query("missing", None)

    assert await store.session_count() == 0


@pytest.mark.anyio("asyncio")
async def test_product_helpers_track_specification_progress(store: SessionStore) -> None:
    await store.create("s-1")
    assert (await store.specification_progress("s-1"))["has_product"] is False

    query = ProductQuery(
        product_name="MacBook Pro",
        category=ProductCategory.LAPTOP,
        specifications={"ram": "18GB", "storage": "512GB"},
    )
    await store.set_product_query("s-1", query)

    progress = await store.specification_progress("s-1")
    assert progress["has_category"] is True
    assert progress["specification_count"] == 2
    assert progress["specifications"] == ["ram", "storage"]

    await store.clear_current_product("s-1")
    assert await store.get_current_product("s-1") is None


@pytest.mark.anyio("asyncio")
async def test_summary_reports_message_count(store: SessionStore) -> None:
    await store.create("s-1")
    await store.append_message("s-1", "user", "I need a laptop")
    await store.append_message("s-1", "assistant", "Which processor?")

    summary = await store.summary("s-1")

    assert summary["message_count"] == 2
    assert summary["conversation_state"] == "initial"
    assert [m.role for m in await store.get_history("s-1")] == ["user", "assistant"]


@pytest.mark.anyio("asyncio")
async def test_background_sweep_runs_until_stopped(clock: _Clock) -> None:
    store = SessionStore(timeout_seconds=60, sweep_interval_seconds=0.01, clock=clock)
    await store.create("s-1")
    clock.advance(120)

    store.start()
    assert store.sweeping
    await asyncio.sleep(0.05)
    await store.stop()

    assert not store.sweeping
    assert await store.session_count() == 0
