from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from dal.session_dal import SessionDAL
from models.errors import SessionNotFound
from models.generation_models import (
    GeneratedImage,
    GenerationTask,
    ImageGenerationParams,
    SessionData,
    TaskStatus,
    now_ms,
)
from services.tracker.session_store import INTERRUPTED_MESSAGE, SessionStore, TaskSuccess
from services.tracker.task_dispatcher import TaskDispatcher
from tests.fakes import GatedProvider
from utils.database_init import AsyncDatabaseInitializer


def test_put_get_delete_round_trip(tmp_path: Path) -> None:
    dal = SessionDAL(AsyncDatabaseInitializer(tmp_path))
    session = SessionData(session_id="s1", current_settings=ImageGenerationParams(style="ink"))

    async def scenario():
        missing = await dal.get("s1")
        await dal.put(session)
        stored = await dal.get("s1")
        deleted = await dal.delete("s1")
        deleted_again = await dal.delete("s1")
        return missing, stored, deleted, deleted_again

    missing, stored, deleted, deleted_again = asyncio.run(scenario())
    assert missing is None
    assert stored.session_id == "s1"
    assert stored.current_settings == ImageGenerationParams(style="ink")
    assert deleted is True
    assert deleted_again is False


def test_store_restores_sessions_after_restart(tmp_path: Path) -> None:
    db = AsyncDatabaseInitializer(tmp_path)

    async def first_run():
        store = SessionStore(SessionDAL(db))
        session = await store.create_session()
        sid = session.session_id
        task = GenerationTask(task_id="t1", session_id=sid, prompt="sunset", parameters=ImageGenerationParams())
        await store.enqueue_task(sid, task)
        await store.mark_processing(sid, "t1")
        image = GeneratedImage(id="t1", prompt="sunset", image_url="https://img.example/t1.png", parameters=ImageGenerationParams())
        await store.resolve_task(sid, "t1", TaskSuccess(image))
        return sid

    async def second_run(sid: str):
        store = SessionStore(SessionDAL(db))
        state = await store.get_session(sid)
        duplicate = await store.resolve_task(sid, "t1", TaskSuccess(state.history[0]))
        return state, duplicate

    sid = asyncio.run(first_run())
    state, duplicate = asyncio.run(second_run(sid))
    assert [image.prompt for image in state.history] == ["sunset"]
    assert state.queued_tasks == {}
    assert duplicate is None


def test_tasks_left_running_by_a_crash_fail_on_restore(tmp_path: Path) -> None:
    db = AsyncDatabaseInitializer(tmp_path)

    async def crashed_run():
        store = SessionStore(SessionDAL(db))
        provider = GatedProvider()
        dispatcher = TaskDispatcher(store, provider, timeout=5.0, max_concurrency=1)
        session = await store.create_session()
        sid = session.session_id
        running = await dispatcher.submit(sid, "first light")
        waiting = await dispatcher.submit(sid, "second wind")
        while not provider.calls:
            await asyncio.sleep(0.01)
        # No shutdown: the loop is torn down with both jobs still pending.
        return sid, running, waiting

    async def restarted_run(sid: str, running: str):
        store = SessionStore(SessionDAL(db))
        events = []
        store.add_listener(events.append)
        state = await store.get_session(sid)
        cancelled = await store.cancel_task(sid, running)
        return state, events, cancelled, await SessionDAL(db).get(sid)

    sid, running, waiting = asyncio.run(crashed_run())
    state, events, cancelled, stored = asyncio.run(restarted_run(sid, running))
    assert state.queued_tasks == {}
    assert state.history == []
    assert {event.task_id for event in events} == {running, waiting}
    assert all(event.status == TaskStatus.FAILED for event in events)
    assert all(event.error == INTERRUPTED_MESSAGE for event in events)
    assert cancelled is False
    assert stored.queued_tasks == {}


def test_shutdown_leaves_no_open_tasks_in_storage(tmp_path: Path) -> None:
    db = AsyncDatabaseInitializer(tmp_path)

    async def first_run():
        store = SessionStore(SessionDAL(db))
        provider = GatedProvider()
        dispatcher = TaskDispatcher(store, provider, timeout=5.0)
        session = await store.create_session()
        await dispatcher.submit(session.session_id, "never ends")
        while not provider.calls:
            await asyncio.sleep(0.01)
        await dispatcher.shutdown()
        return session.session_id

    async def second_run(sid: str):
        store = SessionStore(SessionDAL(db))
        events = []
        store.add_listener(events.append)
        return await store.get_session(sid), events

    sid = asyncio.run(first_run())
    state, events = asyncio.run(second_run(sid))
    assert state.queued_tasks == {}
    assert events == []


def test_deleted_and_expired_sessions_leave_storage(tmp_path: Path) -> None:
    db = AsyncDatabaseInitializer(tmp_path)
    dal = SessionDAL(db)

    async def scenario():
        store = SessionStore(dal, session_ttl=1)
        kept = await store.create_session()
        dropped = await store.create_session()
        await store.delete_session(dropped.session_id)
        gone = await dal.get(dropped.session_id)
        purged = await store.purge_expired(now=now_ms() + 5000)
        return kept.session_id, gone, purged, await dal.get(kept.session_id)

    kept_id, gone, purged, kept = asyncio.run(scenario())
    assert gone is None
    assert purged == 1
    assert kept is None
    with pytest.raises(SessionNotFound):
        asyncio.run(SessionStore(dal).get_session(kept_id))


def test_database_dir_must_be_a_directory(tmp_path: Path) -> None:
    target = tmp_path / "not-a-dir"
    target.write_text("x", encoding="utf-8")
    with pytest.raises(RuntimeError):
        AsyncDatabaseInitializer(target)


def test_database_dir_falls_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_DIR", str(tmp_path / "db"))
    db = AsyncDatabaseInitializer()
    assert db.db_path == tmp_path / "db" / "sessions.db"

    monkeypatch.delenv("DATABASE_DIR")
    with pytest.raises(RuntimeError):
        AsyncDatabaseInitializer()
