"""Unit tests for FileSessionStore."""

import json

import pytest

from agentlane.infrastructure.persistence.file_session_store import FileSessionStore


@pytest.fixture
def store(tmp_path):
    return FileSessionStore(tmp_path / "sessions", max_messages=3)


@pytest.mark.asyncio
async def test_save_and_load_round_trip(store):
    messages = [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]

    assert await store.save("chat:42", messages)
    assert await store.load("chat:42") == messages


@pytest.mark.asyncio
async def test_snapshot_keeps_system_and_recent_messages(store):
    messages = [{"role": "system", "content": "sys"}] + [
        {"role": "user", "content": str(i)} for i in range(6)
    ]

    await store.save("a", messages)
    loaded = await store.load("a")

    assert [m["content"] for m in loaded] == ["sys", "3", "4", "5"]


@pytest.mark.asyncio
async def test_unsafe_session_ids_are_sanitized(store):
    await store.save("telegram/chat:42", [{"role": "system", "content": "s"}])

    assert store.list_sessions() == ["telegram_chat_42"]
    assert not list(store.sessions_dir.glob("*.tmp"))


@pytest.mark.asyncio
async def test_missing_and_corrupt_snapshots_load_as_none(store):
    assert await store.load("missing") is None

    (store.sessions_dir / "broken.json").write_text("{not json", encoding="utf-8")
    assert await store.load("broken") is None

    (store.sessions_dir / "odd.json").write_text(json.dumps({"messages": "x"}), encoding="utf-8")
    assert await store.load("odd") is None


@pytest.mark.asyncio
async def test_delete(store):
    await store.save("a", [{"role": "system", "content": "s"}])

    assert await store.delete("a") is True
    assert await store.delete("a") is False
    assert await store.load("a") is None
