"""Tests for session persistence backends."""
import json

import pytest

from promptchain.domain.context.context_store import ContextStore
from promptchain.domain.context.memory import CacheMemoryStore, JsonFileStore
from promptchain.domain.context.memory.session_backend import SessionBackend
from promptchain.domain.models.context_models import Message, MessageRole, Session


class FailingBackend(SessionBackend):
    async def load(self):
        raise OSError("disk unavailable")

    async def save(self, sessions):
        raise OSError("disk unavailable")


class TestJsonFileStore:
    """JSON file round trips through the context store."""

    @pytest.mark.asyncio
    async def test_sessions_survive_restart(self, tmp_path):
        path = tmp_path / "sessions.json"

        store = ContextStore(backend=JsonFileStore(str(path)))
        await store.create_session("s1", {"response_style": "detailed"})
        await store.add_message("s1", Message(role=MessageRole.USER, content="remember this"))

        restored = ContextStore(backend=JsonFileStore(str(path)))
        await restored.initialize()
        session = await restored.get_session("s1")

        assert session.messages[0].content == "remember this"
        assert session.user_profile.response_style.value == "detailed"
        assert isinstance(json.loads(path.read_text()), list)

    @pytest.mark.asyncio
    async def test_missing_file_loads_nothing(self, tmp_path):
        backend = JsonFileStore(str(tmp_path / "absent.json"))

        assert await backend.load() == {}


class TestCacheMemoryStore:
    """In-memory snapshots with TTL."""

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        backend = CacheMemoryStore()
        await backend.save({"s1": Session(id="s1")})

        loaded = await backend.load()

        assert list(loaded) == ["s1"]
        assert (await backend.get_stats())["active_keys"] == 1

    @pytest.mark.asyncio
    async def test_expired_entries_are_skipped_and_cleared(self):
        backend = CacheMemoryStore(ttl=-1)
        await backend.save({"s1": Session(id="s1")})

        assert await backend.load() == {}
        assert await backend.clear_expired() == 1
        assert (await backend.get_stats())["total_keys"] == 0


class TestBackendFailures:
    """Persistence problems never break the store."""

    @pytest.mark.asyncio
    async def test_store_keeps_working_when_backend_fails(self):
        store = ContextStore(backend=FailingBackend())
        await store.initialize()

        await store.create_session("s1")
        await store.add_message("s1", Message(role=MessageRole.USER, content="still stored"))

        session = await store.get_session("s1")
        assert session.messages[0].content == "still stored"
