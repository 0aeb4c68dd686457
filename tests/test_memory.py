from concurrent.futures import ThreadPoolExecutor

import pytest

from chat.core.memory import ConversationStore
from chat.models import Turn


def test_get_unknown_session_is_empty(store):
    assert store.get("sess-missing") == ()
    assert "sess-missing" not in store


def test_turns_come_back_in_append_order(store):
    store.append_turn("a", Turn(role="user", content="one"))
    store.append_turn("a", Turn(role="assistant", content="two"))
    store.append_turn("a", Turn(role="user", content="three"))

    assert [t.content for t in store.get("a")] == ["one", "two", "three"]


def test_sessions_are_isolated(store):
    store.append_turn("a", Turn(role="user", content="for a"))
    store.append_turn("b", Turn(role="user", content="for b"))

    assert [t.content for t in store.get("a")] == ["for a"]
    assert [t.content for t in store.get("b")] == ["for b"]


def test_snapshot_is_not_affected_by_later_appends(store):
    store.append_turn("a", Turn(role="user", content="first"))
    snapshot = store.get("a")
    store.append_turn("a", Turn(role="assistant", content="second"))

    assert len(snapshot) == 1
    assert len(store.get("a")) == 2


def test_concurrent_appends_lose_nothing(store):
    writers, per_writer = 8, 500

    def write(worker):
        for i in range(per_writer):
            store.append_turn("shared", Turn(role="user", content=f"{worker}:{i}"))

    with ThreadPoolExecutor(max_workers=writers) as pool:
        list(pool.map(write, range(writers)))

    turns = store.get("shared")
    assert len(turns) == writers * per_writer
    for worker in range(writers):
        seen = [int(t.content.split(":")[1]) for t in turns if t.content.startswith(f"{worker}:")]
        assert seen == list(range(per_writer))


def test_evict_expired_drops_idle_sessions():
    now = [100.0]
    store = ConversationStore(ttl_seconds=60, clock=lambda: now[0])
    store.append_turn("old", Turn(role="user", content="hi"))
    now[0] = 150.0
    store.append_turn("fresh", Turn(role="user", content="hi"))

    now[0] = 170.0
    assert store.evict_expired() == ["old"]
    assert "old" not in store
    assert "fresh" in store
    assert store.get("old") == ()


def test_reads_refresh_last_access():
    now = [0.0]
    store = ConversationStore(ttl_seconds=10, clock=lambda: now[0])
    store.append_turn("a", Turn(role="user", content="hi"))
    now[0] = 8.0
    store.get("a")
    now[0] = 15.0

    assert store.evict_expired() == []
    assert store.evict_expired(now=30.0) == ["a"]


def test_eviction_disabled_without_ttl(store):
    store.append_turn("a", Turn(role="user", content="hi"))
    assert store.evict_expired(now=10**9) == []
    assert len(store) == 1


@pytest.mark.asyncio
async def test_eviction_skips_sessions_mid_exchange():
    store = ConversationStore(ttl_seconds=1, clock=lambda: 0.0)
    store.append_turn("busy", Turn(role="user", content="hi"))

    async with store.session_lock("busy"):
        assert store.evict_expired(now=100.0) == []
    assert store.evict_expired(now=100.0) == ["busy"]


def test_discard(store):
    store.append_turn("a", Turn(role="user", content="hi"))
    assert store.discard("a") is True
    assert store.discard("a") is False
    assert store.get("a") == ()


@pytest.mark.asyncio
async def test_discard_keeps_session_with_exchange_in_flight(store):
    store.append_turn("busy", Turn(role="user", content="hi"))
    lock = store.session_lock("busy")

    async with lock:
        assert store.discard("busy") is False
        assert store.session_lock("busy") is lock
    assert store.discard("busy") is True


def test_clear_empties_transcript_but_keeps_locks(store):
    store.append_turn("a", Turn(role="user", content="hi"))
    lock = store.session_lock("a")

    store.clear("a")

    assert store.get("a") == ()
    assert "a" in store
    assert store.session_lock("a") is lock
    store.clear("missing")
    assert "missing" not in store
