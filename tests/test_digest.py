from datetime import UTC, datetime

import pytest

from rina.digest import (
    DIGEST_CONTEXT_TTL_MS,
    SeenCache,
    build_digest_prelude,
    digest_context_key,
    load_digest_context,
    save_digest_context,
)
from tests.fakes import FakeStore


@pytest.mark.anyio
async def test_digest_context_is_stored_with_ttl(fake_store: FakeStore) -> None:
    stories = [{"id": 1, "title": "Show HN: a thing"}]

    context = await save_digest_context(
        fake_store,
        "thread-9",
        "1. Show HN: a thing",
        stories,
        now=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
    )

    key = digest_context_key("thread-9")
    assert key == "news:digest-thread:thread-9"
    assert fake_store.values[key] == {
        "digestMessage": "1. Show HN: a thing",
        "postedAt": "2024-01-02T03:04:05Z",
        "stories": stories,
    }
    assert fake_store.ttls[key] == DIGEST_CONTEXT_TTL_MS == 1_209_600_000
    assert await load_digest_context(fake_store, "thread-9") == context


@pytest.mark.anyio
async def test_missing_or_invalid_context_loads_as_none(fake_store: FakeStore) -> None:
    fake_store.values[digest_context_key("bad")] = {"postedAt": 3}

    assert await load_digest_context(fake_store, "missing") is None
    assert await load_digest_context(fake_store, "bad") is None


@pytest.mark.anyio
async def test_prelude_includes_message_and_timestamp(fake_store: FakeStore) -> None:
    context = await save_digest_context(
        fake_store,
        "t",
        "Top stories today",
        now=datetime(2024, 6, 1, 12, 0, tzinfo=UTC),
    )

    prelude = build_digest_prelude(context)

    assert "Top stories today" in prelude
    assert prelude.endswith("Digest posted at: 2024-06-01T12:00:00Z")


def test_seen_cache_evicts_oldest_first() -> None:
    cache = SeenCache(capacity=3)

    assert cache.add("a")
    assert not cache.add("a")
    cache.mark(["b", "c", "d"])

    assert len(cache) == 3
    assert "a" not in cache
    assert "d" in cache
    assert cache.filter_new(["a", "b", "e", "e"]) == ["a", "e"]
    assert len(cache) == 3


def test_seen_cache_rejects_bad_capacity() -> None:
    with pytest.raises(ValueError):
        SeenCache(capacity=0)
