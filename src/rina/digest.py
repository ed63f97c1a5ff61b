"""Digest thread context and the dedup cache used by the digest job."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import msgspec

from .logging import get_logger
from .transport import KeyedStore

logger = get_logger(__name__)

DIGEST_CONTEXT_KEY_PREFIX = "news:digest-thread:"
DIGEST_CONTEXT_TTL_MS = 14 * 24 * 60 * 60 * 1000
DEFAULT_SEEN_CAPACITY = 500


class DigestThreadContext(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    digest_message: str
    posted_at: str
    stories: list[dict[str, Any]] = msgspec.field(default_factory=list)


def digest_context_key(thread_id: str) -> str:
    return f"{DIGEST_CONTEXT_KEY_PREFIX}{thread_id}"


async def save_digest_context(
    store: KeyedStore,
    thread_id: str,
    digest_message: str,
    stories: Iterable[dict[str, Any]] = (),
    *,
    now: datetime | None = None,
) -> DigestThreadContext:
    posted_at = (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    context = DigestThreadContext(
        digest_message=digest_message,
        posted_at=posted_at,
        stories=list(stories),
    )
    await store.set(
        digest_context_key(thread_id),
        msgspec.to_builtins(context),
        ttl_ms=DIGEST_CONTEXT_TTL_MS,
    )
    return context


async def load_digest_context(
    store: KeyedStore, thread_id: str
) -> DigestThreadContext | None:
    raw = await store.get(digest_context_key(thread_id))
    if raw is None:
        return None
    try:
        return msgspec.convert(raw, type=DigestThreadContext)
    except msgspec.ValidationError as exc:
        logger.warning("digest.context.invalid", thread_id=thread_id, error=str(exc))
        return None


def build_digest_prelude(context: DigestThreadContext) -> str:
    return "\n".join(
        [
            "The following Hacker News digest was posted earlier in this thread.",
            "Use it as context when answering the next user message.",
            "",
            context.digest_message,
            "",
            f"Digest posted at: {context.posted_at}",
        ]
    )


class SeenCache:
    """Bounded set of recently seen ids; the oldest entries are evicted first."""

    def __init__(self, capacity: int = DEFAULT_SEEN_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, key: str) -> bool:
        if key in self._entries:
            return False
        self._entries[key] = None
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
        return True

    def filter_new(self, keys: Iterable[str]) -> list[str]:
        """Return the unseen keys in order without marking them."""
        fresh: list[str] = []
        for key in keys:
            if key not in self._entries and key not in fresh:
                fresh.append(key)
        return fresh

    def mark(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.add(key)
