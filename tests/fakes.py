from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from rina.transport import (
    Attachment,
    Author,
    PostContent,
    PostPayload,
    SentMessage,
    StoredMessage,
)

USER = Author(user_id="U1", user_name="alice")
ANON = Author(user_id=None)
BOT = Author(user_id="B1", is_me=True, user_name="rina")


def user_message(
    message_id: str,
    text: str,
    *,
    author: Author = ANON,
    attachments: tuple[Attachment, ...] = (),
) -> StoredMessage:
    return StoredMessage(
        id=message_id, author=author, text=text, attachments=attachments
    )


def bot_message(
    message_id: str, text: str, *, attachments: tuple[Attachment, ...] = ()
) -> StoredMessage:
    return StoredMessage(id=message_id, author=BOT, text=text, attachments=attachments)


def image_attachment(
    data: bytes = b"png-bytes", *, name: str = "cat.png", mime_type: str = "image/png"
) -> Attachment:
    return Attachment(type="image", mime_type=mime_type, data=data, name=name)


def failing_attachment(name: str = "broken.png") -> Attachment:
    async def fetch() -> bytes | None:
        raise OSError("fetch failed")

    return Attachment(type="image", mime_type="image/png", fetch_data=fetch, name=name)


@dataclass
class FakeThread:
    """In-memory thread that records every post.

    Static posts are recorded as :class:`PostPayload`; live posts are
    recorded as the list of fragments pulled from the lazy sequence.
    Exceptions queued in ``failures`` are raised by the next posts, before
    any fragment is consumed.
    """

    id: str = "thread-1"
    channel_id: str = "channel-1"
    platform: str = "telegram"
    is_dm: bool = False
    messages: list[StoredMessage] = field(default_factory=list)
    state: dict[str, Any] = field(default_factory=dict)
    failures: list[Exception] = field(default_factory=list)
    fetched: dict[str, StoredMessage | Exception] = field(default_factory=dict)
    fetch_calls: list[str] = field(default_factory=list)
    posts: list[PostPayload | list[str]] = field(default_factory=list)
    post_calls: int = 0
    subscribed: bool = False

    async def post(self, content: PostContent) -> SentMessage | None:
        self.post_calls += 1
        if self.failures:
            raise self.failures.pop(0)
        if isinstance(content, str):
            self.posts.append(PostPayload(markdown=content))
        elif isinstance(content, PostPayload):
            self.posts.append(content)
        else:
            fragments: list[str] = []
            async for fragment in content:
                fragments.append(fragment)
            self.posts.append(fragments)
        return SentMessage(id=f"sent-{len(self.posts)}")

    async def all_messages(self) -> AsyncIterator[StoredMessage]:
        for message in list(self.messages):
            yield message

    async def fetch_message(self, message_id: str) -> StoredMessage | None:
        self.fetch_calls.append(message_id)
        found = self.fetched.get(message_id)
        if isinstance(found, Exception):
            raise found
        return found

    async def get_state(self) -> dict[str, Any] | None:
        return dict(self.state) or None

    async def set_state(self, state: dict[str, Any], *, replace: bool = False) -> None:
        if replace:
            self.state = dict(state)
        else:
            self.state.update(state)

    async def subscribe(self) -> None:
        self.subscribed = True

    @property
    def texts(self) -> list[str]:
        out: list[str] = []
        for post in self.posts:
            if isinstance(post, PostPayload):
                out.append(post.markdown or "")
            else:
                out.append("".join(post))
        return out

    @property
    def live_posts(self) -> list[list[str]]:
        return [post for post in self.posts if isinstance(post, list)]

    @property
    def uploads(self) -> list[PostPayload]:
        return [
            post for post in self.posts if isinstance(post, PostPayload) and post.files
        ]


@dataclass
class FakeStore:
    values: dict[str, Any] = field(default_factory=dict)
    ttls: dict[str, int | None] = field(default_factory=dict)

    async def get(self, key: str) -> Any | None:
        return self.values.get(key)

    async def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        self.values[key] = value
        self.ttls[key] = ttl_ms


@dataclass
class FakeSleep:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def fake_http(
    routes: dict[str, httpx.Response | Callable[[httpx.Request], httpx.Response]],
) -> httpx.AsyncClient:
    """An httpx client answering from ``routes``; unknown URLs get a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        if callable(route):
            return route(request)
        return route

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def png_response(data: bytes = b"\x89PNG-data") -> httpx.Response:
    return httpx.Response(200, content=data, headers={"content-type": "image/png"})
