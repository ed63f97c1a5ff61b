"""Rina domain model types (agent events, conversation turns, sessions)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

Role: TypeAlias = Literal["user", "assistant"]

AgentEventType: TypeAlias = Literal[
    "text_start",
    "text_delta",
    "text_end",
    "tool_start",
    "tool_result",
    "session_init",
]


@dataclass(frozen=True, slots=True)
class TextStart:
    type: Literal["text_start"] = field(default="text_start", init=False)


@dataclass(frozen=True, slots=True)
class TextDelta:
    type: Literal["text_delta"] = field(default="text_delta", init=False)
    text: str


@dataclass(frozen=True, slots=True)
class TextEnd:
    type: Literal["text_end"] = field(default="text_end", init=False)


@dataclass(frozen=True, slots=True)
class ToolInvocationStart:
    type: Literal["tool_start"] = field(default="tool_start", init=False)
    tool_name: str
    tool_id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    """A completed tool call.

    ``output`` is whatever the runtime reported; it is only ever rendered to
    text for logging and is never posted to the platform.
    """

    type: Literal["tool_result"] = field(default="tool_result", init=False)
    tool_name: str
    output: Any = None
    tool_id: str | None = None


@dataclass(frozen=True, slots=True)
class SessionInit:
    type: Literal["session_init"] = field(default="session_init", init=False)
    session_id: str


AgentEvent: TypeAlias = (
    TextStart | TextDelta | TextEnd | ToolInvocationStart | ToolResult | SessionInit
)


@dataclass(frozen=True, slots=True)
class TextPart:
    type: Literal["text"] = field(default="text", init=False)
    text: str


@dataclass(frozen=True, slots=True)
class ImagePart:
    type: Literal["image"] = field(default="image", init=False)
    data: bytes = field(repr=False)
    media_type: str


@dataclass(frozen=True, slots=True)
class FilePart:
    type: Literal["file"] = field(default="file", init=False)
    data: bytes = field(repr=False)
    media_type: str
    filename: str | None = None


MediaPart: TypeAlias = ImagePart | FilePart
ContentPart: TypeAlias = TextPart | ImagePart | FilePart
TurnContent: TypeAlias = str | tuple[ContentPart, ...]


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Role
    content: TurnContent

    def parts(self) -> tuple[ContentPart, ...]:
        if isinstance(self.content, str):
            return (TextPart(text=self.content),)
        return self.content

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text for part in self.content if isinstance(part, TextPart)
        )

    def media_count(self) -> int:
        if isinstance(self.content, str):
            return 0
        return sum(1 for part in self.content if not isinstance(part, TextPart))


@dataclass(frozen=True, slots=True)
class ThreadSession:
    thread_id: str
    agent_session_id: str


def _as_parts(content: TurnContent) -> tuple[ContentPart, ...]:
    if isinstance(content, str):
        return (TextPart(text=content),)
    return content


def merge_turns(turns: Iterable[ConversationTurn]) -> list[ConversationTurn]:
    """Collapse consecutive same-role turns so roles strictly alternate.

    User turns are concatenated part by part; assistant turns are joined as
    text with a blank line between them.
    """
    merged: list[ConversationTurn] = []
    for turn in turns:
        if not merged or merged[-1].role != turn.role:
            merged.append(turn)
            continue
        previous = merged[-1]
        if turn.role == "user":
            content: TurnContent = _as_parts(previous.content) + _as_parts(
                turn.content
            )
        else:
            content = "\n\n".join(
                text for text in (previous.text(), turn.text()) if text
            )
        merged[-1] = ConversationTurn(role=turn.role, content=content)
    return merged
