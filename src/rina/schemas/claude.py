"""Msgspec models for the Claude Code CLI stream-json protocol."""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

import msgspec


class StreamTextBlock(
    msgspec.Struct, tag="text", tag_field="type", forbid_unknown_fields=False
):
    text: str


class StreamThinkingBlock(
    msgspec.Struct, tag="thinking", tag_field="type", forbid_unknown_fields=False
):
    thinking: str
    signature: str | None = None


class StreamToolUseBlock(
    msgspec.Struct, tag="tool_use", tag_field="type", forbid_unknown_fields=False
):
    id: str
    name: str
    input: dict[str, Any] = msgspec.field(default_factory=dict)


class StreamToolResultBlock(
    msgspec.Struct, tag="tool_result", tag_field="type", forbid_unknown_fields=False
):
    tool_use_id: str
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None


StreamContentBlock: TypeAlias = (
    StreamTextBlock | StreamThinkingBlock | StreamToolUseBlock | StreamToolResultBlock
)


class StreamUserMessageBody(msgspec.Struct, forbid_unknown_fields=False):
    role: Literal["user"]
    content: str | list[StreamContentBlock]


class StreamAssistantMessageBody(msgspec.Struct, forbid_unknown_fields=False):
    role: Literal["assistant"]
    content: list[StreamContentBlock]
    model: str | None = None


class StreamUserMessage(
    msgspec.Struct, tag="user", tag_field="type", forbid_unknown_fields=False
):
    message: StreamUserMessageBody
    parent_tool_use_id: str | None = None
    session_id: str | None = None


class StreamAssistantMessage(
    msgspec.Struct, tag="assistant", tag_field="type", forbid_unknown_fields=False
):
    message: StreamAssistantMessageBody
    parent_tool_use_id: str | None = None
    session_id: str | None = None


class StreamSystemMessage(
    msgspec.Struct, tag="system", tag_field="type", forbid_unknown_fields=False
):
    subtype: str
    session_id: str | None = None
    model: str | None = None
    tools: list[str] | None = None


class StreamResultMessage(
    msgspec.Struct, tag="result", tag_field="type", forbid_unknown_fields=False
):
    subtype: str
    is_error: bool = False
    session_id: str | None = None
    num_turns: int | None = None
    duration_ms: int | None = None
    total_cost_usd: float | None = None
    result: str | None = None


class StreamEventMessage(
    msgspec.Struct, tag="stream_event", tag_field="type", forbid_unknown_fields=False
):
    event: dict[str, Any]
    session_id: str | None = None
    parent_tool_use_id: str | None = None


StreamJsonMessage: TypeAlias = (
    StreamUserMessage
    | StreamAssistantMessage
    | StreamSystemMessage
    | StreamResultMessage
    | StreamEventMessage
)


class MessageStart(
    msgspec.Struct, tag="message_start", tag_field="type", forbid_unknown_fields=False
):
    message: dict[str, Any] | None = None


class ContentBlockStart(
    msgspec.Struct,
    tag="content_block_start",
    tag_field="type",
    forbid_unknown_fields=False,
):
    index: int
    content_block: StreamContentBlock


class ContentBlockDelta(
    msgspec.Struct,
    tag="content_block_delta",
    tag_field="type",
    forbid_unknown_fields=False,
):
    index: int
    delta: dict[str, Any]


class ContentBlockStop(
    msgspec.Struct,
    tag="content_block_stop",
    tag_field="type",
    forbid_unknown_fields=False,
):
    index: int


PartialEvent: TypeAlias = (
    MessageStart | ContentBlockStart | ContentBlockDelta | ContentBlockStop
)


class InputTextBlock(msgspec.Struct, tag="text", tag_field="type"):
    text: str


class Base64Source(msgspec.Struct, tag="base64", tag_field="type"):
    media_type: str
    data: str


class PlainTextSource(msgspec.Struct, tag="text", tag_field="type"):
    media_type: str
    data: str


class InputImageBlock(msgspec.Struct, tag="image", tag_field="type"):
    source: Base64Source


class InputDocumentBlock(
    msgspec.Struct, tag="document", tag_field="type", omit_defaults=True
):
    source: Base64Source | PlainTextSource
    title: str | None = None


InputContentBlock: TypeAlias = InputTextBlock | InputImageBlock | InputDocumentBlock


class InputMessageBody(msgspec.Struct):
    content: list[InputContentBlock]
    role: Literal["user"] = "user"


class InputUserMessage(msgspec.Struct, tag="user", tag_field="type"):
    message: InputMessageBody


_DECODER = msgspec.json.Decoder(StreamJsonMessage)
_ENCODER = msgspec.json.Encoder()


def decode_stream_json_line(line: str | bytes) -> StreamJsonMessage:
    return _DECODER.decode(line)


def decode_partial_event(event: dict[str, Any]) -> PartialEvent | None:
    try:
        return msgspec.convert(event, type=PartialEvent)
    except msgspec.ValidationError:
        return None


def encode_input_message(message: InputUserMessage) -> bytes:
    return _ENCODER.encode(message) + b"\n"
