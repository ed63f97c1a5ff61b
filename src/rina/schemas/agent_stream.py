"""Msgspec models for recorded agent event streams (one JSON object per line)."""

from __future__ import annotations

from typing import Any, TypeAlias

import msgspec

from ..model import (
    AgentEvent,
    SessionInit,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInvocationStart,
    ToolResult,
)


class TextStartRecord(msgspec.Struct, tag="text_start", tag_field="type"):
    pass


class TextDeltaRecord(msgspec.Struct, tag="text_delta", tag_field="type"):
    text: str


class TextEndRecord(msgspec.Struct, tag="text_end", tag_field="type"):
    pass


class ToolStartRecord(msgspec.Struct, tag="tool_start", tag_field="type"):
    tool_name: str
    tool_id: str | None = None


class ToolResultRecord(msgspec.Struct, tag="tool_result", tag_field="type"):
    tool_name: str
    output: Any = None
    tool_id: str | None = None


class SessionInitRecord(msgspec.Struct, tag="session_init", tag_field="type"):
    session_id: str


AgentStreamRecord: TypeAlias = (
    TextStartRecord
    | TextDeltaRecord
    | TextEndRecord
    | ToolStartRecord
    | ToolResultRecord
    | SessionInitRecord
)


_DECODER = msgspec.json.Decoder(AgentStreamRecord)
_ENCODER = msgspec.json.Encoder()


def decode_record(line: str | bytes) -> AgentStreamRecord:
    return _DECODER.decode(line)


def _render_output(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    return _ENCODER.encode(output).decode("utf-8")


def to_event(record: AgentStreamRecord) -> AgentEvent:
    if isinstance(record, TextStartRecord):
        return TextStart()
    if isinstance(record, TextDeltaRecord):
        return TextDelta(text=record.text)
    if isinstance(record, TextEndRecord):
        return TextEnd()
    if isinstance(record, ToolStartRecord):
        return ToolInvocationStart(tool_name=record.tool_name, tool_id=record.tool_id)
    if isinstance(record, ToolResultRecord):
        return ToolResult(
            tool_name=record.tool_name,
            output=_render_output(record.output),
            tool_id=record.tool_id,
        )
    return SessionInit(session_id=record.session_id)


def decode_events(text: str) -> list[AgentEvent]:
    """Decode a JSONL document into agent events, skipping blank lines.

    Raises ``msgspec.DecodeError`` (with the 1-based line number) on the
    first malformed line.
    """
    events: list[AgentEvent] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = decode_record(line)
        except msgspec.DecodeError as exc:
            raise msgspec.DecodeError(f"line {lineno}: {exc}") from exc
        events.append(to_event(record))
    return events
