"""Agent runtime backed by the Claude Code CLI in stream-json mode."""

from __future__ import annotations

import base64
import subprocess
from collections import deque
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

import anyio
import msgspec
from anyio.abc import ByteReceiveStream

from ..errors import AgentProcessError, AgentRuntimeError
from ..logging import get_logger, truncate_for_log
from ..model import (
    AgentEvent,
    ConversationTurn,
    FilePart,
    ImagePart,
    SessionInit,
    TextDelta,
    TextEnd,
    TextPart,
    TextStart,
    ToolInvocationStart,
    ToolResult,
)
from ..runtime import AgentRunOptions, Prompt
from ..schemas import claude as claude_schema
from ..settings import ClaudeSettings
from ..utils.streams import drain_stderr, iter_lines
from ..utils.subprocess import manage_subprocess

logger = get_logger(__name__)

STDERR_TAIL_LINES = 200
TRANSCRIPT_HEADER = "Conversation so far in this chat thread:"
TRANSCRIPT_FOOTER = "Reply to the latest user message below."


@dataclass
class ClaudeStreamState:
    session_id: str | None = None
    saw_partial: bool = False
    block_types: dict[int, str] = field(default_factory=dict)
    tool_names: dict[str, str] = field(default_factory=dict)
    result: claude_schema.StreamResultMessage | None = None


def _normalize_tool_result(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(part for part in parts if part)
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return str(content)


def _translate_partial(
    event: claude_schema.PartialEvent, state: ClaudeStreamState
) -> list[AgentEvent]:
    if isinstance(event, claude_schema.MessageStart):
        state.block_types.clear()
        return []
    if isinstance(event, claude_schema.ContentBlockStart):
        block = event.content_block
        if isinstance(block, claude_schema.StreamTextBlock):
            state.block_types[event.index] = "text"
            return [TextStart()]
        if isinstance(block, claude_schema.StreamToolUseBlock):
            state.block_types[event.index] = "tool_use"
            state.tool_names[block.id] = block.name
            return [ToolInvocationStart(tool_name=block.name, tool_id=block.id)]
        state.block_types[event.index] = "other"
        return []
    if isinstance(event, claude_schema.ContentBlockDelta):
        if state.block_types.get(event.index) != "text":
            return []
        if event.delta.get("type") != "text_delta":
            return []
        text = event.delta.get("text")
        if not isinstance(text, str) or not text:
            return []
        return [TextDelta(text=text)]
    if isinstance(event, claude_schema.ContentBlockStop):
        if state.block_types.pop(event.index, None) == "text":
            return [TextEnd()]
    return []


def translate_claude_message(
    message: claude_schema.StreamJsonMessage, state: ClaudeStreamState
) -> list[AgentEvent]:
    if isinstance(message, claude_schema.StreamSystemMessage):
        if message.subtype != "init" or not message.session_id:
            return []
        if state.session_id is not None:
            return []
        state.session_id = message.session_id
        return [SessionInit(session_id=message.session_id)]

    if isinstance(message, claude_schema.StreamEventMessage):
        if message.parent_tool_use_id:
            return []
        partial = claude_schema.decode_partial_event(message.event)
        if partial is None:
            return []
        state.saw_partial = True
        return _translate_partial(partial, state)

    if isinstance(message, claude_schema.StreamAssistantMessage):
        if message.parent_tool_use_id:
            return []
        out: list[AgentEvent] = []
        for block in message.message.content:
            if isinstance(block, claude_schema.StreamToolUseBlock):
                known = block.id in state.tool_names
                state.tool_names[block.id] = block.name
                if not state.saw_partial and not known:
                    out.append(
                        ToolInvocationStart(tool_name=block.name, tool_id=block.id)
                    )
            elif isinstance(block, claude_schema.StreamTextBlock):
                if not state.saw_partial and block.text:
                    out.extend([TextStart(), TextDelta(text=block.text), TextEnd()])
        return out

    if isinstance(message, claude_schema.StreamUserMessage):
        if message.parent_tool_use_id:
            return []
        content = message.message.content
        if isinstance(content, str):
            return []
        out = []
        for block in content:
            if not isinstance(block, claude_schema.StreamToolResultBlock):
                continue
            out.append(
                ToolResult(
                    tool_name=state.tool_names.get(block.tool_use_id, "tool"),
                    output=_normalize_tool_result(block.content),
                    tool_id=block.tool_use_id,
                )
            )
        return out

    if isinstance(message, claude_schema.StreamResultMessage):
        state.result = message
    return []


def _media_block(
    part: ImagePart | FilePart,
) -> claude_schema.InputImageBlock | claude_schema.InputDocumentBlock:
    if isinstance(part, ImagePart):
        return claude_schema.InputImageBlock(
            source=claude_schema.Base64Source(
                media_type=part.media_type,
                data=base64.b64encode(part.data).decode("ascii"),
            )
        )
    if part.media_type == "text/plain":
        source: claude_schema.Base64Source | claude_schema.PlainTextSource = (
            claude_schema.PlainTextSource(
                media_type="text/plain",
                data=part.data.decode("utf-8", errors="replace"),
            )
        )
    else:
        source = claude_schema.Base64Source(
            media_type=part.media_type,
            data=base64.b64encode(part.data).decode("ascii"),
        )
    return claude_schema.InputDocumentBlock(source=source, title=part.filename)


def _turn_blocks(turn: ConversationTurn) -> list[claude_schema.InputContentBlock]:
    blocks: list[claude_schema.InputContentBlock] = []
    for part in turn.parts():
        if isinstance(part, TextPart):
            if part.text:
                blocks.append(claude_schema.InputTextBlock(text=part.text))
        else:
            blocks.append(_media_block(part))
    return blocks


def _transcript(history: Sequence[ConversationTurn]) -> str:
    lines = [TRANSCRIPT_HEADER, ""]
    for turn in history:
        speaker = "User" if turn.role == "user" else "Assistant"
        text = turn.text() or "(attachment)"
        lines.append(f"{speaker}: {text}")
        lines.append("")
    lines.append(TRANSCRIPT_FOOTER)
    return "\n".join(lines)


def build_input_message(
    prompt: Prompt, *, resuming: bool
) -> claude_schema.InputUserMessage:
    """Render a prompt as one stream-json user message.

    A resumed session already holds the earlier turns, so only the last turn
    is sent. Otherwise earlier turns are rendered into a transcript block and
    their media is forwarded alongside it.
    """
    if isinstance(prompt, str):
        blocks: list[claude_schema.InputContentBlock] = [
            claude_schema.InputTextBlock(text=prompt)
        ]
        return claude_schema.InputUserMessage(
            message=claude_schema.InputMessageBody(content=blocks)
        )

    turns = list(prompt)
    if not turns:
        raise ValueError("prompt has no turns")
    last = turns[-1]
    history = [] if resuming else turns[:-1]

    blocks = []
    if history:
        blocks.append(claude_schema.InputTextBlock(text=_transcript(history)))
        for turn in history:
            if turn.role != "user":
                continue
            blocks.extend(
                _media_block(part)
                for part in turn.parts()
                if isinstance(part, (ImagePart, FilePart))
            )
    blocks.extend(_turn_blocks(last))
    return claude_schema.InputUserMessage(
        message=claude_schema.InputMessageBody(content=blocks)
    )


async def _iter_stdout_events(
    stdout: ByteReceiveStream, state: ClaudeStreamState
) -> AsyncIterator[AgentEvent]:
    async for raw in iter_lines(stdout):
        if not raw.strip():
            continue
        try:
            message = claude_schema.decode_stream_json_line(raw)
        except msgspec.DecodeError as exc:
            logger.debug(
                "claude.line.invalid",
                error=str(exc),
                line=truncate_for_log(raw.decode("utf-8", errors="replace")),
            )
            continue
        for event in translate_claude_message(message, state):
            yield event


@dataclass
class ClaudeCodeRuntime:
    command: str = "claude"
    model: str | None = None
    allowed_tools: Sequence[str] | None = None
    skip_permissions: bool = False
    system_prompt: str | None = None
    stderr_tail_lines: int = STDERR_TAIL_LINES

    @classmethod
    def from_settings(cls, settings: ClaudeSettings) -> ClaudeCodeRuntime:
        return cls(
            command=settings.command,
            model=settings.model,
            allowed_tools=settings.allowed_tools,
            skip_permissions=settings.skip_permissions,
            system_prompt=settings.system_prompt,
        )

    def build_args(self, options: AgentRunOptions) -> list[str]:
        args: list[str] = [
            "-p",
            "--input-format",
            "stream-json",
            "--output-format",
            "stream-json",
            "--include-partial-messages",
            "--verbose",
            "--max-turns",
            str(options.max_steps),
        ]
        if options.resume is not None:
            args.extend(["--resume", options.resume])
        if self.model is not None:
            args.extend(["--model", self.model])
        if self.allowed_tools:
            args.extend(["--allowedTools", ",".join(self.allowed_tools)])
        if self.system_prompt:
            args.extend(["--append-system-prompt", self.system_prompt])
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        return args

    async def stream(
        self, prompt: Prompt, options: AgentRunOptions
    ) -> AsyncIterator[AgentEvent]:
        cmd = [self.command, *self.build_args(options)]
        payload = claude_schema.encode_input_message(
            build_input_message(prompt, resuming=options.resume is not None)
        )
        state = ClaudeStreamState()
        stderr_tail: deque[str] = deque(maxlen=self.stderr_tail_lines)
        logger.info("claude.start", resume=options.resume, max_turns=options.max_steps)

        spawned = False
        try:
            async with manage_subprocess(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            ) as proc:
                spawned = True
                if proc.stdin is None or proc.stdout is None or proc.stderr is None:
                    raise AgentProcessError("failed to spawn claude code process")
                logger.debug("claude.spawned", pid=proc.pid, args=cmd[1:])
                await proc.stdin.send(payload)
                await proc.stdin.aclose()

                closed = False
                async with anyio.create_task_group() as tg:
                    tg.start_soon(drain_stderr, proc.stderr, stderr_tail, "claude")
                    try:
                        async with aclosing(
                            _iter_stdout_events(proc.stdout, state)
                        ) as events:
                            async for event in events:
                                yield event
                    except GeneratorExit:
                        # Closed mid-stream: the group must exit without
                        # re-raising GeneratorExit as a BaseExceptionGroup.
                        closed = True
                        tg.cancel_scope.cancel()
                    else:
                        rc = await proc.wait()
                if closed:
                    logger.info("claude.closed", session_id=state.session_id)
                    return
        except OSError as exc:
            if spawned:
                raise
            raise AgentProcessError(
                f"failed to spawn claude code process: {exc}"
            ) from exc

        logger.info("claude.exit", rc=rc, session_id=state.session_id)
        if rc != 0:
            logger.warning("claude.stderr", tail="\n".join(stderr_tail))
            raise AgentProcessError(f"claude code process exited with code {rc}")
        result = state.result
        if result is not None and result.is_error:
            message = result.result or f"claude run failed ({result.subtype})"
            raise AgentRuntimeError(message)
