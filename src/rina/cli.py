from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio
import msgspec
import typer
from rich.console import Console
from rich.rule import Rule

from . import __version__
from .capabilities import PlatformCapabilities, capabilities_for
from .delivery import RetryingDelivery
from .dispatcher import DispatchResult, ResponseDispatcher
from .errors import ConfigError
from .logging import get_logger, setup_logging
from .model import AgentEvent
from .runners.mock import ScriptedRuntime
from .runtime import AgentRunOptions, iter_agent_events
from .schemas.agent_stream import decode_events
from .segment import split_long_text
from .settings import RinaSettings, load_settings
from .transport import PostContent, PostPayload, SentMessage, StoredMessage

logger = get_logger(__name__)


@dataclass
class ConsoleThread:
    """A thread that renders every post to a rich console."""

    console: Console
    platform: str = "console"
    id: str = "console"
    channel_id: str = "console"
    is_dm: bool = False
    posts: int = 0
    state: dict[str, Any] = field(default_factory=dict)

    async def post(self, content: PostContent) -> SentMessage | None:
        self.posts += 1
        self.console.print(Rule(f"post {self.posts}"))
        if isinstance(content, str):
            self._print(content)
        elif isinstance(content, PostPayload):
            if content.markdown:
                self._print(content.markdown)
            for upload in content.files:
                self._print(
                    f"[file] {upload.filename} ({upload.mime_type}, "
                    f"{len(upload.data)} bytes)"
                )
        else:
            async for fragment in content:
                self.console.print(
                    fragment, end="", markup=False, highlight=False, soft_wrap=True
                )
            self.console.print()
        return SentMessage(id=str(self.posts))

    def _print(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    async def all_messages(self) -> AsyncIterator[StoredMessage]:
        for message in ():
            yield message

    async def get_state(self) -> dict[str, Any] | None:
        return dict(self.state) or None

    async def set_state(self, state: dict[str, Any], *, replace: bool = False) -> None:
        if replace:
            self.state = dict(state)
        else:
            self.state.update(state)

    async def subscribe(self) -> None:
        return None


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


def _load_settings_or_exit(config_path: Path | None) -> RinaSettings:
    try:
        return load_settings(config_path)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _read_events_or_exit(path: Path) -> list[AgentEvent]:
    try:
        return decode_events(path.read_text(encoding="utf-8"))
    except (OSError, msgspec.DecodeError) as exc:
        typer.echo(f"error: cannot read events from {path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc


async def _replay(
    events: list[AgentEvent],
    *,
    thread: ConsoleThread,
    capabilities: PlatformCapabilities,
    settings: RinaSettings,
) -> DispatchResult:
    runtime = ScriptedRuntime(events)
    dispatcher = ResponseDispatcher(
        thread=thread,
        capabilities=capabilities,
        delivery=RetryingDelivery(delays=settings.retry_delays_s),
        tool_status=settings.tool_status,
    )
    options = AgentRunOptions(max_steps=settings.max_steps)
    return await dispatcher.run(iter_agent_events(runtime, "replay", options))


_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="Path to a rina TOML config file.",
)


def replay(
    path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="JSONL file of recorded agent events.",
    ),
    platform: str = typer.Option(
        "slack", "--platform", help="Platform whose delivery rules to apply."
    ),
    live: bool | None = typer.Option(
        None,
        "--live/--buffered",
        help="Override the platform's live streaming support.",
    ),
    max_length: int | None = typer.Option(
        None, "--max-length", min=1, help="Override the platform message limit."
    ),
    config_path: Path | None = _CONFIG_OPTION,
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Log debug events."),
) -> None:
    """Replay a recorded agent event stream into the console."""
    setup_logging(debug=debug)
    settings = _load_settings_or_exit(config_path)
    events = _read_events_or_exit(path)
    base = capabilities_for(settings, platform)
    capabilities = PlatformCapabilities(
        live_streaming=base.live_streaming if live is None else live,
        max_message_length=(
            base.max_message_length if max_length is None else max_length
        ),
    )
    console = Console()
    thread = ConsoleThread(console=console, platform=platform)
    logger.debug(
        "replay.start",
        events=len(events),
        platform=platform,
        live=capabilities.live_streaming,
    )
    result = anyio.run(
        lambda: _replay(
            events, thread=thread, capabilities=capabilities, settings=settings
        )
    )
    console.print(Rule("done"))
    console.print(
        f"posts: {thread.posts}  segments: {result.segments}  "
        f"notices: {result.notices}",
        markup=False,
        highlight=False,
    )
    console.print(f"session: {result.session_id or '-'}", markup=False, highlight=False)


def split(
    path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Text file to split."
    ),
    max_length: int = typer.Option(
        4000, "--max-length", min=1, help="Maximum characters per chunk."
    ),
) -> None:
    """Print the chunks a long reply would be posted as."""
    text = path.read_text(encoding="utf-8")
    console = Console()
    chunks = split_long_text(text, max_length)
    for index, chunk in enumerate(chunks, start=1):
        console.print(Rule(f"chunk {index}/{len(chunks)} ({len(chunk)} chars)"))
        console.print(chunk, markup=False, highlight=False, soft_wrap=True)


def app_main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Rina developer tools."""


def create_app() -> typer.Typer:
    app = typer.Typer(add_completion=False, no_args_is_help=True)
    app.callback()(app_main)
    app.command(name="replay")(replay)
    app.command(name="split")(split)
    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
