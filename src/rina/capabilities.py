from __future__ import annotations

from dataclasses import dataclass

from .settings import RinaSettings

STATUS_PREFIX = "> "


@dataclass(frozen=True, slots=True)
class PlatformCapabilities:
    live_streaming: bool = True
    max_message_length: int = 4000


def capabilities_for(settings: RinaSettings, platform: str) -> PlatformCapabilities:
    entry = settings.platform(platform)
    return PlatformCapabilities(
        live_streaming=entry.live_streaming,
        max_message_length=entry.max_message_length,
    )


def quote_notice(text: str) -> str:
    lines = text.splitlines() or [""]
    return "\n".join(f"{STATUS_PREFIX}{line}" for line in lines)
