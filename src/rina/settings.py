from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .errors import ConfigError

MEGABYTE = 1024 * 1024

DEFAULT_TOOL_STATUS: dict[str, str] = {
    "webSearch": "Searching the web...",
    "fetchWebpage": "Fetching page...",
    "downloadArxivSource": "Downloading paper source...",
    "listPaperFiles": "Listing paper files...",
    "readPaperFile": "Reading paper...",
    "bash": "Running command...",
    "downloadFile": "Downloading file...",
    "WebSearch": "Searching the web...",
    "WebFetch": "Fetching page...",
    "Task": "Spawning subagent...",
}

IdList = Annotated[tuple[str, ...], NoDecode]


def _split_ids(value: Any) -> Any:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return value


class PlatformSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    live_streaming: bool = True
    max_message_length: int = Field(default=4000, gt=0)


def _default_platforms() -> dict[str, PlatformSettings]:
    return {
        "slack": PlatformSettings(live_streaming=True, max_message_length=40000),
        "telegram": PlatformSettings(live_streaming=False, max_message_length=4000),
    }


class AttachmentSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attachments: int = Field(default=4, ge=0)
    max_image_bytes: int = Field(default=5 * MEGABYTE, gt=0)
    max_file_bytes: int = Field(default=10 * MEGABYTE, gt=0)


class OutboundImageSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_images: int = Field(default=3, ge=0)
    max_image_bytes: int = Field(default=8 * MEGABYTE, gt=0)
    timeout_s: float = Field(default=20.0, gt=0)


class AccessSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_ids: IdList = ()
    chat_ids: IdList = ()
    platform_user_ids: dict[str, IdList] = Field(default_factory=dict)
    platform_chat_ids: dict[str, IdList] = Field(default_factory=dict)

    @field_validator("user_ids", "chat_ids", mode="before")
    @classmethod
    def _validate_ids(cls, value: Any) -> Any:
        return _split_ids(value)

    @field_validator("platform_user_ids", "platform_chat_ids", mode="before")
    @classmethod
    def _validate_platform_ids(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {str(key).lower(): _split_ids(ids) for key, ids in value.items()}


class ClaudeSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str = "claude"
    model: str | None = "sonnet"
    allowed_tools: tuple[str, ...] = ("WebSearch", "WebFetch", "Task")
    skip_permissions: bool = True
    system_prompt: str | None = None

    @field_validator("command", mode="before")
    @classmethod
    def _validate_command(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("command must be a non-empty string")
        return value.strip()


class RinaSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="RINA__",
        env_nested_delimiter="__",
    )

    debug: bool = False
    log_json: bool = False
    max_steps: int = Field(default=20, gt=0)
    retry_delays_s: tuple[float, ...] = (0.4, 1.2, 2.5)
    subscribe_on_mention: bool = True

    platforms: dict[str, PlatformSettings] = Field(default_factory=_default_platforms)
    attachments: AttachmentSettings = Field(default_factory=AttachmentSettings)
    outbound_images: OutboundImageSettings = Field(
        default_factory=OutboundImageSettings
    )
    access: AccessSettings = Field(default_factory=AccessSettings)
    tool_status: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_TOOL_STATUS)
    )
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)

    @field_validator("retry_delays_s", mode="before")
    @classmethod
    def _validate_retry_delays(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("retry_delays_s")
    @classmethod
    def _validate_non_negative(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if any(delay < 0 for delay in value):
            raise ValueError("retry delays must be non-negative")
        return value

    @field_validator("platforms", mode="after")
    @classmethod
    def _merge_platform_defaults(
        cls, value: dict[str, PlatformSettings]
    ) -> dict[str, PlatformSettings]:
        merged = _default_platforms()
        merged.update({key.lower(): entry for key, entry in value.items()})
        return merged

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def platform(self, name: str) -> PlatformSettings:
        entry = self.platforms.get(name.lower())
        if entry is None:
            return PlatformSettings()
        return entry


def load_settings(path: str | Path | None = None) -> RinaSettings:
    if path is None:
        try:
            return RinaSettings()
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc

    cfg_path = Path(path).expanduser()
    if not cfg_path.is_file():
        raise ConfigError(f"Missing config file {cfg_path}.")
    cfg = dict(RinaSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "RinaSettingsBound",
        (RinaSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
