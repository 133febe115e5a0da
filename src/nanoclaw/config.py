"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Secrets (the bot token) live in
.env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``TELEGRAM__BOT_TOKEN``). Secrets use SecretStr for masking
in logs.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from nanoclaw.config import get_settings

    s = get_settings()
    print(s.agent.name)
    print(s.container.image)
"""

from __future__ import annotations

import os
import tempfile
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

MAIN_GROUP_FOLDER = "main"
MAX_MESSAGE_LENGTH = 4096

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models; reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class AgentConfig(_StrictModel):
    name: str = "Andy"
    default_model: str = "sonnet"


class TelegramConfig(_StrictModel):
    bot_token: SecretStr | None = None


class ContainerConfig(_StrictModel):
    image: str = "nanoclaw-agent:latest"
    timeout_ms: int = 300000  # 5 minutes
    max_output_size: int = 10485760  # 10MB
    name_prefix: str = "nanoclaw-"
    runtime_timeout: float = 5.0  # seconds, `docker info` probe
    inspect_timeout: float = 3.0  # seconds, own-container lookup

    @field_validator("name_prefix")
    @classmethod
    def require_prefix(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Container name prefix cannot be empty")
        return v


class IntervalsConfig(_StrictModel):
    message_poll: float = 2.0  # seconds
    ipc_poll: float = 1.0  # seconds
    typing_refresh: float = 5.0  # seconds


class SchedulerConfig(_StrictModel):
    timezone: str = ""  # empty → auto-detect


class TranscriptionConfig(_StrictModel):
    model_path: str = "/usr/share/whisper.cpp/models/ggml-base.bin"
    binaries: list[str] = ["whisper-cpp", "whisper"]
    convert_timeout: float = 30.0  # seconds
    transcribe_timeout: float = 60.0  # seconds


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = AgentConfig()
    telegram: TelegramConfig = TelegramConfig()
    container: ContainerConfig = ContainerConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    transcription: TranscriptionConfig = TranscriptionConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def container_timeout(self) -> float:
        return self.container.timeout_ms / 1000

    @cached_property
    def timezone(self) -> str:
        if self.scheduler.timezone:
            return self.scheduler.timezone
        return _detect_timezone()

    @cached_property
    def bot_token(self) -> str | None:
        """Telegram token from settings, falling back to the bare env var."""
        if self.telegram.bot_token is not None:
            return self.telegram.bot_token.get_secret_value() or None
        return os.environ.get("TELEGRAM_BOT_TOKEN") or None

    @cached_property
    def whisper_model_path(self) -> str:
        return os.environ.get("WHISPER_MODEL") or self.transcription.model_path

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def store_dir(self) -> Path:
        return (self.project_root / "store").resolve()

    @cached_property
    def groups_dir(self) -> Path:
        return (self.project_root / "groups").resolve()

    @cached_property
    def scratch_dir(self) -> Path:
        return Path(tempfile.gettempdir()) / "nanoclaw-voice"


# ---------------------------------------------------------------------------
# Timezone detection
# ---------------------------------------------------------------------------


def _detect_timezone() -> str:
    if tz := os.environ.get("TZ"):
        return tz
    try:
        link = os.readlink("/etc/localtime")
        parts = link.split("zoneinfo/")
        if len(parts) > 1:
            return parts[1]
    except OSError:
        pass  # /etc/localtime missing or not a symlink, fall back to UTC
    return "UTC"


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
