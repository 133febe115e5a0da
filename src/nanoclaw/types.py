"""Data models for nanoclaw."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from nanoclaw.config import MAIN_GROUP_FOLDER


@dataclass
class ContainerConfig:
    timeout: float | None = None  # Seconds (default: container.timeout_ms)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContainerConfig:
        env = raw.get("env") or {}
        if not isinstance(env, dict):
            raise TypeError("containerConfig.env must be an object")
        timeout = raw.get("timeout")
        return cls(
            timeout=float(timeout) if timeout is not None else None,
            env={str(k): str(v) for k, v in env.items()},
        )


@dataclass
class RegisteredGroup:
    chat_id: int
    name: str
    folder: str  # Namespace id, unique across groups
    model: str | None = None
    container_config: ContainerConfig | None = None

    @property
    def is_main(self) -> bool:
        return self.folder == MAIN_GROUP_FOLDER

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RegisteredGroup:
        """Build from the registered_groups.json shape (camelCase keys).

        Raises KeyError, TypeError or ValueError on malformed entries.
        """
        if not isinstance(raw, dict):
            raise TypeError(f"group entry must be an object, not {type(raw).__name__}")
        raw_cc = raw.get("containerConfig") or raw.get("container_config")
        if raw_cc and not isinstance(raw_cc, dict):
            raise TypeError("containerConfig must be an object")
        return cls(
            chat_id=int(raw.get("chatId", raw.get("chat_id"))),
            name=raw["name"],
            folder=raw["folder"],
            model=raw.get("model"),
            container_config=ContainerConfig.from_dict(raw_cc) if raw_cc else None,
        )


@dataclass
class NewMessage:
    id: str
    chat_id: int
    sender: str
    sender_name: str
    content: str
    timestamp: str  # ISO-8601, lexicographically ordered
    is_from_me: bool = False


@dataclass
class ScheduledTask:
    id: str
    group_folder: str
    chat_id: int
    prompt: str
    schedule_type: Literal["cron", "interval", "once"]
    schedule_value: str
    context_mode: Literal["group", "isolated"] = "isolated"
    next_run: str | None = None
    last_run: str | None = None
    last_result: str | None = None
    status: Literal["active", "paused", "completed"] = "active"
    created_at: str = ""

    def to_snapshot_dict(self) -> dict[str, str | None]:
        """Serialize to the dict format written into current_tasks.json."""
        return {
            "id": self.id,
            "groupFolder": self.group_folder,
            "prompt": self.prompt,
            "schedule_type": self.schedule_type,
            "schedule_value": self.schedule_value,
            "status": self.status,
            "next_run": self.next_run,
        }


@dataclass
class ContainerInput:
    prompt: str
    group_folder: str
    chat_id: int
    is_main: bool
    model: str
    session_id: str | None = None


@dataclass
class ContainerOutput:
    status: Literal["ok", "error"]
    result: str | None = None
    new_session_id: str | None = None
    error: str | None = None


# --- Channel abstraction ---


@runtime_checkable
class Channel(Protocol):
    name: str

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def owns_chat(self, chat_id: int) -> bool: ...

    async def send_message(self, chat_id: int, text: str) -> None: ...

    async def send_typing(self, chat_id: int) -> None: ...
