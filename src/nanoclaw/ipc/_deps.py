"""Dependencies the IPC watcher and handlers need from the host."""

from __future__ import annotations

from typing import Protocol

from nanoclaw.types import RegisteredGroup


class IpcDeps(Protocol):
    """Dependencies for IPC processing."""

    async def send_message(self, chat_id: int, text: str) -> None: ...

    def registered_groups(self) -> dict[str, RegisteredGroup]: ...

    def find_group_by_chat_id(self, chat_id: int) -> RegisteredGroup | None: ...
