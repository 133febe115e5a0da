"""Handler registry for IPC task types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from nanoclaw.ipc._deps import IpcDeps
from nanoclaw.ipc._protocol import TaskEnvelope, UnrecognizedEnvelope
from nanoclaw.logger import logger

# type -> async handler(envelope, source_group, is_main, deps)
HANDLERS: dict[str, Callable[[Any, str, bool, IpcDeps], Awaitable[None]]] = {}


def register(
    type_name: str,
    handler: Callable[[Any, str, bool, IpcDeps], Awaitable[None]],
) -> None:
    """Register a handler for an IPC task type.

    Called at module import time by each handler module. Duplicate
    registrations overwrite (last-write-wins).
    """
    HANDLERS[type_name] = handler


async def dispatch(
    envelope: TaskEnvelope,
    source_group: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    """Dispatch a parsed task envelope to its registered handler."""
    if isinstance(envelope, UnrecognizedEnvelope):
        logger.warning(
            "Ignoring invalid IPC task",
            type=envelope.type,
            reason=envelope.reason,
            source_group=source_group,
        )
        return

    handler = HANDLERS.get(envelope.type)
    if handler is None:
        logger.warning("Unknown IPC task type", type=envelope.type)
        return
    await handler(envelope, source_group, is_main, deps)
