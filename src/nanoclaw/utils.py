"""Shared utility functions.

Small helpers used across multiple modules: atomic JSON writes, timestamped
ID generation, async subprocess execution and background task logging.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from asyncio.subprocess import PIPE
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from nanoclaw.logger import logger


def write_json_atomic(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write JSON data to a file using atomic rename (tmp → final).

    Readers either see the old content or the complete new content. Creates
    parent directories if they don't exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(data, indent=indent))
    tmp.rename(path)


def load_json(path: Path, default: Any) -> Any:
    """Read a JSON file, returning *default* if it is missing or unreadable."""
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to read JSON state file", path=str(path), err=str(exc))
        return default


def to_iso(dt: datetime) -> str:
    """Render an aware datetime as UTC ISO-8601 with milliseconds and a ``Z`` suffix.

    Timestamps in this shape compare correctly as plain strings.
    """
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(datetime.now(UTC))


def generate_task_id() -> str:
    """Generate a task ID: ``task-{ms_timestamp}-{random suffix}``.

    Uniqueness is probabilistic, not guaranteed.
    """
    ms = int(datetime.now(UTC).timestamp() * 1000)
    return f"task-{ms}-{uuid.uuid4().hex[:8]}"


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them."""
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    """Callback attached to background tasks; logs unhandled exceptions."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )


@dataclass
class CommandResult:
    """Result of an async subprocess execution."""

    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    start_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.start_error is None


async def run_command(
    *args: str,
    timeout_seconds: float,
    stdin_data: bytes | None = None,
) -> CommandResult:
    """Run an external program without a shell, bounded by *timeout_seconds*.

    Unlike subprocess.run, this does not block the event loop. The process is
    killed on timeout.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=PIPE if stdin_data is not None else None,
            stdout=PIPE,
            stderr=PIPE,
        )
    except OSError as exc:
        return CommandResult(returncode=None, stdout="", stderr="", start_error=str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(stdin_data),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        with contextlib.suppress(Exception):
            await process.communicate()
        return CommandResult(returncode=None, stdout="", stderr="", timed_out=True)

    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
