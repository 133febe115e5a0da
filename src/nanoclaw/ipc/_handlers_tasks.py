"""IPC handlers for task scheduling and lifecycle (pause/resume/cancel).

Every rejection (bad schedule, unknown task, cross-namespace request) is
logged and returns normally, so the watcher consumes the file as if the
command had succeeded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from nanoclaw.config import get_settings
from nanoclaw.db import create_task, delete_task, get_task_by_id, update_task
from nanoclaw.ipc._deps import IpcDeps
from nanoclaw.ipc._protocol import ScheduleTaskEnvelope, TaskActionEnvelope
from nanoclaw.ipc._registry import register
from nanoclaw.logger import logger
from nanoclaw.types import ScheduledTask
from nanoclaw.utils import generate_task_id, now_iso, to_iso


def compute_next_run(
    schedule_type: str,
    schedule_value: str,
    timezone: str,
    now: datetime | None = None,
) -> str | None:
    """Compute the first run time for a new task, or None if the value is invalid.

    - cron: next fire time strictly after *now*, evaluated in *timezone*.
    - interval: *now* plus a positive integer number of milliseconds.
    - once: the given timestamp verbatim, with no check that it is in the future.
    """
    now = now or datetime.now(UTC)

    if schedule_type == "cron":
        try:
            cron = croniter(schedule_value, now.astimezone(ZoneInfo(timezone)))
            return to_iso(cron.get_next(datetime))
        except (ValueError, KeyError):
            return None

    if schedule_type == "interval":
        try:
            ms = int(schedule_value)
        except ValueError:
            return None
        if ms <= 0:
            return None
        try:
            return to_iso(datetime.fromtimestamp(now.timestamp() + ms / 1000, tz=UTC))
        except (OverflowError, ValueError, OSError):
            # Parseable but past the representable date range
            return None

    if schedule_type == "once":
        try:
            datetime.fromisoformat(schedule_value)
        except ValueError:
            return None
        return schedule_value

    return None


async def _handle_schedule_task(
    envelope: ScheduleTaskEnvelope,
    source_group: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    target_folder = envelope.group_folder

    # Authorization: non-main groups can only schedule for themselves
    if not is_main and target_folder != source_group:
        logger.warning(
            "Unauthorized schedule_task attempt blocked",
            source_group=source_group,
            target_folder=target_folder,
        )
        return

    target_group = deps.registered_groups().get(target_folder)
    if target_group is None:
        logger.warning(
            "Cannot schedule task: target group not registered",
            target_folder=target_folder,
        )
        return

    next_run = compute_next_run(
        envelope.schedule_type,
        envelope.schedule_value,
        get_settings().timezone,
    )
    if next_run is None:
        logger.warning(
            f"Invalid {envelope.schedule_type} value",
            schedule_value=envelope.schedule_value,
            source_group=source_group,
        )
        return

    task_id = generate_task_id()
    await create_task(
        ScheduledTask(
            id=task_id,
            group_folder=target_folder,
            chat_id=target_group.chat_id,
            prompt=envelope.prompt,
            schedule_type=envelope.schedule_type,
            schedule_value=envelope.schedule_value,
            context_mode=envelope.context_mode,
            next_run=next_run,
            status="active",
            created_at=now_iso(),
        )
    )
    logger.info(
        "Task created via IPC",
        task_id=task_id,
        source_group=source_group,
        target_folder=target_folder,
        context_mode=envelope.context_mode,
        next_run=next_run,
    )


async def _authorized_task_action(
    envelope: TaskActionEnvelope,
    source_group: str,
    is_main: bool,
    action_name: str,
    action: Callable[[str], Awaitable[Any]],
) -> None:
    """Fetch a task, verify authorization, and execute an action on it."""
    task_id = envelope.task_id
    task = await get_task_by_id(task_id)
    if task is None:
        logger.warning(
            f"Cannot {action_name} task: not found",
            task_id=task_id,
            source_group=source_group,
        )
        return

    if not is_main and task.group_folder != source_group:
        logger.warning(
            f"Unauthorized task {action_name} attempt",
            task_id=task_id,
            source_group=source_group,
            task_folder=task.group_folder,
        )
        return

    await action(task_id)
    logger.info(
        f"Task {action_name}d via IPC",
        task_id=task_id,
        source_group=source_group,
    )


async def _handle_pause_task(
    envelope: TaskActionEnvelope,
    source_group: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_task_action(
        envelope,
        source_group,
        is_main,
        "pause",
        lambda tid: update_task(tid, {"status": "paused"}),
    )


async def _handle_resume_task(
    envelope: TaskActionEnvelope,
    source_group: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_task_action(
        envelope,
        source_group,
        is_main,
        "resume",
        lambda tid: update_task(tid, {"status": "active"}),
    )


async def _handle_cancel_task(
    envelope: TaskActionEnvelope,
    source_group: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_task_action(envelope, source_group, is_main, "cancel", delete_task)


register("schedule_task", _handle_schedule_task)
register("pause_task", _handle_pause_task)
register("resume_task", _handle_resume_task)
register("cancel_task", _handle_cancel_task)
