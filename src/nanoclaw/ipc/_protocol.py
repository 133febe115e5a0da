"""IPC envelope definitions: parsing and validation at the mailbox boundary.

Sandboxes drop one JSON object per file into their namespace mailbox:

- ``messages/*.json``: ``{"type": "message", "chatId": <int>, "text": <str>}``
- ``tasks/*.json``: ``{"type": "schedule_task", "prompt", "schedule_type",
  "schedule_value", "groupFolder", "context_mode"?}`` or
  ``{"type": "pause_task" | "resume_task" | "cancel_task", "taskId"}``

Raw dicts are converted into one variant per envelope kind. A payload that
is valid JSON but does not match any kind becomes ``UnrecognizedEnvelope``,
the only variant that is dropped without action. Unreadable files or
non-object JSON raise, which the watcher turns into quarantine.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

SCHEDULE_TYPES = frozenset({"cron", "interval", "once"})
TASK_ACTION_TYPES = frozenset({"pause_task", "resume_task", "cancel_task"})


@dataclass(frozen=True)
class MessageEnvelope:
    chat_id: int
    text: str
    type: Literal["message"] = "message"


@dataclass(frozen=True)
class ScheduleTaskEnvelope:
    prompt: str
    schedule_type: Literal["cron", "interval", "once"]
    schedule_value: str
    group_folder: str
    context_mode: Literal["group", "isolated"] = "isolated"
    type: Literal["schedule_task"] = "schedule_task"


@dataclass(frozen=True)
class TaskActionEnvelope:
    type: Literal["pause_task", "resume_task", "cancel_task"]
    task_id: str


@dataclass(frozen=True)
class UnrecognizedEnvelope:
    type: str
    reason: str


TaskEnvelope = ScheduleTaskEnvelope | TaskActionEnvelope | UnrecognizedEnvelope


def parse_ipc_file(file_path: Path) -> dict[str, Any]:
    """Read and parse a JSON IPC file.

    Raises json.JSONDecodeError or OSError on unreadable input, and
    ValueError if the payload is not a JSON object.
    """
    data = json.loads(file_path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"IPC payload must be a JSON object, got {type(data).__name__}")
    return data


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_message_envelope(data: dict[str, Any]) -> MessageEnvelope | UnrecognizedEnvelope:
    """Validate a messages/ payload."""
    msg_type = str(data.get("type") or "")
    if msg_type != "message":
        return UnrecognizedEnvelope(type=msg_type, reason="not a message envelope")

    chat_id = data.get("chatId")
    if isinstance(chat_id, bool) or not isinstance(chat_id, int) or chat_id == 0:
        return UnrecognizedEnvelope(type=msg_type, reason="missing or invalid chatId")

    text = _non_empty_str(data.get("text"))
    if text is None:
        return UnrecognizedEnvelope(type=msg_type, reason="missing or empty text")

    return MessageEnvelope(chat_id=chat_id, text=text)


def parse_task_envelope(data: dict[str, Any]) -> TaskEnvelope:
    """Validate a tasks/ payload into a task command variant."""
    task_type = str(data.get("type") or "")

    if task_type == "schedule_task":
        prompt = _non_empty_str(data.get("prompt"))
        schedule_type = _non_empty_str(data.get("schedule_type"))
        group_folder = _non_empty_str(data.get("groupFolder"))
        raw_value = data.get("schedule_value")
        # Sandboxes sometimes send intervals as JSON numbers
        if isinstance(raw_value, int) and not isinstance(raw_value, bool):
            raw_value = str(raw_value)
        schedule_value = _non_empty_str(raw_value)

        if not (prompt and schedule_type and schedule_value and group_folder):
            return UnrecognizedEnvelope(type=task_type, reason="missing required fields")
        if schedule_type not in SCHEDULE_TYPES:
            return UnrecognizedEnvelope(
                type=task_type, reason=f"unknown schedule_type {schedule_type!r}"
            )

        context_mode = "group" if data.get("context_mode") == "group" else "isolated"
        return ScheduleTaskEnvelope(
            prompt=prompt,
            schedule_type=schedule_type,  # type: ignore[arg-type]
            schedule_value=schedule_value,
            group_folder=group_folder,
            context_mode=context_mode,
        )

    if task_type in TASK_ACTION_TYPES:
        task_id = _non_empty_str(data.get("taskId"))
        if task_id is None:
            return UnrecognizedEnvelope(type=task_type, reason="missing taskId")
        return TaskActionEnvelope(type=task_type, task_id=task_id)  # type: ignore[arg-type]

    return UnrecognizedEnvelope(type=task_type, reason="unknown task type")
