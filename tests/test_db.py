"""Tests for the database layer."""

from __future__ import annotations

import pytest

from nanoclaw.db import (
    _init_test_database,
    create_task,
    delete_task,
    get_all_tasks,
    get_messages_since,
    get_new_messages,
    get_task_by_id,
    get_tasks_for_group,
    store_chat_metadata,
    store_message,
    update_task,
)
from nanoclaw.types import NewMessage, ScheduledTask

BOT_PREFIX = "Andy: "


@pytest.fixture(autouse=True)
async def _setup_db():
    await _init_test_database()


async def _store(
    *,
    id: str,
    chat_id: int = -100,
    content: str = "hi",
    timestamp: str,
    is_from_me: bool = False,
    sender_name: str = "Alice",
) -> None:
    await store_chat_metadata(chat_id, timestamp)
    await store_message(
        NewMessage(
            id=id,
            chat_id=chat_id,
            sender="42",
            sender_name=sender_name,
            content=content,
            timestamp=timestamp,
            is_from_me=is_from_me,
        )
    )


def _task(id: str, *, folder: str = "main", created_at: str = "2024-01-01T00:00:00.000Z"):
    return ScheduledTask(
        id=id,
        group_folder=folder,
        chat_id=-100,
        prompt="do the thing",
        schedule_type="interval",
        schedule_value="60000",
        next_run="2024-01-01T00:01:00.000Z",
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestGetNewMessages:
    async def test_returns_messages_after_timestamp_in_order(self):
        await _store(id="2", timestamp="2024-01-01T00:00:02.000Z", content="second")
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z", content="first")
        await _store(id="3", timestamp="2024-01-01T00:00:03.000Z", content="third")

        msgs = await get_new_messages([-100], "2024-01-01T00:00:01.000Z", BOT_PREFIX)
        assert [m.content for m in msgs] == ["second", "third"]

    async def test_filters_by_chat(self):
        await _store(id="1", chat_id=-100, timestamp="2024-01-01T00:00:01.000Z")
        await _store(id="2", chat_id=-200, timestamp="2024-01-01T00:00:02.000Z")
        await _store(id="3", chat_id=-300, timestamp="2024-01-01T00:00:03.000Z")

        msgs = await get_new_messages([-100, -300], "", BOT_PREFIX)
        assert [m.chat_id for m in msgs] == [-100, -300]

    async def test_excludes_own_and_prefixed_messages(self):
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z", is_from_me=True)
        await _store(id="2", timestamp="2024-01-01T00:00:02.000Z", content="Andy: earlier reply")
        await _store(id="3", timestamp="2024-01-01T00:00:03.000Z", content="Andy is great")

        msgs = await get_new_messages([-100], "", BOT_PREFIX)
        assert [m.id for m in msgs] == ["3"]

    async def test_prefix_wildcards_are_literal(self):
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z", content="A_dy: hello")
        msgs = await get_new_messages([-100], "", "A_dy: ")
        assert msgs == []
        msgs = await get_new_messages([-100], "", "Andy: ")
        assert [m.id for m in msgs] == ["1"]

    async def test_empty_chat_list(self):
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z")
        assert await get_new_messages([], "", BOT_PREFIX) == []


class TestGetMessagesSince:
    async def test_single_chat_strictly_after(self):
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z")
        await _store(id="2", timestamp="2024-01-01T00:00:02.000Z")
        await _store(id="3", chat_id=-200, timestamp="2024-01-01T00:00:03.000Z")

        msgs = await get_messages_since(-100, "2024-01-01T00:00:01.000Z", BOT_PREFIX)
        assert [m.id for m in msgs] == ["2"]

    async def test_empty_since_returns_all(self):
        await _store(id="1", timestamp="2024-01-01T00:00:01.000Z")
        await _store(id="2", timestamp="2024-01-01T00:00:02.000Z")
        msgs = await get_messages_since(-100, "", BOT_PREFIX)
        assert [m.id for m in msgs] == ["1", "2"]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTasks:
    async def test_create_and_get(self):
        await create_task(_task("task-1"))
        task = await get_task_by_id("task-1")
        assert task is not None
        assert task.group_folder == "main"
        assert task.status == "active"
        assert task.context_mode == "isolated"
        assert task.next_run == "2024-01-01T00:01:00.000Z"

    async def test_get_missing_returns_none(self):
        assert await get_task_by_id("nope") is None

    async def test_tasks_for_group_newest_first(self):
        await create_task(_task("a", folder="family", created_at="2024-01-01T00:00:01.000Z"))
        await create_task(_task("b", folder="family", created_at="2024-01-01T00:00:02.000Z"))
        await create_task(_task("c", folder="main"))

        assert [t.id for t in await get_tasks_for_group("family")] == ["b", "a"]
        assert {t.id for t in await get_all_tasks()} == {"a", "b", "c"}

    async def test_update_only_allowed_fields(self):
        await create_task(_task("task-1"))
        await update_task("task-1", {"status": "paused", "group_folder": "evil"})

        task = await get_task_by_id("task-1")
        assert task.status == "paused"
        assert task.group_folder == "main"

    async def test_delete(self):
        await create_task(_task("task-1"))
        await delete_task("task-1")
        assert await get_task_by_id("task-1") is None
