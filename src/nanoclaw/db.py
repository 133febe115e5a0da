"""SQLite state store.

All functions are async using aiosqlite. Module-level connection,
initialized by init_database().
"""

from __future__ import annotations

from typing import Any

import aiosqlite

from nanoclaw.config import get_settings
from nanoclaw.types import NewMessage, ScheduledTask

_db: aiosqlite.Connection | None = None

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS chats (
    chat_id INTEGER PRIMARY KEY,
    name TEXT,
    last_message_time TEXT
);
CREATE TABLE IF NOT EXISTS messages (
    id TEXT,
    chat_id INTEGER,
    sender TEXT,
    sender_name TEXT,
    content TEXT,
    timestamp TEXT,
    is_from_me INTEGER,
    PRIMARY KEY (id, chat_id),
    FOREIGN KEY (chat_id) REFERENCES chats(chat_id)
);
CREATE INDEX IF NOT EXISTS idx_timestamp ON messages(timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_by_chat ON messages(chat_id, timestamp);

CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    group_folder TEXT NOT NULL,
    chat_id INTEGER NOT NULL,
    prompt TEXT NOT NULL,
    schedule_type TEXT NOT NULL,
    schedule_value TEXT NOT NULL,
    context_mode TEXT DEFAULT 'isolated',
    next_run TEXT,
    last_run TEXT,
    last_result TEXT,
    status TEXT DEFAULT 'active',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_next_run ON scheduled_tasks(next_run);
CREATE INDEX IF NOT EXISTS idx_status ON scheduled_tasks(status);

CREATE TABLE IF NOT EXISTS task_run_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    run_at TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    status TEXT NOT NULL,
    result TEXT,
    error TEXT,
    FOREIGN KEY (task_id) REFERENCES scheduled_tasks(id)
);
CREATE INDEX IF NOT EXISTS idx_task_run_logs ON task_run_logs(task_id, run_at);
"""


def _get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


async def init_database() -> None:
    """Initialize the database connection and schema."""
    global _db
    db_path = get_settings().store_dir / "messages.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row
    await _db.executescript(_SCHEMA)
    await _db.commit()


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _init_test_database() -> None:
    """Create an in-memory database for tests."""
    global _db
    if _db is not None:
        await _db.close()
    _db = await aiosqlite.connect(":memory:")
    _db.row_factory = aiosqlite.Row
    await _db.executescript(_SCHEMA)
    await _db.commit()


# --- Chat metadata ---


async def store_chat_metadata(chat_id: int, timestamp: str, name: str | None = None) -> None:
    """Store chat metadata only (no message content)."""
    db = _get_db()
    await db.execute(
        """
        INSERT INTO chats (chat_id, name, last_message_time) VALUES (?, ?, ?)
        ON CONFLICT(chat_id) DO UPDATE SET
            name = COALESCE(excluded.name, name),
            last_message_time = MAX(last_message_time, excluded.last_message_time)
        """,
        (chat_id, name, timestamp),
    )
    await db.commit()


# --- Messages ---


async def store_message(msg: NewMessage) -> None:
    """Store a message with full content."""
    db = _get_db()
    await db.execute(
        "INSERT OR REPLACE INTO messages "
        "(id, chat_id, sender, sender_name, content, timestamp, is_from_me) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            msg.id,
            msg.chat_id,
            msg.sender,
            msg.sender_name,
            msg.content,
            msg.timestamp,
            1 if msg.is_from_me else 0,
        ),
    )
    await db.commit()


async def get_new_messages(chat_ids: list[int], since: str, bot_prefix: str) -> list[NewMessage]:
    """Get messages across chats newer than *since*, oldest first.

    Excludes the assistant's own messages (``is_from_me`` or content starting
    with ``bot_prefix``).
    """
    if not chat_ids:
        return []

    db = _get_db()
    placeholders = ",".join("?" for _ in chat_ids)
    sql = f"""
        SELECT id, chat_id, sender, sender_name, content, timestamp, is_from_me
        FROM messages
        WHERE timestamp > ? AND chat_id IN ({placeholders})
              AND is_from_me = 0 AND content NOT LIKE ? ESCAPE '\\'
        ORDER BY timestamp, rowid
    """
    cursor = await db.execute(sql, [since, *chat_ids, _like_prefix(bot_prefix)])
    rows = await cursor.fetchall()
    return [_row_to_message(row) for row in rows]


async def get_messages_since(chat_id: int, since: str, bot_prefix: str) -> list[NewMessage]:
    """Get messages for a single chat newer than *since*, oldest first."""
    db = _get_db()
    sql = """
        SELECT id, chat_id, sender, sender_name, content, timestamp, is_from_me
        FROM messages
        WHERE chat_id = ? AND timestamp > ?
              AND is_from_me = 0 AND content NOT LIKE ? ESCAPE '\\'
        ORDER BY timestamp, rowid
    """
    cursor = await db.execute(sql, (chat_id, since, _like_prefix(bot_prefix)))
    rows = await cursor.fetchall()
    return [_row_to_message(row) for row in rows]


# --- Scheduled tasks ---


async def create_task(task: ScheduledTask) -> None:
    """Create a new scheduled task."""
    db = _get_db()
    await db.execute(
        """
        INSERT INTO scheduled_tasks
            (id, group_folder, chat_id, prompt, schedule_type,
             schedule_value, context_mode, next_run, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            task.id,
            task.group_folder,
            task.chat_id,
            task.prompt,
            task.schedule_type,
            task.schedule_value,
            task.context_mode,
            task.next_run,
            task.status,
            task.created_at,
        ),
    )
    await db.commit()


async def get_task_by_id(task_id: str) -> ScheduledTask | None:
    """Get a task by its ID."""
    db = _get_db()
    cursor = await db.execute("SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_task(row)


async def get_tasks_for_group(group_folder: str) -> list[ScheduledTask]:
    """Get all tasks for a group, newest first."""
    db = _get_db()
    cursor = await db.execute(
        "SELECT * FROM scheduled_tasks WHERE group_folder = ? ORDER BY created_at DESC",
        (group_folder,),
    )
    rows = await cursor.fetchall()
    return [_row_to_task(row) for row in rows]


async def get_all_tasks() -> list[ScheduledTask]:
    """Get all tasks, newest first."""
    db = _get_db()
    cursor = await db.execute("SELECT * FROM scheduled_tasks ORDER BY created_at DESC")
    rows = await cursor.fetchall()
    return [_row_to_task(row) for row in rows]


async def update_task(task_id: str, updates: dict[str, Any]) -> None:
    """Update specific fields of a task."""
    allowed = {"prompt", "schedule_type", "schedule_value", "next_run", "status"}
    fields: list[str] = []
    values: list[Any] = []

    for key, value in updates.items():
        if key in allowed:
            fields.append(f"{key} = ?")
            values.append(value)

    if not fields:
        return

    values.append(task_id)
    db = _get_db()
    await db.execute(
        f"UPDATE scheduled_tasks SET {', '.join(fields)} WHERE id = ?",
        values,
    )
    await db.commit()


async def delete_task(task_id: str) -> None:
    """Delete a task and its run logs."""
    db = _get_db()
    await db.execute("DELETE FROM task_run_logs WHERE task_id = ?", (task_id,))
    await db.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
    await db.commit()


# --- Helpers ---


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


def _row_to_message(row: aiosqlite.Row) -> NewMessage:
    return NewMessage(
        id=row["id"],
        chat_id=row["chat_id"],
        sender=row["sender"],
        sender_name=row["sender_name"],
        content=row["content"],
        timestamp=row["timestamp"],
        is_from_me=bool(row["is_from_me"]),
    )


def _row_to_task(row: aiosqlite.Row) -> ScheduledTask:
    return ScheduledTask(
        id=row["id"],
        group_folder=row["group_folder"],
        chat_id=row["chat_id"],
        prompt=row["prompt"],
        schedule_type=row["schedule_type"],
        schedule_value=row["schedule_value"],
        context_mode=row["context_mode"] or "isolated",
        next_run=row["next_run"],
        last_run=row["last_run"],
        last_result=row["last_result"],
        status=row["status"],
        created_at=row["created_at"],
    )
