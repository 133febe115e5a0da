"""Process-wide router state: registered groups, sessions and watermarks.

Constructed at startup from the JSON files in the data directory and
mutated only through methods that also persist. Every write is a whole-file
atomic rewrite:

- ``router_state.json``: ``{"last_timestamp": ..., "last_agent_timestamp": {folder: ts}}``
- ``sessions.json``: ``{folder: session_handle}``
- ``registered_groups.json``: ``{key: {chatId, name, folder, model?, containerConfig?}}``
  (read-only in this process)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from nanoclaw.config import MAIN_GROUP_FOLDER
from nanoclaw.logger import logger
from nanoclaw.types import RegisteredGroup
from nanoclaw.utils import load_json, write_json_atomic

ROUTER_STATE_FILE = "router_state.json"
SESSIONS_FILE = "sessions.json"
REGISTERED_GROUPS_FILE = "registered_groups.json"


class RouterState:
    """Shared mutable state for the message router and IPC watcher."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.last_timestamp: str = ""
        self.last_agent_timestamp: dict[str, str] = {}
        self.sessions: dict[str, str] = {}
        self.registered_groups: dict[str, RegisteredGroup] = {}
        self._folder_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load persisted state. Missing or corrupt files yield empty state."""
        raw_state = load_json(self.data_dir / ROUTER_STATE_FILE, {})
        if not isinstance(raw_state, dict):
            logger.warning("Corrupted router state, resetting")
            raw_state = {}
        self.last_timestamp = str(raw_state.get("last_timestamp") or "")
        agent_ts = raw_state.get("last_agent_timestamp") or {}
        self.last_agent_timestamp = (
            {str(k): str(v) for k, v in agent_ts.items()} if isinstance(agent_ts, dict) else {}
        )

        raw_sessions = load_json(self.data_dir / SESSIONS_FILE, {})
        self.sessions = (
            {str(k): str(v) for k, v in raw_sessions.items()}
            if isinstance(raw_sessions, dict)
            else {}
        )

        raw_groups = load_json(self.data_dir / REGISTERED_GROUPS_FILE, {})
        self.registered_groups = _parse_groups(raw_groups)

        logger.info(
            "State loaded",
            group_count=len(self.registered_groups),
            session_count=len(self.sessions),
        )

    def save(self) -> None:
        """Persist watermarks and sessions."""
        write_json_atomic(
            self.data_dir / ROUTER_STATE_FILE,
            {
                "last_timestamp": self.last_timestamp,
                "last_agent_timestamp": self.last_agent_timestamp,
            },
        )
        write_json_atomic(self.data_dir / SESSIONS_FILE, self.sessions)

    def flush(self) -> None:
        """Final write on shutdown."""
        self.save()
        logger.info("State flushed")

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def find_group_by_chat_id(self, chat_id: int) -> RegisteredGroup | None:
        return next(
            (g for g in self.registered_groups.values() if g.chat_id == chat_id),
            None,
        )

    def chat_ids(self) -> list[int]:
        return [g.chat_id for g in self.registered_groups.values()]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def set_session(self, folder: str, session_id: str) -> None:
        self.sessions[folder] = session_id
        write_json_atomic(self.data_dir / SESSIONS_FILE, self.sessions)

    def folder_lock(self, folder: str) -> asyncio.Lock:
        """Lock serializing read-session → invoke → write-session for *folder*."""
        lock = self._folder_locks.get(folder)
        if lock is None:
            lock = asyncio.Lock()
            self._folder_locks[folder] = lock
        return lock

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    def agent_timestamp(self, folder: str) -> str:
        return self.last_agent_timestamp.get(folder, "")

    def advance(self, timestamp: str, *, folder: str | None = None) -> None:
        """Move the global (and optionally *folder*'s agent) watermark forward and persist.

        Watermarks never move backwards, and the agent watermark is never
        ahead of the global one.
        """
        if timestamp > self.last_timestamp:
            self.last_timestamp = timestamp
        if folder is not None and timestamp > self.agent_timestamp(folder):
            self.last_agent_timestamp[folder] = min(timestamp, self.last_timestamp)
        self.save()


def _parse_groups(raw: object) -> dict[str, RegisteredGroup]:
    """Validate registered_groups.json into a folder-keyed registry."""
    if not isinstance(raw, dict):
        logger.warning("Registered groups file is not an object, ignoring")
        return {}

    groups: dict[str, RegisteredGroup] = {}
    for key, entry in raw.items():
        try:
            group = RegisteredGroup.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping invalid registered group", key=key, err=str(exc))
            continue
        if group.folder in groups:
            logger.warning("Duplicate group folder, keeping first", folder=group.folder)
            continue
        if any(g.chat_id == group.chat_id for g in groups.values()):
            logger.warning("Duplicate group chat id, keeping first", chat_id=group.chat_id)
            continue
        groups[group.folder] = group

    if MAIN_GROUP_FOLDER not in groups:
        logger.warning("No main group registered", folder=MAIN_GROUP_FOLDER)
    return groups
