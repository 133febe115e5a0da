"""File-based IPC watcher.

Polls ``<data>/ipc/<folder>/{messages,tasks}/*.json`` on a fixed interval.
Each cycle re-arms only after the previous one has fully completed, so
cycles never overlap. Files are always consumed: deleted after processing
(authorized or not), moved to ``errors/`` when processing raises.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from nanoclaw.config import MAIN_GROUP_FOLDER, get_settings
from nanoclaw.ipc._deps import IpcDeps
from nanoclaw.ipc._protocol import (
    UnrecognizedEnvelope,
    parse_ipc_file,
    parse_message_envelope,
    parse_task_envelope,
)
from nanoclaw.ipc._registry import dispatch
from nanoclaw.logger import logger
from nanoclaw.router import format_outbound

ERRORS_DIR = "errors"

_ipc_watcher_running = False


def _move_to_error_dir(ipc_base_dir: Path, source_group: str, file_path: Path) -> None:
    """Move a failed IPC file to the errors/ directory for later inspection."""
    error_dir = ipc_base_dir / ERRORS_DIR
    error_dir.mkdir(parents=True, exist_ok=True)
    file_path.rename(error_dir / f"{source_group}-{file_path.name}")


async def _process_message_file(
    file_path: Path,
    source_group: str,
    is_main: bool,
    ipc_base_dir: Path,
    deps: IpcDeps,
) -> None:
    """Process a single IPC message file."""
    try:
        envelope = parse_message_envelope(parse_ipc_file(file_path))

        if isinstance(envelope, UnrecognizedEnvelope):
            logger.warning(
                "Ignoring invalid IPC message",
                file=file_path.name,
                reason=envelope.reason,
                source_group=source_group,
            )
        else:
            target_group = deps.find_group_by_chat_id(envelope.chat_id)
            if is_main or (target_group and target_group.folder == source_group):
                await deps.send_message(
                    envelope.chat_id,
                    format_outbound(get_settings().agent.name, envelope.text),
                )
                logger.info(
                    "IPC message sent",
                    chat_id=envelope.chat_id,
                    source_group=source_group,
                )
            else:
                logger.warning(
                    "Unauthorized IPC message attempt blocked",
                    chat_id=envelope.chat_id,
                    source_group=source_group,
                )
        file_path.unlink()
    except Exception as exc:
        logger.error(
            "Error processing IPC message",
            file=file_path.name,
            source_group=source_group,
            err=str(exc),
        )
        _move_to_error_dir(ipc_base_dir, source_group, file_path)


async def _process_task_file(
    file_path: Path,
    source_group: str,
    is_main: bool,
    ipc_base_dir: Path,
    deps: IpcDeps,
) -> None:
    """Process a single IPC task file.

    Authorization and validation failures inside the handlers are logged
    there and return normally, so the file is deleted like a success.
    """
    try:
        envelope = parse_task_envelope(parse_ipc_file(file_path))
        await dispatch(envelope, source_group, is_main, deps)
        file_path.unlink()
    except Exception as exc:
        logger.error(
            "Error processing IPC task",
            file=file_path.name,
            source_group=source_group,
            err=str(exc),
        )
        _move_to_error_dir(ipc_base_dir, source_group, file_path)


def _pending_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(f for f in directory.iterdir() if f.suffix == ".json" and f.is_file())


async def process_ipc_cycle(ipc_base_dir: Path, deps: IpcDeps) -> int:
    """Run one full pass over every namespace mailbox.

    Returns the number of files consumed.
    """
    processed = 0
    try:
        group_folders = sorted(
            f.name for f in ipc_base_dir.iterdir() if f.is_dir() and f.name != ERRORS_DIR
        )
    except OSError as exc:
        logger.error("Error reading IPC base directory", err=str(exc))
        return 0

    for source_group in group_folders:
        is_main = source_group == MAIN_GROUP_FOLDER
        messages_dir = ipc_base_dir / source_group / "messages"
        tasks_dir = ipc_base_dir / source_group / "tasks"

        try:
            for file_path in _pending_files(messages_dir):
                await _process_message_file(file_path, source_group, is_main, ipc_base_dir, deps)
                processed += 1
        except OSError as exc:
            logger.error(
                "Error reading IPC messages directory",
                err=str(exc),
                source_group=source_group,
            )

        try:
            for file_path in _pending_files(tasks_dir):
                await _process_task_file(file_path, source_group, is_main, ipc_base_dir, deps)
                processed += 1
        except OSError as exc:
            logger.error(
                "Error reading IPC tasks directory",
                err=str(exc),
                source_group=source_group,
            )

    return processed


async def start_ipc_watcher(deps: IpcDeps) -> None:
    """Poll the IPC mailboxes until cancelled.

    A second call while a watcher is running is a no-op.
    """
    global _ipc_watcher_running
    if _ipc_watcher_running:
        logger.debug("IPC watcher already running, skipping duplicate start")
        return
    _ipc_watcher_running = True

    s = get_settings()
    ipc_base_dir = s.data_dir / "ipc"
    ipc_base_dir.mkdir(parents=True, exist_ok=True)
    logger.info("IPC watcher started", path=str(ipc_base_dir), interval=s.intervals.ipc_poll)

    try:
        while True:
            await process_ipc_cycle(ipc_base_dir, deps)
            await asyncio.sleep(s.intervals.ipc_poll)
    finally:
        _ipc_watcher_running = False
        logger.info("IPC watcher stopped")
