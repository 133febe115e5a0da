"""Message processing pipeline: polls new chat messages and routes them to agents.

Each poll cycle fetches every message newer than the global watermark.
Messages from one chat that arrive together are folded into a single agent
turn: only the last eligible message of a chat in the cycle triggers the
agent, which then sees everything since that group's agent watermark. The
earlier ones just move the global watermark forward.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Protocol

from nanoclaw.config import get_settings
from nanoclaw.container_runner import run_container_agent, write_tasks_snapshot
from nanoclaw.db import get_all_tasks, get_messages_since, get_new_messages, get_tasks_for_group
from nanoclaw.logger import logger
from nanoclaw.router import chunk_text, format_messages, format_outbound
from nanoclaw.types import ContainerInput

if TYPE_CHECKING:
    from nanoclaw.state import RouterState
    from nanoclaw.types import NewMessage, RegisteredGroup


class MessageHandlerDeps(Protocol):
    """Dependencies for message processing."""

    @property
    def state(self) -> RouterState: ...

    async def send_message(self, chat_id: int, text: str) -> None: ...

    async def send_typing(self, chat_id: int) -> None: ...


def _bot_prefix() -> str:
    return format_outbound(get_settings().agent.name, "")


async def run_agent(
    state: RouterState,
    group: RegisteredGroup,
    prompt: str,
    chat_id: int,
) -> str | None:
    """Run one agent turn for *group*; return its text only if the turn succeeded.

    A new session handle is stored even when the turn itself reports an
    error, so the next turn resumes whatever the agent managed to record.
    """
    s = get_settings()
    async with state.folder_lock(group.folder):
        is_main = group.is_main
        tasks = await get_all_tasks() if is_main else await get_tasks_for_group(group.folder)
        write_tasks_snapshot(group.folder, is_main, tasks)

        try:
            output = await run_container_agent(
                group,
                ContainerInput(
                    prompt=prompt,
                    group_folder=group.folder,
                    chat_id=chat_id,
                    is_main=is_main,
                    model=group.model or s.agent.default_model,
                    session_id=state.sessions.get(group.folder),
                ),
            )
        except Exception as exc:
            logger.error("Agent error", group=group.name, err=str(exc))
            return None

        if output.new_session_id:
            state.set_session(group.folder, output.new_session_id)

    if output.status == "error":
        logger.error("Container agent error", group=group.name, error=output.error)
        return None
    return output.result


@contextlib.asynccontextmanager
async def typing_indicator(deps: MessageHandlerDeps, chat_id: int) -> AsyncIterator[None]:
    """Show "typing" in *chat_id* until the block exits, refreshing periodically."""
    interval = get_settings().intervals.typing_refresh

    async def _refresh() -> None:
        while True:
            try:
                await deps.send_typing(chat_id)
            except Exception as exc:
                logger.debug("Failed to send typing indicator", chat_id=chat_id, err=str(exc))
            await asyncio.sleep(interval)

    task = asyncio.create_task(_refresh(), name=f"typing-{chat_id}")
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def send_chunked(deps: MessageHandlerDeps, chat_id: int, text: str) -> None:
    """Send *text* in transport-sized chunks. Failures are logged, not raised."""
    chunks = chunk_text(text)
    try:
        for chunk in chunks:
            await deps.send_message(chat_id, chunk)
    except Exception as exc:
        logger.error("Failed to send message", chat_id=chat_id, err=str(exc))
        return
    logger.info("Message sent", chat_id=chat_id, length=len(text), chunks=len(chunks))


async def process_message(
    deps: MessageHandlerDeps, group: RegisteredGroup, msg: NewMessage
) -> None:
    """Run the agent over *group*'s backlog ending at *msg* and relay the reply.

    Advances the global watermark to *msg*, and the group's agent watermark
    only when the agent produced a reply.
    """
    state = deps.state
    since = state.agent_timestamp(group.folder)
    pending = await get_messages_since(msg.chat_id, since, _bot_prefix())
    if not pending:
        state.advance(msg.timestamp)
        return

    logger.info("Processing message", group=group.name, message_count=len(pending))

    async with typing_indicator(deps, msg.chat_id):
        response = await run_agent(state, group, format_messages(pending), msg.chat_id)

    if response:
        await send_chunked(deps, msg.chat_id, format_outbound(get_settings().agent.name, response))
        state.advance(msg.timestamp, folder=group.folder)
    else:
        state.advance(msg.timestamp)


def _last_eligible_by_chat(
    state: RouterState, messages: list[NewMessage]
) -> dict[int, NewMessage]:
    last: dict[int, NewMessage] = {}
    for msg in messages:
        if msg.content.strip() and state.find_group_by_chat_id(msg.chat_id) is not None:
            last[msg.chat_id] = msg
    return last


async def process_new_messages(deps: MessageHandlerDeps) -> int:
    """Run one poll cycle. Returns the number of messages consumed.

    An exception while handling a message stops the cycle without moving
    the watermark past that message, so it is retried next cycle.
    """
    state = deps.state
    messages = await get_new_messages(state.chat_ids(), state.last_timestamp, _bot_prefix())
    if not messages:
        return 0

    logger.info("New messages", count=len(messages))
    last_by_chat = _last_eligible_by_chat(state, messages)

    consumed = 0
    for msg in messages:
        try:
            group = state.find_group_by_chat_id(msg.chat_id)
            if (
                group is not None
                and last_by_chat.get(msg.chat_id) is msg
                and msg.timestamp > state.agent_timestamp(group.folder)
            ):
                await process_message(deps, group, msg)
            else:
                # Unregistered, empty, or folded into a later turn
                state.advance(msg.timestamp)
        except Exception:
            logger.exception("Error processing message", msg_id=msg.id, chat_id=msg.chat_id)
            break
        consumed += 1
    return consumed


async def start_message_loop(
    deps: MessageHandlerDeps,
    shutting_down: Callable[[], bool],
) -> None:
    """Main polling loop: checks for new messages every message_poll interval."""
    s = get_settings()
    logger.info(f"NanoClaw running (assistant: {s.agent.name})")

    while not shutting_down():
        try:
            await process_new_messages(deps)
        except Exception:
            logger.exception("Error in message loop")
        await asyncio.sleep(s.intervals.message_poll)
