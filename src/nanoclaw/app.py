"""Main orchestrator: wires the channel, router, IPC watcher and state."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Any

from nanoclaw.channels.telegram import TelegramChannel
from nanoclaw.config import get_settings
from nanoclaw.db import close_database, init_database, store_chat_metadata, store_message
from nanoclaw.ipc import start_ipc_watcher
from nanoclaw.logger import logger
from nanoclaw.message_handler import start_message_loop
from nanoclaw.state import RouterState
from nanoclaw.system_checks import ensure_container_system_running
from nanoclaw.types import Channel, NewMessage, RegisteredGroup
from nanoclaw.utils import create_background_task


class NanoclawApp:
    """Main application class: owns runtime state and wires subsystems."""

    def __init__(self, token: str) -> None:
        self._token = token
        self.state = RouterState(get_settings().data_dir)
        self.channel: Channel | None = None
        self._ipc_task: asyncio.Task[None] | None = None
        self._shutting_down = False
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # MessageHandlerDeps
    # ------------------------------------------------------------------

    async def send_message(self, chat_id: int, text: str) -> None:
        if self.channel is None:
            raise RuntimeError("No channel connected")
        await self.channel.send_message(chat_id, text)

    async def send_typing(self, chat_id: int) -> None:
        if self.channel is not None:
            await self.channel.send_typing(chat_id)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _on_inbound(self, msg: NewMessage) -> None:
        await store_message(msg)

    async def _on_chat_metadata(self, chat_id: int, timestamp: str, name: str | None) -> None:
        await store_chat_metadata(chat_id, timestamp, name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _shutdown(self, sig_name: str) -> None:
        """Stop the IPC watcher and the channel, and ask the message loop to exit.

        State flush and database close happen in ``run()`` once the message
        loop has returned, so an in-flight turn can still reach the store.
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        if self._ipc_task is not None:
            self._ipc_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ipc_task
        if self.channel is not None:
            await self.channel.disconnect()
        self._stopped.set()

    async def run(self) -> None:
        """Main entry point: startup sequence, then the message loop."""
        ensure_container_system_running()
        await init_database()
        logger.info("Database initialized")
        self.state.load()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        telegram = TelegramChannel(
            token=self._token,
            on_message=self._on_inbound,
            on_chat_metadata=self._on_chat_metadata,
            find_group=self.state.find_group_by_chat_id,
        )
        self.channel = telegram
        await telegram.connect()

        self._ipc_task = create_background_task(
            start_ipc_watcher(self._make_ipc_deps()), name="ipc-watcher"
        )
        await start_message_loop(self, lambda: self._shutting_down)
        await self._stopped.wait()

        self.state.flush()
        await close_database()
        logger.info("Shutdown complete")

    # ------------------------------------------------------------------
    # Dependency adapters
    # ------------------------------------------------------------------

    def _make_ipc_deps(self) -> Any:
        app = self

        class _Deps:
            async def send_message(self, chat_id: int, text: str) -> None:
                await app.send_message(chat_id, text)

            def registered_groups(self) -> dict[str, RegisteredGroup]:
                return app.state.registered_groups

            def find_group_by_chat_id(self, chat_id: int) -> RegisteredGroup | None:
                return app.state.find_group_by_chat_id(chat_id)

        return _Deps()
