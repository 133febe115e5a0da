"""Tests for the orchestrator's wiring and shutdown path."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nanoclaw.__main__ import main
from nanoclaw.app import NanoclawApp
from nanoclaw.types import RegisteredGroup


@pytest.fixture
def app():
    return NanoclawApp("123:abc")


class TestOutbound:
    async def test_send_without_channel_raises(self, app):
        with pytest.raises(RuntimeError, match="No channel"):
            await app.send_message(-1, "hi")

    async def test_send_typing_without_channel_is_noop(self, app):
        await app.send_typing(-1)

    async def test_send_delegates_to_channel(self, app):
        app.channel = MagicMock()
        app.channel.send_message = AsyncMock()
        await app.send_message(-1, "hi")
        app.channel.send_message.assert_awaited_once_with(-1, "hi")


class TestIpcDeps:
    def test_reads_live_state(self, app):
        deps = app._make_ipc_deps()
        group = RegisteredGroup(chat_id=-5, name="Foo", folder="foo")
        app.state.registered_groups["foo"] = group

        assert deps.registered_groups()["foo"] is group
        assert deps.find_group_by_chat_id(-5) is group
        assert deps.find_group_by_chat_id(-6) is None


class TestShutdown:
    async def test_stops_pollers_once_and_leaves_store_open(self, app):
        app.channel = MagicMock()
        app.channel.disconnect = AsyncMock()
        app._ipc_task = asyncio.create_task(asyncio.sleep(60))
        app.state.flush = MagicMock()

        with patch("nanoclaw.app.close_database", AsyncMock()) as mock_close:
            await app._shutdown("SIGTERM")
            await app._shutdown("SIGTERM")

        assert app._shutting_down
        assert app._ipc_task.cancelled()
        app.channel.disconnect.assert_awaited_once()
        app.state.flush.assert_not_called()
        mock_close.assert_not_awaited()
        assert app._stopped.is_set()

    async def test_run_closes_store_after_message_loop_returns(self, app):
        events: list[str] = []

        async def message_loop(deps, shutting_down):
            # A turn still in flight when the signal arrives
            await app._shutdown("SIGTERM")
            assert shutting_down()
            events.append("turn finished")

        async def close():
            events.append("database closed")

        channel = MagicMock()
        channel.connect = AsyncMock()
        channel.disconnect = AsyncMock()
        app.state.flush = MagicMock(side_effect=lambda: events.append("state flushed"))

        with (
            patch("nanoclaw.app.ensure_container_system_running"),
            patch("nanoclaw.app.init_database", AsyncMock()),
            patch("nanoclaw.app.TelegramChannel", return_value=channel),
            patch("nanoclaw.app.start_ipc_watcher", lambda deps: asyncio.sleep(60)),
            patch("nanoclaw.app.start_message_loop", message_loop),
            patch("nanoclaw.app.close_database", close),
            patch.object(asyncio.get_running_loop(), "add_signal_handler"),
        ):
            await app.run()

        assert events == ["turn finished", "state flushed", "database closed"]
        channel.disconnect.assert_awaited_once()


class TestMain:
    def test_missing_token_exits(self, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1

    def test_runtime_error_exits(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        with (
            patch(
                "nanoclaw.app.ensure_container_system_running",
                side_effect=RuntimeError("docker is not available"),
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()
        assert exc_info.value.code == 1
