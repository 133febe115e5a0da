"""Shared test fixtures for NanoClaw."""

from __future__ import annotations

import pytest

from nanoclaw.types import NewMessage

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "data_dir",
        "store_dir",
        "groups_dir",
        "scratch_dir",
        "container_timeout",
        "timezone",
        "bot_token",
        "whisper_model_path",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (agent, container, etc.) and cached property
    overrides (data_dir, timezone, etc.).

    Usage::

        s = make_settings(data_dir=tmp_path)
        s = make_settings(timezone="America/New_York")
        s = make_settings(intervals=IntervalsConfig(typing_refresh=0.01))
    """
    from nanoclaw.config import (
        AgentConfig,
        ContainerConfig,
        IntervalsConfig,
        LoggingConfig,
        SchedulerConfig,
        Settings,
        TelegramConfig,
        TranscriptionConfig,
    )

    # Separate cached properties from model fields
    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}
    cached.setdefault("timezone", "UTC")

    defaults = {
        "agent": AgentConfig(),
        "telegram": TelegramConfig(),
        "container": ContainerConfig(),
        "intervals": IntervalsConfig(),
        "scheduler": SchedulerConfig(),
        "transcription": TranscriptionConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no config.toml,
    no .env, no file I/O. Directories point into the test's tmp_path.

    Tests that mock ``get_settings()`` at the call site are unaffected; their
    mock takes precedence over the cached singleton.
    """
    safe = make_settings(
        project_root=tmp_path,
        data_dir=tmp_path / "data",
        store_dir=tmp_path / "store",
        groups_dir=tmp_path / "groups",
        scratch_dir=tmp_path / "scratch",
    )
    monkeypatch.setattr("nanoclaw.config._settings", safe)


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Close the aiosqlite connection after all tests complete.

    The connection was created on a function-scoped event loop, so ``stop()``
    puts the close command directly on the worker thread's queue instead of
    awaiting ``close()``.
    """
    yield
    import nanoclaw.db as db

    if db._db is not None:
        db._db.stop()
        if db._db._thread is not None and db._db._thread.is_alive():
            db._db._thread.join(timeout=2)
        db._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_msg():
    """Factory fixture for creating test messages with defaults."""

    def _make(
        *,
        id: str = "1",
        chat_id: int = -100,
        sender: str = "42",
        sender_name: str = "Alice",
        content: str = "hello",
        timestamp: str = "2024-01-01T00:00:00.000Z",
        is_from_me: bool = False,
    ) -> NewMessage:
        return NewMessage(
            id=id,
            chat_id=chat_id,
            sender=sender,
            sender_name=sender_name,
            content=content,
            timestamp=timestamp,
            is_from_me=is_from_me,
        )

    return _make
