"""Startup checks for the container runtime."""

from __future__ import annotations

from nanoclaw.config import get_settings
from nanoclaw.logger import logger
from nanoclaw.runtime import get_runtime


def ensure_container_system_running() -> None:
    """Verify the container runtime and remove leftover agent containers.

    An unreachable runtime raises RuntimeError (fatal at startup). Cleanup of
    containers left by an unclean shutdown is advisory: failures are logged
    and ignored.
    """
    s = get_settings()
    runtime = get_runtime()
    runtime.ensure_running(timeout=s.container.runtime_timeout)

    prefix = s.container.name_prefix
    timeout = s.container.runtime_timeout
    try:
        own_name = runtime.own_container_name(timeout=s.container.inspect_timeout)
        stale = [n for n in runtime.list_containers(prefix, timeout=timeout) if n != own_name]
        if stale:
            runtime.remove_containers(stale, timeout=timeout)
            logger.info("Cleaned up stale containers", count=len(stale), names=stale)
    except Exception as exc:
        logger.warning("Stale container cleanup failed (non-fatal)", err=str(exc))
