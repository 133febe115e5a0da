"""Container runtime CLI wrapper (Docker).

Provides the probes used at startup: daemon reachability, listing
containers by name prefix, identifying the host process's own container
and force-removing leftovers.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass

from nanoclaw.logger import logger


@dataclass(frozen=True)
class ContainerRuntime:
    """Docker-compatible container CLI."""

    cli: str = "docker"

    def ensure_running(self, timeout: float = 5.0) -> None:
        """Verify the container runtime is reachable; raise RuntimeError otherwise."""
        try:
            subprocess.run(
                [self.cli, "info"],
                capture_output=True,
                check=True,
                timeout=timeout,
            )
            logger.debug("Container runtime is running", cli=self.cli)
        except (
            subprocess.CalledProcessError,
            subprocess.TimeoutExpired,
            FileNotFoundError,
        ) as exc:
            raise RuntimeError(
                f"{self.cli} is not available. Ensure the {self.cli} daemon is running."
            ) from exc

    def list_containers(self, prefix: str, timeout: float = 5.0) -> list[str]:
        """Return names of containers (any state) whose name starts with *prefix*."""
        result = subprocess.run(
            [self.cli, "ps", "-a", "--filter", f"name={prefix}", "--format", "{{.Names}}"],
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        names = (line.strip() for line in result.stdout.splitlines())
        # `--filter name=` is a substring match; enforce the prefix here
        return [n for n in names if n.startswith(prefix)]

    def own_container_name(self, timeout: float = 3.0) -> str:
        """Name of the container this process runs in, or "" if unknown.

        Best-effort: inspects ``$HOSTNAME``, which Docker sets to the
        container id.
        """
        hostname = os.environ.get("HOSTNAME", "").strip()
        if not hostname:
            return ""
        try:
            result = subprocess.run(
                [self.cli, "inspect", hostname, "--format", "{{.Name}}"],
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
        except (
            subprocess.CalledProcessError,
            subprocess.TimeoutExpired,
            FileNotFoundError,
        ):
            return ""
        return result.stdout.strip().lstrip("/")

    def remove_containers(self, names: list[str], timeout: float = 5.0) -> None:
        """Force-remove the named containers."""
        if not names:
            return
        subprocess.run(
            [self.cli, "rm", "-f", *names],
            capture_output=True,
            check=True,
            timeout=timeout,
        )


_runtime: ContainerRuntime | None = None


def get_runtime() -> ContainerRuntime:
    """Lazy singleton. ``CONTAINER_RUNTIME`` overrides the CLI name."""
    global _runtime  # noqa: PLW0603
    if _runtime is None:
        _runtime = ContainerRuntime(cli=os.environ.get("CONTAINER_RUNTIME", "docker") or "docker")
        logger.info("Container runtime selected", cli=_runtime.cli)
    return _runtime
