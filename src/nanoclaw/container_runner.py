"""Agent invocation bridge: one agent turn in a throwaway container.

The container reads a JSON ``ContainerInput`` on stdin and prints its
``ContainerOutput`` JSON between sentinel markers on stdout. Anything that
goes wrong on the host side (spawn failure, timeout, non-zero exit,
unparseable output) is reported as ``status="error"`` rather than raised.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from nanoclaw.config import get_settings
from nanoclaw.logger import logger
from nanoclaw.runtime import get_runtime
from nanoclaw.types import ContainerInput, ContainerOutput, RegisteredGroup, ScheduledTask
from nanoclaw.utils import run_command, write_json_atomic

OUTPUT_START_MARKER = "---NANOCLAW_OUTPUT_START---"
OUTPUT_END_MARKER = "---NANOCLAW_OUTPUT_END---"


@dataclass
class VolumeMount:
    host_path: str
    container_path: str


def _build_volume_mounts(group: RegisteredGroup) -> list[VolumeMount]:
    """Group workspace, per-group session store and the group's IPC namespace."""
    s = get_settings()

    group_dir = s.groups_dir / group.folder
    group_dir.mkdir(parents=True, exist_ok=True)

    # Per-group sessions directory (isolated from other groups)
    session_dir = s.data_dir / "sessions" / group.folder / ".claude"
    session_dir.mkdir(parents=True, exist_ok=True)

    group_ipc_dir = s.data_dir / "ipc" / group.folder
    for sub in ("messages", "tasks"):
        (group_ipc_dir / sub).mkdir(parents=True, exist_ok=True)

    return [
        VolumeMount(str(group_dir), "/workspace/group"),
        VolumeMount(str(session_dir), "/home/node/.claude"),
        VolumeMount(str(group_ipc_dir), "/workspace/ipc"),
    ]


def _build_container_args(
    group: RegisteredGroup, mounts: list[VolumeMount], container_name: str
) -> list[str]:
    s = get_settings()
    args = [get_runtime().cli, "run", "-i", "--rm", "--name", container_name]
    for m in mounts:
        args.extend(["-v", f"{m.host_path}:{m.container_path}"])
    if group.container_config:
        for key, value in group.container_config.env.items():
            args.extend(["-e", f"{key}={value}"])
    args.append(s.container.image)
    return args


def _input_to_dict(input_data: ContainerInput) -> dict[str, Any]:
    d: dict[str, Any] = {
        "prompt": input_data.prompt,
        "groupFolder": input_data.group_folder,
        "chatId": input_data.chat_id,
        "isMain": input_data.is_main,
        "model": input_data.model,
    }
    if input_data.session_id:
        d["sessionId"] = input_data.session_id
    return d


def _parse_container_output(json_str: str) -> ContainerOutput:
    """Parse the container's JSON result. Raises on malformed payloads."""
    data = json.loads(json_str)
    if not isinstance(data, dict):
        raise ValueError("container output is not a JSON object")
    status = data["status"]
    if status not in ("ok", "error"):
        raise ValueError(f"unknown status {status!r}")
    return ContainerOutput(
        status=status,
        result=data.get("result"),
        new_session_id=data.get("newSessionId"),
        error=data.get("error"),
    )


def _parse_final_output(stdout: str, container_name: str) -> ContainerOutput:
    """Extract the payload between the last marker pair."""
    start_idx = stdout.rfind(OUTPUT_START_MARKER)
    end_idx = stdout.rfind(OUTPUT_END_MARKER)

    if start_idx == -1 or end_idx == -1 or end_idx < start_idx:
        logger.error("Container output markers not found", container=container_name)
        return ContainerOutput(status="error", error="No output markers in container stdout")

    json_str = stdout[start_idx + len(OUTPUT_START_MARKER) : end_idx].strip()
    try:
        return _parse_container_output(json_str)
    except (json.JSONDecodeError, KeyError, ValueError) as exc:
        preview = json_str[:200] + "..." if len(json_str) > 200 else json_str
        logger.error(
            "Invalid container output",
            container=container_name,
            err=str(exc),
            preview=preview,
        )
        return ContainerOutput(status="error", error=f"Failed to parse container output: {exc}")


async def run_container_agent(
    group: RegisteredGroup,
    input_data: ContainerInput,
) -> ContainerOutput:
    """Run one agent turn for *group* and return its output."""
    s = get_settings()
    start_time = time.monotonic()

    container_name = f"{s.container.name_prefix}{group.folder}-{int(time.time() * 1000)}"
    mounts = _build_volume_mounts(group)
    args = _build_container_args(group, mounts, container_name)

    timeout = s.container_timeout
    if group.container_config and group.container_config.timeout:
        timeout = group.container_config.timeout

    logger.info(
        "Spawning container agent",
        group=group.name,
        container=container_name,
        mount_count=len(mounts),
        is_main=input_data.is_main,
    )

    result = await run_command(
        *args,
        timeout_seconds=timeout,
        stdin_data=json.dumps(_input_to_dict(input_data)).encode(),
    )
    duration_ms = (time.monotonic() - start_time) * 1000

    if result.start_error is not None:
        logger.error("Failed to spawn container", container=container_name, err=result.start_error)
        return ContainerOutput(status="error", error=f"Spawn failed: {result.start_error}")

    if result.timed_out:
        logger.error(
            "Container timed out",
            group=group.name,
            container=container_name,
            timeout=timeout,
        )
        # --rm only fires when the container exits on its own
        await run_command(get_runtime().cli, "stop", container_name, timeout_seconds=15)
        return ContainerOutput(status="error", error=f"Container timed out after {timeout}s")

    stdout = result.stdout
    if len(stdout) > s.container.max_output_size:
        logger.warning(
            "Container stdout truncated",
            group=group.name,
            size=len(stdout),
            limit=s.container.max_output_size,
        )
        stdout = stdout[-s.container.max_output_size :]

    if result.returncode != 0:
        logger.error(
            "Container exited with error",
            group=group.name,
            code=result.returncode,
            duration_ms=round(duration_ms),
            stderr=result.stderr[-200:],
        )
        return ContainerOutput(
            status="error",
            error=f"Container exited with code {result.returncode}: {result.stderr[-200:]}",
        )

    output = _parse_final_output(stdout, container_name)
    logger.info(
        "Container completed",
        group=group.name,
        duration_ms=round(duration_ms),
        status=output.status,
        has_result=bool(output.result),
    )
    return output


def write_tasks_snapshot(folder: str, is_main: bool, tasks: list[ScheduledTask]) -> None:
    """Write current_tasks.json to the group's IPC directory.

    Main sees every task; other groups only their own.
    """
    visible = tasks if is_main else [t for t in tasks if t.group_folder == folder]
    write_json_atomic(
        get_settings().data_dir / "ipc" / folder / "current_tasks.json",
        [t.to_snapshot_dict() for t in visible],
        indent=2,
    )
