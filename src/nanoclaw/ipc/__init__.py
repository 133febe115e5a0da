"""IPC between agent sandboxes and the host.

Importing this package registers the task handlers with the dispatcher.
"""

from nanoclaw.ipc import _handlers_tasks  # noqa: F401
from nanoclaw.ipc._deps import IpcDeps
from nanoclaw.ipc._handlers_tasks import compute_next_run
from nanoclaw.ipc._registry import dispatch
from nanoclaw.ipc._watcher import process_ipc_cycle, start_ipc_watcher

__all__ = [
    "IpcDeps",
    "compute_next_run",
    "dispatch",
    "process_ipc_cycle",
    "start_ipc_watcher",
]
