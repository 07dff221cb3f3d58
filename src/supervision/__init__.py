"""Worker supervision."""

from .supervisor import (
    Supervisor,
    SupervisionResult,
    SupervisionState,
    TerminationCause,
    POLL_INTERVAL_SECONDS,
    STORE_GRACE_SECONDS,
    CANCEL_GRACE_SECONDS,
)
from .worker import WorkerLauncher, WorkerProcess, SubprocessLauncher, TASK_ID_ENV, TASK_DB_ENV
from .session import SessionCloser

__all__ = [
    "Supervisor",
    "SupervisionResult",
    "SupervisionState",
    "TerminationCause",
    "POLL_INTERVAL_SECONDS",
    "STORE_GRACE_SECONDS",
    "CANCEL_GRACE_SECONDS",
    "WorkerLauncher",
    "WorkerProcess",
    "SubprocessLauncher",
    "TASK_ID_ENV",
    "TASK_DB_ENV",
    "SessionCloser",
]
