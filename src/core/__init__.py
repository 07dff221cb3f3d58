"""Core supervisor components."""

__version__ = "0.1.0"

from .config import ConfigLoader, SupervisorConfig, WorkerConfig, SessionConfig
from .store import TaskStore, Task, TaskStatus
from .errors import (
    SupervisorError,
    ConfigError,
    StoreError,
    TaskError,
    TaskNotFoundError,
    LaunchError,
    WorkerExitError,
    SupervisionInterrupted,
    TaskFailedError,
    SilentIncompletionError,
)

__all__ = [
    "ConfigLoader",
    "SupervisorConfig",
    "WorkerConfig",
    "SessionConfig",
    "TaskStore",
    "Task",
    "TaskStatus",
    "SupervisorError",
    "ConfigError",
    "StoreError",
    "TaskError",
    "TaskNotFoundError",
    "LaunchError",
    "WorkerExitError",
    "SupervisionInterrupted",
    "TaskFailedError",
    "SilentIncompletionError",
]
