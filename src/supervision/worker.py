"""Worker process launching."""

import asyncio
import os
from typing import Optional, Protocol

import structlog

from core.config import WorkerConfig
from core.store import Task


logger = structlog.get_logger()

TASK_ID_ENV = "TASK_SUPERVISOR_TASK_ID"
TASK_DB_ENV = "TASK_SUPERVISOR_DB"


class WorkerProcess(Protocol):
    """Handle on a running worker.

    Matches the subset of ``asyncio.subprocess.Process`` the supervisor uses.
    """

    pid: int
    returncode: Optional[int]

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class WorkerLauncher(Protocol):
    """Starts the worker process bound to a task."""

    async def launch(self, task: Task) -> WorkerProcess: ...


class SubprocessLauncher:
    """Launch the configured worker command as a child process.

    The worker inherits stdin/stdout/stderr so the operator can interact
    with it directly. The task id is passed both as the last argument and
    in the environment so the worker can report back to the task store.
    """

    def __init__(self, config: WorkerConfig, database_path: Optional[str] = None):
        self.config = config
        self.database_path = database_path

    def build_argv(self, task: Task) -> list[str]:
        argv = list(self.config.command)
        if self.config.skip_permissions:
            argv.append("--dangerously-skip-permissions")
        argv.extend(self.config.args)
        if self.config.pass_task_id_argument:
            argv.append(task.id)
        return argv

    def build_env(self, task: Task) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.config.env)
        env[TASK_ID_ENV] = task.id
        if self.database_path:
            env[TASK_DB_ENV] = os.path.abspath(self.database_path)
        return env

    async def launch(self, task: Task) -> WorkerProcess:
        argv = self.build_argv(task)
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=self.config.working_directory,
            env=self.build_env(task),
        )
        logger.debug("worker_spawned", task_id=task.id, argv=argv, pid=process.pid)
        return process
