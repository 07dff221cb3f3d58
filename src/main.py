"""
Main entry point for the task supervisor.

Provides the ``task-supervisor`` command: supervising a task's worker
process, the worker callbacks (complete/fail), and small task store tools.
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import click
import structlog
from dotenv import load_dotenv

from core import __version__
from core.config import ConfigLoader, SupervisorConfig
from core.errors import SupervisorError, SilentIncompletionError
from core.store import TaskStore, TaskStatus
from supervision import Supervisor, SubprocessLauncher, SessionCloser


def configure_logging() -> None:
    """Configure structured logging from LOG_FORMAT / LOG_LEVEL."""
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    # Rebind to the current stderr on every call
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


class Application:
    """Resolved configuration shared by all commands."""

    def __init__(self, config: SupervisorConfig, database_path: str):
        self.config = config
        self.database_path = database_path

    def open_store(self) -> TaskStore:
        return TaskStore(self.database_path)

    def build_supervisor(self, store: TaskStore) -> Supervisor:
        return Supervisor(
            store,
            SubprocessLauncher(self.config.worker, database_path=self.database_path),
            SessionCloser(self.config.session),
        )


def _run(coro):
    """Run a store coroutine, turning supervisor errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except SupervisorError as e:
        raise click.ClickException(e.message)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="TASK_SUPERVISOR_CONFIG",
    default=None,
    help="Supervisor config file (YAML or JSON).",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False),
    envvar="TASK_SUPERVISOR_DB",
    default=None,
    help="Task store SQLite path.",
)
@click.version_option(version=__version__, prog_name="task-supervisor")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]) -> None:
    """Supervise worker processes executing tasks."""
    configure_logging()
    try:
        config = ConfigLoader().load_supervisor_config(
            config_path,
            required=config_path is not None,
        )
    except SupervisorError as e:
        raise click.ClickException(e.message)

    ctx.obj = Application(config, db_path or config.database_path)


@cli.command()
@click.argument("task_id")
@click.option(
    "--auto-close/--no-auto-close",
    default=None,
    help="Close the multiplexer tab after a successful run.",
)
@click.pass_obj
def supervise(app: Application, task_id: str, auto_close: Optional[bool]) -> None:
    """Run the worker for TASK_ID and wait for the outcome."""
    if auto_close is None:
        auto_close = app.config.session.auto_close

    result = _run(_supervise(app, task_id, auto_close))

    if result.success:
        click.echo(f"Task {task_id} completed")
        return

    click.echo(f"Task {task_id} failed: {result.error.message}", err=True)
    if isinstance(result.error, SilentIncompletionError) and result.error.retry_hint:
        click.echo(f"Hint: {result.error.retry_hint}", err=True)
    sys.exit(1)


async def _supervise(app: Application, task_id: str, auto_close: bool):
    async with app.open_store() as store:
        supervisor = app.build_supervisor(store)

        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.info("shutdown_signal_received", task_id=task_id)
            supervisor.cancel()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)
        try:
            return await supervisor.supervise(task_id, auto_close=auto_close)
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)


@cli.command()
@click.argument("task_id")
@click.pass_obj
def complete(app: Application, task_id: str) -> None:
    """Mark TASK_ID completed (called by the worker)."""

    async def _complete():
        async with app.open_store() as store:
            await store.complete_task(task_id)

    _run(_complete())
    click.echo(f"Task {task_id} marked completed")


@cli.command()
@click.argument("task_id")
@click.option("--error", "message", required=True, help="Failure reason.")
@click.pass_obj
def fail(app: Application, task_id: str, message: str) -> None:
    """Mark TASK_ID failed (called by the worker)."""

    async def _fail():
        async with app.open_store() as store:
            await store.fail_task(task_id, message)

    _run(_fail())
    click.echo(f"Task {task_id} marked failed")


@cli.command()
@click.argument("task_id")
@click.pass_obj
def reset(app: Application, task_id: str) -> None:
    """Return TASK_ID to pending so it can be supervised again."""

    async def _reset():
        async with app.open_store() as store:
            await store.reset_task_status(task_id)

    _run(_reset())
    click.echo(f"Task {task_id} reset to pending")


@cli.command()
@click.argument("task_id")
@click.pass_obj
def create(app: Application, task_id: str) -> None:
    """Create a pending task."""

    async def _create():
        async with app.open_store() as store:
            await store.create_task(task_id)

    _run(_create())
    click.echo(f"Task {task_id} created")


@cli.command()
@click.argument("task_id")
@click.pass_obj
def show(app: Application, task_id: str) -> None:
    """Show one task."""

    async def _show():
        async with app.open_store() as store:
            return await store.get_task(task_id)

    task = _run(_show())
    if task is None:
        raise click.ClickException(f"task {task_id} not found")

    click.echo(f"id:      {task.id}")
    click.echo(f"status:  {task.status.value}")
    if task.error_message:
        click.echo(f"error:   {task.error_message}")


@cli.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in TaskStatus]),
    default=None,
    help="Only show tasks with this status.",
)
@click.pass_obj
def list_tasks(app: Application, status: Optional[str]) -> None:
    """List tasks, oldest first."""

    async def _list():
        async with app.open_store() as store:
            return await store.list_tasks(TaskStatus(status) if status else None)

    for task in _run(_list()):
        line = f"{task.id}\t{task.status.value}"
        if task.error_message:
            line += f"\t{task.error_message}"
        click.echo(line)


@cli.command()
@click.argument("task_id")
@click.pass_obj
def delete(app: Application, task_id: str) -> None:
    """Delete a task record."""

    async def _delete():
        async with app.open_store() as store:
            await store.delete_task(task_id)

    _run(_delete())
    click.echo(f"Task {task_id} deleted")


def main() -> None:
    """Console script entry point."""
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
