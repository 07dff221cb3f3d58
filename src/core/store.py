"""Persistent task store using SQLite."""

import asyncio
import time
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from enum import Enum

import aiosqlite

from .errors import StoreError, TaskNotFoundError


class TaskStatus(Enum):
    """Task execution status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass
class Task:
    """Task record."""
    id: str
    status: TaskStatus
    error_message: str
    created_at: float
    started_at: Optional[float]
    completed_at: Optional[float]


class TaskStore:
    """Durable record of task identity, status, timing and error metadata.

    The store is shared with worker processes (they mark their own task
    completed or failed), so every read goes to the database.
    """

    def __init__(self, db_path: str = "./data/tasks.db"):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            self._db = await aiosqlite.connect(str(self.db_path), timeout=10.0)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.executescript("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL DEFAULT 'pending',
                    error_message TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    started_at REAL,
                    completed_at REAL
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
            """)
            await self._db.commit()
        except aiosqlite.Error as e:
            await self.close()
            raise StoreError(f"failed to open task store {self.db_path}: {e}") from e

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "TaskStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ==================== Reads ====================

    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by ID, or None if it does not exist."""
        try:
            cursor = await self._db.execute(
                "SELECT * FROM tasks WHERE id = ?",
                (task_id,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"failed to get task: {e}", task_id=task_id) from e

        if not row:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """List tasks, oldest first, optionally filtered by status."""
        try:
            if status is None:
                cursor = await self._db.execute(
                    "SELECT * FROM tasks ORDER BY created_at ASC, id ASC"
                )
            else:
                cursor = await self._db.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY created_at ASC, id ASC",
                    (status.value,)
                )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"failed to list tasks: {e}") from e
        return [self._row_to_task(row) for row in rows]

    def _row_to_task(self, row) -> Task:
        try:
            status = TaskStatus(row["status"])
        except ValueError:
            raise StoreError(
                f"task {row['id']} has unrecognized status {row['status']!r}",
                task_id=row["id"],
            )
        return Task(
            id=row["id"],
            status=status,
            error_message=row["error_message"] or "",
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    # ==================== Transitions ====================

    async def create_task(self, task_id: str) -> Task:
        """Create a new pending task."""
        async with self._lock:
            now = time.time()
            try:
                await self._db.execute("""
                    INSERT INTO tasks (id, status, error_message, created_at)
                    VALUES (?, ?, '', ?)
                """, (task_id, TaskStatus.PENDING.value, now))
                await self._db.commit()
            except aiosqlite.IntegrityError as e:
                raise StoreError(f"task {task_id} already exists", task_id=task_id) from e
            except aiosqlite.Error as e:
                raise StoreError(f"failed to create task: {e}", task_id=task_id) from e

            return Task(
                id=task_id,
                status=TaskStatus.PENDING,
                error_message="",
                created_at=now,
                started_at=None,
                completed_at=None,
            )

    async def start_task(self, task_id: str) -> None:
        """Mark a task as processing."""
        await self._update(
            task_id,
            "UPDATE tasks SET status = ?, started_at = ?, completed_at = NULL, "
            "error_message = '' WHERE id = ?",
            (TaskStatus.PROCESSING.value, time.time(), task_id),
        )

    async def complete_task(self, task_id: str) -> None:
        """Mark a task as completed."""
        await self._update(
            task_id,
            "UPDATE tasks SET status = ?, error_message = '', completed_at = ? WHERE id = ?",
            (TaskStatus.COMPLETED.value, time.time(), task_id),
        )

    async def fail_task(self, task_id: str, message: str) -> None:
        """Mark a task as failed. Later calls overwrite the message."""
        await self._update(
            task_id,
            "UPDATE tasks SET status = ?, error_message = ?, completed_at = ? WHERE id = ?",
            (TaskStatus.FAILED.value, message, time.time(), task_id),
        )

    async def reset_task_status(self, task_id: str) -> None:
        """Return a task to pending so it can be run again."""
        await self._update(
            task_id,
            "UPDATE tasks SET status = ?, started_at = NULL, completed_at = NULL, "
            "error_message = '' WHERE id = ?",
            (TaskStatus.PENDING.value, task_id),
        )

    async def delete_task(self, task_id: str) -> None:
        """Delete a task record."""
        await self._update(task_id, "DELETE FROM tasks WHERE id = ?", (task_id,))

    async def _update(self, task_id: str, sql: str, params: tuple) -> None:
        async with self._lock:
            try:
                result = await self._db.execute(sql, params)
                await self._db.commit()
            except aiosqlite.Error as e:
                raise StoreError(f"failed to update task: {e}", task_id=task_id) from e
            if result.rowcount == 0:
                raise TaskNotFoundError(task_id)
