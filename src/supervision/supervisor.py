"""
Task execution supervisor.

Launches one worker process for one task, races the worker's exit against
status changes observed in the task store and cancellation requests, shuts
the worker down gracefully (then forcibly) when needed, and reconciles the
outcome with the task store. The store is authoritative: a clean worker exit
without a recorded completion is a failure.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from core.store import TaskStore, TaskStatus
from core.errors import (
    SupervisorError,
    TaskError,
    StoreError,
    TaskNotFoundError,
    LaunchError,
    WorkerExitError,
    SupervisionInterrupted,
    TaskFailedError,
    SilentIncompletionError,
)
from .worker import WorkerLauncher, WorkerProcess
from .session import SessionCloser


logger = structlog.get_logger()

# Store status is re-read at this interval while the worker runs
POLL_INTERVAL_SECONDS = 2.0
# Grace period after SIGTERM before SIGKILL
STORE_GRACE_SECONDS = 5.0
CANCEL_GRACE_SECONDS = 2.0


class SupervisionState(Enum):
    """Supervision lifecycle states."""
    INIT = "init"
    LAUNCHING = "launching"
    MONITORING = "monitoring"
    TERMINATING = "terminating"
    RECONCILING = "reconciling"
    SUCCESS = "success"
    FAILURE = "failure"


class TerminationCause(Enum):
    """Why the monitoring loop stopped."""
    PROCESS_EXITED = "process_exited"
    STORE_COMPLETED = "store_completed"
    STORE_FAILED = "store_failed"
    TASK_DELETED = "task_deleted"
    CANCELLED = "cancelled"


# Status the monitor saw, by cause, for reconciliation messages
OBSERVED_STATUS = {
    TerminationCause.STORE_COMPLETED: "completed",
    TerminationCause.STORE_FAILED: "failed",
    TerminationCause.TASK_DELETED: "deleted",
}


@dataclass
class SupervisionSession:
    """Transient state of one supervise() call."""
    task_id: str
    start_time: float = field(default_factory=time.time)
    process: Optional[WorkerProcess] = None
    exit_code: Optional[int] = None
    state: SupervisionState = SupervisionState.INIT
    _termination_cause: Optional[TerminationCause] = field(default=None, repr=False)
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def termination_cause(self) -> Optional[TerminationCause]:
        return self._termination_cause

    @termination_cause.setter
    def termination_cause(self, cause: TerminationCause) -> None:
        if self._termination_cause is not None:
            raise RuntimeError(
                f"termination cause already set to {self._termination_cause.value}"
            )
        self._termination_cause = cause

    def mark_launched(self) -> None:
        self.start_time = time.time()
        self._started_monotonic = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._started_monotonic

    def transition(self, state: SupervisionState) -> None:
        logger.debug(
            "supervision_state_changed",
            task_id=self.task_id,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state


@dataclass
class SupervisionResult:
    """Outcome of supervising one task."""
    success: bool
    task_id: str
    error: Optional[SupervisorError] = None
    cause: Optional[TerminationCause] = None
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0
    was_completed_by_worker: bool = False


def format_duration(seconds: float) -> str:
    """Render elapsed time as e.g. ``1m5s`` or ``12s``."""
    total = int(round(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


class Supervisor:
    """
    Supervises exactly one worker process per supervise() call.

    Responsibilities:
    - Resolve the task and mark it processing
    - Launch the worker and watch it, the task store, and cancellation
    - Terminate the worker gracefully, force-kill after the grace period
    - Record failures in the task store and report the outcome

    The poll interval and grace periods are fixed; the keyword overrides
    exist so tests can run on a compressed clock.
    """

    def __init__(
        self,
        store: TaskStore,
        launcher: WorkerLauncher,
        session_closer: Optional[SessionCloser] = None,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        store_grace_period: float = STORE_GRACE_SECONDS,
        cancel_grace_period: float = CANCEL_GRACE_SECONDS,
    ):
        self.store = store
        self.launcher = launcher
        self.session_closer = session_closer
        self.poll_interval = poll_interval
        self.store_grace_period = store_grace_period
        self.cancel_grace_period = cancel_grace_period

        # Replaced at the start of every supervise() call
        self._cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation of the running supervision. Idempotent."""
        if self._cancel_event.is_set():
            return
        logger.info("supervision_cancel_requested")
        self._cancel_event.set()

    async def supervise(self, task_id: str, *, auto_close: bool = False) -> SupervisionResult:
        """
        Run the worker for a task and reconcile its outcome.

        Args:
            task_id: Task to supervise; must exist in the store
            auto_close: Close the hosting session tab after success

        Returns:
            SupervisionResult; ``error`` is set whenever ``success`` is False
        """
        self._cancel_event = asyncio.Event()
        session = SupervisionSession(task_id=task_id)

        try:
            task = await self.store.get_task(task_id)
        except StoreError as e:
            return self._finish(session, error=e)
        if task is None:
            return self._finish(session, error=TaskNotFoundError(task_id))

        if task.status is TaskStatus.COMPLETED:
            logger.info("task_already_completed", task_id=task_id)
            return self._finish(session, completed=True)

        session.transition(SupervisionState.LAUNCHING)
        try:
            await self.store.start_task(task_id)
        except (StoreError, TaskNotFoundError) as e:
            return self._finish(session, error=e)

        try:
            process = await self.launcher.launch(task)
        except OSError as e:
            error = LaunchError(f"failed to start worker: {e}", task_id=task_id)
            try:
                await self.store.fail_task(task_id, error.message)
            except (StoreError, TaskNotFoundError) as store_error:
                logger.warning(
                    "fail_task_error",
                    task_id=task_id,
                    error=str(store_error),
                )
            return self._finish(session, error=error)

        session.process = process
        session.mark_launched()
        logger.info("worker_launched", task_id=task_id, pid=process.pid)

        exit_waiter = asyncio.create_task(process.wait())
        parent_cancelled = False
        try:
            try:
                cause = await self._monitor(session, exit_waiter)
            except asyncio.CancelledError:
                parent_cancelled = True
                self.cancel()
                cause = TerminationCause.CANCELLED

            session.termination_cause = cause
            logger.info("monitoring_stopped", task_id=task_id, cause=cause.value)

            if cause is TerminationCause.CANCELLED:
                await self._terminate(session, exit_waiter, self.cancel_grace_period)
            elif cause is not TerminationCause.PROCESS_EXITED:
                await self._terminate(session, exit_waiter, self.store_grace_period)
        finally:
            if not exit_waiter.done():
                # Termination itself was interrupted
                self._kill(process, task_id)
            session.exit_code = await asyncio.shield(exit_waiter)

        session.transition(SupervisionState.RECONCILING)
        result = await self._reconcile(session)

        if result.success and auto_close:
            await self._close_session(task_id)

        if parent_cancelled:
            raise asyncio.CancelledError()
        return result

    # ==================== Monitoring ====================

    async def _monitor(
        self,
        session: SupervisionSession,
        exit_waiter: asyncio.Task,
    ) -> TerminationCause:
        """Wait until the worker exits, the store shows a final status, or cancel."""
        session.transition(SupervisionState.MONITORING)
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())

        try:
            while True:
                done, _ = await asyncio.wait(
                    {exit_waiter, cancel_waiter},
                    timeout=self.poll_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if exit_waiter in done:
                    cause = TerminationCause.PROCESS_EXITED
                    break
                if cancel_waiter in done:
                    cause = TerminationCause.CANCELLED
                    break

                cause = await self._poll_status(session.task_id)
                if cause is not None:
                    break
        finally:
            cancel_waiter.cancel()

        return cause

    async def _poll_status(self, task_id: str) -> Optional[TerminationCause]:
        """Read the task; None means keep waiting."""
        try:
            task = await self.store.get_task(task_id)
        except StoreError as e:
            logger.warning("task_poll_failed", task_id=task_id, error=e.message)
            return None

        if task is None:
            logger.warning("task_deleted_during_run", task_id=task_id)
            return TerminationCause.TASK_DELETED
        if not task.status.is_terminal:
            return None
        if task.status is TaskStatus.COMPLETED:
            return TerminationCause.STORE_COMPLETED
        return TerminationCause.STORE_FAILED

    # ==================== Termination ====================

    async def _terminate(
        self,
        session: SupervisionSession,
        exit_waiter: asyncio.Task,
        grace_period: float,
    ) -> None:
        """SIGTERM, wait up to grace_period, then SIGKILL."""
        if exit_waiter.done():
            return

        session.transition(SupervisionState.TERMINATING)
        process = session.process
        logger.info(
            "worker_terminating",
            task_id=session.task_id,
            pid=process.pid,
            grace_period=grace_period,
        )

        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(asyncio.shield(exit_waiter), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                "worker_force_killed",
                task_id=session.task_id,
                pid=process.pid,
                grace_period=grace_period,
            )
            self._kill(process, session.task_id)
            await asyncio.shield(exit_waiter)

    def _kill(self, process: WorkerProcess, task_id: str) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("worker_already_exited", task_id=task_id, pid=process.pid)

    # ==================== Reconciliation ====================

    async def _reconcile(self, session: SupervisionSession) -> SupervisionResult:
        """Decide the outcome from the store's final status, never from cache."""
        task_id = session.task_id
        cause = session.termination_cause
        took = format_duration(session.elapsed())

        try:
            task = await self.store.get_task(task_id)
        except StoreError as e:
            return self._finish(session, error=e)
        if task is None:
            return self._finish(session, error=TaskNotFoundError(task_id))

        if task.status is TaskStatus.COMPLETED:
            if cause is TerminationCause.PROCESS_EXITED and session.exit_code != 0:
                logger.warning(
                    "worker_exit_error_after_completion",
                    task_id=task_id,
                    exit_code=session.exit_code,
                )
            return self._finish(session, completed=True)

        error: SupervisorError
        if cause is TerminationCause.CANCELLED:
            error = SupervisionInterrupted(
                f"supervision interrupted after {took}",
                task_id=task_id,
            )
        elif cause is TerminationCause.PROCESS_EXITED and session.exit_code != 0:
            error = WorkerExitError(
                f"worker exited with error after {took}: exit status {session.exit_code}",
                task_id=task_id,
                exit_code=session.exit_code,
            )
        elif task.status is TaskStatus.FAILED:
            error = TaskFailedError(
                f"task marked failed after {took}: {task.error_message or 'no reason recorded'}",
                task_id=task_id,
                reason=task.error_message,
            )
        elif cause is TerminationCause.PROCESS_EXITED:
            error = SilentIncompletionError(
                f"worker exited without completing the task (took {took})",
                task_id=task_id,
                retry_hint=(
                    f"reset the task with 'task-supervisor reset {task_id}' "
                    f"and run 'task-supervisor supervise {task_id}' again"
                ),
            )
        else:
            # The observed status changed again before reconciling (e.g. reset)
            error = TaskError(
                f"task was {OBSERVED_STATUS[cause]} while running, "
                f"now {task.status.value} after {took}",
                task_id=task_id,
            )

        if task.status is TaskStatus.FAILED and task.error_message:
            logger.info(
                "failure_already_recorded",
                task_id=task_id,
                reason=task.error_message,
            )
        else:
            try:
                await self.store.fail_task(task_id, error.message)
            except (StoreError, TaskNotFoundError) as e:
                e.context["unrecorded_error"] = error.message
                return self._finish(session, error=e)

        return self._finish(session, error=error)

    def _finish(
        self,
        session: SupervisionSession,
        error: Optional[SupervisorError] = None,
        completed: bool = False,
    ) -> SupervisionResult:
        success = completed and error is None
        session.transition(SupervisionState.SUCCESS if success else SupervisionState.FAILURE)

        result = SupervisionResult(
            success=success,
            task_id=session.task_id,
            error=error,
            cause=session.termination_cause,
            exit_code=session.exit_code,
            duration_seconds=session.elapsed() if session.process else 0.0,
            was_completed_by_worker=completed,
        )

        if success:
            logger.info(
                "supervision_succeeded",
                task_id=session.task_id,
                duration=format_duration(result.duration_seconds),
            )
        else:
            logger.warning(
                "supervision_failed",
                task_id=session.task_id,
                error=error.to_dict() if error else None,
            )
        return result

    async def _close_session(self, task_id: str) -> None:
        if self.session_closer is None:
            logger.debug("session_close_skipped", task_id=task_id, reason="no closer configured")
            return
        try:
            await self.session_closer.close_tab()
        except Exception as e:
            logger.warning("session_close_error", task_id=task_id, error=str(e))
