"""Supervisor error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Transient, retry on next tick
    MEDIUM = "medium"     # Task failed, can be retried after reset
    HIGH = "high"         # Operator attention needed
    CRITICAL = "critical" # Final state cannot be confirmed


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Store I/O hiccup - will likely resolve
    PERMANENT = "permanent"       # Missing task, bad config - won't resolve
    WORKER = "worker"             # Worker process misbehaved
    INTERRUPTED = "interrupted"   # Operator or parent cancellation
    VALIDATION = "validation"     # Input/config validation failure


class SupervisorError(Exception):
    """Base exception for all supervisor errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.WORKER,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/output."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
        }


class ConfigError(SupervisorError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class StoreError(SupervisorError):
    """Task store I/O failure."""

    def __init__(self, message: str, task_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.TRANSIENT)
        super().__init__(message, **kwargs)
        self.context["task_id"] = task_id


class TaskError(SupervisorError):
    """Error tied to one task."""

    def __init__(self, message: str, task_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.task_id = task_id
        self.context["task_id"] = task_id


class TaskNotFoundError(TaskError):
    """The task id does not resolve in the store."""

    def __init__(self, task_id: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(f"task {task_id} not found", task_id=task_id, **kwargs)


class LaunchError(TaskError):
    """The worker process could not be started."""

    def __init__(self, message: str, task_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, task_id=task_id, **kwargs)


class WorkerExitError(TaskError):
    """The worker process exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        exit_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, task_id=task_id, **kwargs)
        self.exit_code = exit_code
        self.context["exit_code"] = exit_code


class SupervisionInterrupted(TaskError):
    """Supervision was cancelled before the task finished."""

    def __init__(self, message: str, task_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.INTERRUPTED)
        super().__init__(message, task_id=task_id, **kwargs)


class TaskFailedError(TaskError):
    """The task was marked failed in the store by the worker or an operator."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        reason: str = "",
        **kwargs
    ):
        super().__init__(message, task_id=task_id, **kwargs)
        self.reason = reason


class SilentIncompletionError(TaskError):
    """The worker exited cleanly but never recorded completion."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        retry_hint: str = "",
        **kwargs
    ):
        super().__init__(message, task_id=task_id, **kwargs)
        self.retry_hint = retry_hint
        self.context["retry_hint"] = retry_hint
