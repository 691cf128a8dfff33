"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class StoreUnavailableException(RepositoryException):
    """
    The backing store could not be reached.

    Transient: the periodic loop retries on its next tick, on-demand
    callers receive it.
    """


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class InvalidStateException(DomainException):
    """Operation is not allowed in the task's current lifecycle state."""

    def __init__(
        self,
        task_id: str,
        current_status: str,
        operation: str,
        details: Optional[dict] = None
    ):
        self.task_id = task_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} task {task_id} in state {current_status}",
            details or {"task_id": task_id, "status": current_status}
        )


class AlreadyAcknowledgedException(DomainException):
    """A justification was already accepted for this overdue episode."""

    def __init__(self, task_id: str, episode: int, details: Optional[dict] = None):
        self.task_id = task_id
        self.episode = episode
        super().__init__(
            f"Task {task_id} episode {episode} is already acknowledged",
            details or {"task_id": task_id, "episode": episode}
        )


class SyncFailedException(ApplicationException):
    """
    On-demand evaluation could not complete.

    Carries the partial progress made before the failure so callers
    can report it rather than hide it.
    """

    def __init__(
        self,
        message: str,
        tasks_evaluated: int,
        events_emitted: int,
        tasks_failed: int = 0,
        cause: Any = None
    ):
        self.tasks_evaluated = tasks_evaluated
        self.events_emitted = events_emitted
        self.tasks_failed = tasks_failed
        super().__init__(message, {
            "tasks_evaluated": tasks_evaluated,
            "events_emitted": events_emitted,
            "tasks_failed": tasks_failed,
            "cause": str(cause) if cause else None,
        })


class SyncTimeoutException(SyncFailedException):
    """On-demand evaluation exceeded the caller-supplied timeout."""

    def __init__(self, timeout_seconds: float, tasks_evaluated: int, events_emitted: int):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Sync did not finish within {timeout_seconds}s",
            tasks_evaluated,
            events_emitted,
        )
        self.details["timeout_seconds"] = timeout_seconds
