# src/timekeeper/core/scheduler/errors.py
"""Exceptions raised by the scheduler core.

Parse, limit and authorization errors always reach the caller.
PersistenceError is raised by gateways and recovered by the store.
"""

from enum import Enum


class ParseErrorReason(str, Enum):
    """Why a time expression was rejected."""

    INVALID_FORMAT = "invalid_format"
    INVALID_TIME = "invalid_time"


class SchedulerError(Exception):
    """Base class for scheduler errors.

    Attributes:
        code: Short machine-readable error code.
    """

    code = "scheduler_error"


class ParseError(SchedulerError):
    """Time expression did not match the grammar or held out-of-range values."""

    code = "parse_error"

    def __init__(self, reason: ParseErrorReason, text: str, detail: str = "") -> None:
        self.reason = reason
        self.text = text
        message = f"Could not parse time expression '{text}' ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class LimitReachedError(SchedulerError):
    """Destination already holds the maximum number of enabled tasks."""

    code = "limit_reached"

    def __init__(self, destination: str, limit: int) -> None:
        self.destination = destination
        self.limit = limit
        super().__init__(f"Maximum tasks ({limit}) reached for destination {destination}")


class TaskNotFoundError(SchedulerError):
    """No task with the given ID exists."""

    code = "not_found"

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class UnauthorizedError(SchedulerError):
    """Requester does not own the task."""

    code = "unauthorized"

    def __init__(self, task_id: int, owner_id: str) -> None:
        self.task_id = task_id
        self.owner_id = owner_id
        super().__init__(f"{owner_id} is not authorized to delete task {task_id}")


class PersistenceError(SchedulerError):
    """Snapshot could not be read from or written to durable storage."""

    code = "persistence_error"
