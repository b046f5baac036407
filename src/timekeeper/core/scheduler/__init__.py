# src/timekeeper/core/scheduler/__init__.py
"""Scheduler module for time-triggered task delivery.

Provides task scheduling capabilities:
- English time expression parsing
- Dual-indexed task store with JSON snapshot persistence
- APScheduler-driven scans with pluggable delivery
"""

from timekeeper.core.scheduler.errors import (
    LimitReachedError,
    ParseError,
    ParseErrorReason,
    PersistenceError,
    SchedulerError,
    TaskNotFoundError,
    UnauthorizedError,
)
from timekeeper.core.scheduler.manager import (
    SchedulerManager,
    get_scheduler,
    reset_scheduler,
)
from timekeeper.core.scheduler.models import (
    Delivery,
    ExecutionOutcome,
    ExecutionPlan,
    ExecutionRecord,
    Task,
    TaskKind,
    TimeOfDay,
)
from timekeeper.core.scheduler.notification import (
    DeliveryProtocol,
    LoggingNotifier,
    WebhookNotifier,
)
from timekeeper.core.scheduler.persistence import (
    JsonFileGateway,
    MemoryGateway,
    PersistenceGateway,
)
from timekeeper.core.scheduler.store import TaskStore
from timekeeper.core.scheduler.time_parser import (
    format_run_time,
    parse_time_expression,
)

__all__ = [
    "Delivery",
    "DeliveryProtocol",
    "ExecutionOutcome",
    "ExecutionPlan",
    "ExecutionRecord",
    "JsonFileGateway",
    "LimitReachedError",
    "LoggingNotifier",
    "MemoryGateway",
    "ParseError",
    "ParseErrorReason",
    "PersistenceError",
    "PersistenceGateway",
    "SchedulerError",
    "SchedulerManager",
    "Task",
    "TaskKind",
    "TaskNotFoundError",
    "TaskStore",
    "TimeOfDay",
    "UnauthorizedError",
    "WebhookNotifier",
    "format_run_time",
    "get_scheduler",
    "parse_time_expression",
    "reset_scheduler",
]
