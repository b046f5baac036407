# src/timekeeper/core/scheduler/models.py
"""Data models for the scheduler module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

# Fixed increments used by the reschedule policy and the parser
SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

# Latest next_run that still converts to a datetime in every timezone
MAX_RUN_MS = 253402214400000  # 9999-12-31 00:00 UTC

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class TaskKind(str, Enum):
    """Schedule kind; decides what happens to a task after it fires."""

    ONCE = "once"
    RECURRING_DAILY = "recurring_daily"
    RECURRING_WEEKLY = "recurring_weekly"
    INTERVAL_FROM_NOW = "interval_from_now"


class ExecutionOutcome(str, Enum):
    """Result of a single delivery attempt."""

    DELIVERED = "delivered"
    FAILED = "failed"


class TimeOfDay(NamedTuple):
    """Hour and minute on a 24-hour clock."""

    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse an "HH:MM" string as produced by ``str()``."""
        hour, _, minute = value.partition(":")
        return cls(int(hour), int(minute or 0))


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return round(dt.timestamp() * 1000)


def from_epoch_ms(ms: int, tz: Any = None) -> datetime:
    """Convert epoch milliseconds to an aware datetime in ``tz``."""
    return datetime.fromtimestamp(ms / 1000, tz)


def _check_kind_fields(
    kind: TaskKind,
    interval_ms: int | None,
    weekday: int | None,
    time_of_day: TimeOfDay | None,
) -> None:
    """Reject kind-specific field combinations that do not match ``kind``."""
    if kind is TaskKind.INTERVAL_FROM_NOW:
        if interval_ms is None or interval_ms <= 0:
            raise ValueError("interval_from_now requires a positive interval_ms")
    elif interval_ms is not None:
        raise ValueError(f"interval_ms is not allowed for {kind.value}")

    if kind is TaskKind.RECURRING_WEEKLY:
        if weekday is None or not 0 <= weekday <= 6:
            raise ValueError("recurring_weekly requires a weekday in 0..6")
    elif weekday is not None:
        raise ValueError(f"weekday is not allowed for {kind.value}")

    if kind in (TaskKind.RECURRING_DAILY, TaskKind.RECURRING_WEEKLY):
        if time_of_day is None:
            raise ValueError(f"{kind.value} requires time_of_day")
    elif time_of_day is not None:
        raise ValueError(f"time_of_day is not allowed for {kind.value}")


@dataclass(frozen=True)
class ExecutionPlan:
    """Resolved schedule produced by the time expression parser.

    Attributes:
        kind: Schedule kind.
        next_run: First execution instant (epoch milliseconds).
        interval_ms: Repeat interval, only for interval_from_now.
        weekday: Target weekday (Monday = 0), only for recurring_weekly.
        time_of_day: Target clock time, for recurring_daily/recurring_weekly.
    """

    kind: TaskKind
    next_run: int
    interval_ms: int | None = None
    weekday: int | None = None
    time_of_day: TimeOfDay | None = None

    def __post_init__(self) -> None:
        _check_kind_fields(self.kind, self.interval_ms, self.weekday, self.time_of_day)


@dataclass
class Task:
    """Represents a scheduled task.

    Attributes:
        id: Process-unique identifier, never reused.
        owner_id: ID of the principal who created the task.
        destination: Opaque routing target for delivery.
        payload: Text to deliver; may contain {date}, {time} and {day}.
        kind: Schedule kind.
        next_run: When the task is next due (epoch milliseconds).
        interval_ms: Repeat interval, only for interval_from_now.
        weekday: Target weekday (Monday = 0), only for recurring_weekly.
        time_of_day: Target clock time, for recurring_daily/recurring_weekly.
        enabled: Disabled tasks are kept but never scanned or listed.
        created_at: When the task was created (epoch milliseconds).
        failure_count: Consecutive failed delivery attempts.
    """

    id: int
    owner_id: str
    destination: str
    payload: str
    kind: TaskKind
    next_run: int
    interval_ms: int | None = None
    weekday: int | None = None
    time_of_day: TimeOfDay | None = None
    enabled: bool = True
    created_at: int = 0
    failure_count: int = 0

    def __post_init__(self) -> None:
        _check_kind_fields(self.kind, self.interval_ms, self.weekday, self.time_of_day)

    @classmethod
    def from_plan(
        cls,
        task_id: int,
        owner_id: str,
        destination: str,
        payload: str,
        plan: ExecutionPlan,
        created_at: int,
    ) -> Task:
        """Build a new task from a parsed execution plan."""
        return cls(
            id=task_id,
            owner_id=owner_id,
            destination=destination,
            payload=payload,
            kind=plan.kind,
            next_run=plan.next_run,
            interval_ms=plan.interval_ms,
            weekday=plan.weekday,
            time_of_day=plan.time_of_day,
            created_at=created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Returns:
            Dictionary representation of the task.
        """
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "destination": self.destination,
            "payload": self.payload,
            "kind": self.kind.value,
            "next_run": self.next_run,
            "interval_ms": self.interval_ms,
            "weekday": self.weekday,
            "time_of_day": str(self.time_of_day) if self.time_of_day else None,
            "enabled": self.enabled,
            "created_at": self.created_at,
            "failure_count": self.failure_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Create from dictionary.

        Args:
            data: Dictionary with task data.

        Returns:
            Task instance.
        """
        return cls(
            id=int(data["id"]),
            owner_id=data["owner_id"],
            destination=data["destination"],
            payload=data["payload"],
            kind=TaskKind(data["kind"]),
            next_run=int(data["next_run"]),
            interval_ms=data.get("interval_ms"),
            weekday=data.get("weekday"),
            time_of_day=TimeOfDay.parse(data["time_of_day"])
            if data.get("time_of_day")
            else None,
            enabled=data.get("enabled", True),
            created_at=int(data.get("created_at", 0)),
            failure_count=int(data.get("failure_count", 0)),
        )


@dataclass
class StoreSnapshot:
    """Everything needed to rebuild a TaskStore.

    The destination index is not part of the snapshot; it is rebuilt
    from the task list on load.
    """

    next_id: int = 1
    tasks: list[Task] = field(default_factory=list)


@dataclass(frozen=True)
class Delivery:
    """Notification handed to the delivery collaborator when a task fires."""

    task_id: int
    owner_id: str
    destination: str
    message: str
    kind: TaskKind
    fired_at: int


@dataclass(frozen=True)
class ExecutionRecord:
    """What happened to one due task during a scan."""

    task_id: int
    outcome: ExecutionOutcome
    fired_at: int
    next_run: int | None
    removed: bool = False
    disabled: bool = False
