# src/timekeeper/core/scheduler/store.py
"""In-memory task store with a per-destination index.

Tasks live in a primary map keyed by ID, and a secondary index maps each
destination to the set of its task IDs. insert() and remove() are the only
code paths that touch either structure, and they always update both.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from timekeeper.core.scheduler.errors import (
    LimitReachedError,
    PersistenceError,
    TaskNotFoundError,
    UnauthorizedError,
)
from timekeeper.core.scheduler.models import (
    DAY_MS,
    MAX_RUN_MS,
    WEEK_MS,
    ExecutionOutcome,
    ExecutionRecord,
    StoreSnapshot,
    Task,
    TaskKind,
    to_epoch_ms,
)
from timekeeper.core.scheduler.persistence import MemoryGateway, PersistenceGateway
from timekeeper.core.scheduler.time_parser import format_run_time, parse_time_expression

logger = logging.getLogger(__name__)

DEFAULT_MAX_PER_DESTINATION = 25


class TaskStore:
    """Dual-indexed store for scheduled tasks.

    Every public method runs under one re-entrant lock, so callers on other
    threads never observe the two indexes out of sync. Readers get copies;
    Task instances held by the store are never handed out.

    Attributes:
        max_per_destination: Maximum enabled tasks per destination.
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None = None,
        max_per_destination: int = DEFAULT_MAX_PER_DESTINATION,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize an empty store.

        Args:
            gateway: Durable storage. Defaults to an in-memory gateway.
            max_per_destination: Maximum enabled tasks per destination.
            tz: Timezone for parsing time expressions. Defaults to UTC.
            clock: Returns the current time. Defaults to datetime.now(tz).
        """
        if max_per_destination < 1:
            raise ValueError("max_per_destination must be at least 1")

        self.max_per_destination = max_per_destination
        self._gateway: PersistenceGateway = gateway or MemoryGateway()
        self._tz = tz or ZoneInfo("UTC")
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._lock = threading.RLock()

        self._tasks: dict[int, Task] = {}
        self._by_destination: dict[str, set[int]] = {}
        self._next_id = 1
        self._dirty = False

    # ---- index primitives ----

    def insert(self, task: Task) -> Task:
        """Add a task to both indexes.

        The ID counter is advanced past the task's ID so it is never reused.

        Raises:
            ValueError: If a task with the same ID already exists.
        """
        with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} already exists")
            stored = replace(task)
            self._tasks[stored.id] = stored
            self._by_destination.setdefault(stored.destination, set()).add(stored.id)
            self._next_id = max(self._next_id, stored.id + 1)
            self._dirty = True
            return replace(stored)

    def remove(self, task_id: int) -> Task:
        """Remove a task from both indexes.

        Raises:
            TaskNotFoundError: If no task has this ID.
        """
        with self._lock:
            task = self._tasks.pop(task_id, None)
            if task is None:
                raise TaskNotFoundError(task_id)
            ids = self._by_destination.get(task.destination)
            if ids is not None:
                ids.discard(task_id)
                if not ids:
                    del self._by_destination[task.destination]
            self._dirty = True
            return task

    # ---- persistence ----

    def snapshot(self) -> StoreSnapshot:
        """Return a copy of the store contents."""
        with self._lock:
            return StoreSnapshot(
                next_id=self._next_id,
                tasks=[replace(task) for task in self._tasks.values()],
            )

    def load(self) -> int:
        """Replace the store contents with the gateway's snapshot.

        Returns:
            Number of tasks loaded.

        Raises:
            PersistenceError: If the gateway cannot read stored data.
        """
        snapshot = self._gateway.load()
        with self._lock:
            self._tasks.clear()
            self._by_destination.clear()
            self._next_id = max(1, snapshot.next_id)
            try:
                for task in snapshot.tasks:
                    self.insert(task)
            except ValueError as e:
                self._tasks.clear()
                self._by_destination.clear()
                raise PersistenceError(f"Inconsistent snapshot: {e}") from e
            self._dirty = False
            return len(self._tasks)

    def flush(self) -> bool:
        """Persist the store if it changed since the last successful save.

        Save failures are logged and swallowed: in-memory state stays
        authoritative and the next flush retries.

        Returns:
            True if the store is clean afterwards.
        """
        with self._lock:
            if not self._dirty:
                return True
            try:
                self._gateway.save(self.snapshot())
            except PersistenceError:
                logger.exception("Failed to persist %d tasks", len(self._tasks))
                return False
            self._dirty = False
            return True

    @property
    def is_dirty(self) -> bool:
        """True if there are changes not yet written by the gateway."""
        return self._dirty

    # ---- public API ----

    def create_task(
        self,
        owner_id: str,
        destination: str,
        payload: str,
        time_text: str,
    ) -> Task:
        """Create a task from a time expression.

        Order: limit check, parse, insert, persist.

        Args:
            owner_id: Principal creating the task.
            destination: Where deliveries for this task are routed.
            payload: Text to deliver.
            time_text: Time expression, e.g. "in 5 minutes" or "daily 9am".

        Returns:
            The created task.

        Raises:
            LimitReachedError: If the destination is full.
            ParseError: If the time expression is invalid.
        """
        with self._lock:
            if self.count_enabled(destination) >= self.max_per_destination:
                logger.warning(
                    "Task limit reached: destination=%s, limit=%d",
                    destination,
                    self.max_per_destination,
                )
                raise LimitReachedError(destination, self.max_per_destination)

            now = self._clock()
            plan = parse_time_expression(time_text, base_time=now, tz=self._tz)

            task = self.insert(
                Task.from_plan(
                    task_id=self._next_id,
                    owner_id=owner_id,
                    destination=destination,
                    payload=payload,
                    plan=plan,
                    created_at=to_epoch_ms(now),
                )
            )
            self.flush()

        logger.info(
            "Task created: id=%s, kind=%s, next_run=%s, destination=%s",
            task.id,
            task.kind.value,
            format_run_time(task.next_run, self._tz),
            destination,
        )
        return task

    def delete_task(self, task_id: int, requesting_owner_id: str) -> Task:
        """Delete a task owned by the requester.

        Args:
            task_id: Task to delete.
            requesting_owner_id: Principal asking for the deletion.

        Returns:
            The deleted task.

        Raises:
            TaskNotFoundError: If the task does not exist.
            UnauthorizedError: If the requester does not own the task.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.owner_id != requesting_owner_id:
                logger.warning(
                    "Unauthorized delete attempt: task=%s, user=%s, owner=%s",
                    task_id,
                    requesting_owner_id,
                    task.owner_id,
                )
                raise UnauthorizedError(task_id, requesting_owner_id)

            removed = self.remove(task_id)
            self.flush()

        logger.info("Task deleted: %s", task_id)
        return removed

    def list_tasks(self, destination: str) -> list[Task]:
        """List enabled tasks for a destination, soonest first.

        Args:
            destination: Destination to list.

        Returns:
            Tasks sorted by next_run, then id.
        """
        with self._lock:
            ids = self._by_destination.get(destination, ())
            tasks = [replace(self._tasks[i]) for i in ids if self._tasks[i].enabled]
        return sorted(tasks, key=lambda t: (t.next_run, t.id))

    def get_task(self, task_id: int) -> Task | None:
        """Get a copy of a task by ID, or None if it does not exist."""
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def count_enabled(self, destination: str) -> int:
        """Count enabled tasks for a destination."""
        with self._lock:
            ids = self._by_destination.get(destination, ())
            return sum(1 for i in ids if self._tasks[i].enabled)

    def due_tasks(self, now_ms: int) -> list[Task]:
        """Snapshot enabled tasks whose next_run is at or before now_ms."""
        with self._lock:
            due = [
                replace(task)
                for task in self._tasks.values()
                if task.enabled and task.next_run <= now_ms
            ]
        return sorted(due, key=lambda t: (t.next_run, t.id))

    def apply_execution_result(
        self,
        task_id: int,
        outcome: ExecutionOutcome,
        fired_at: int,
        *,
        max_failures: int = 0,
        persist: bool = True,
    ) -> ExecutionRecord | None:
        """Apply the reschedule policy after a delivery attempt.

        - once: removed
        - recurring_daily: next_run += 24h
        - recurring_weekly: next_run += 7d
        - interval_from_now: next_run = fired_at + interval_ms

        A failed delivery leaves the schedule unchanged so the next scan
        retries it. With max_failures > 0 the task is disabled once that
        many consecutive attempts have failed. A recurring task whose next
        run would fall past MAX_RUN_MS is disabled instead of rescheduled.

        Args:
            task_id: Task that fired.
            outcome: Result of the delivery attempt.
            fired_at: When the delivery was attempted (epoch milliseconds).
            max_failures: Consecutive failures before disabling; 0 = never.
            persist: Flush after applying. The scheduler passes False and
                flushes once per batch.

        Returns:
            What happened to the task, or None if it was deleted meanwhile.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.info("Task %s was removed before its result was applied", task_id)
                return None

            if outcome is ExecutionOutcome.FAILED:
                task.failure_count += 1
                disabled = 0 < max_failures <= task.failure_count
                if disabled:
                    task.enabled = False
                    logger.warning(
                        "Task %s disabled after %d consecutive delivery failures",
                        task_id,
                        task.failure_count,
                    )
                record = ExecutionRecord(
                    task_id=task_id,
                    outcome=outcome,
                    fired_at=fired_at,
                    next_run=task.next_run,
                    disabled=disabled,
                )
            elif task.kind is TaskKind.ONCE:
                self.remove(task_id)
                record = ExecutionRecord(
                    task_id=task_id,
                    outcome=outcome,
                    fired_at=fired_at,
                    next_run=None,
                    removed=True,
                )
            else:
                task.failure_count = 0
                if task.kind is TaskKind.INTERVAL_FROM_NOW:
                    task.next_run = fired_at + task.interval_ms
                else:
                    step = DAY_MS if task.kind is TaskKind.RECURRING_DAILY else WEEK_MS
                    task.next_run += step
                    # occurrences missed during downtime are skipped, not replayed
                    while task.next_run <= fired_at:
                        task.next_run += step
                exhausted = task.next_run > MAX_RUN_MS
                if exhausted:
                    task.enabled = False
                    logger.warning(
                        "Task %s disabled: next run is past the supported range",
                        task_id,
                    )
                else:
                    logger.info(
                        "Task %s rescheduled for %s",
                        task_id,
                        format_run_time(task.next_run, self._tz),
                    )
                record = ExecutionRecord(
                    task_id=task_id,
                    outcome=outcome,
                    fired_at=fired_at,
                    next_run=task.next_run,
                    disabled=exhausted,
                )

            self._dirty = True
            if persist:
                self.flush()
            return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
