# src/timekeeper/core/scheduler/manager.py
"""APScheduler-driven scan loop over the task store.

An AsyncIOScheduler interval job runs one scan per tick. Each scan
snapshots the due tasks, delivers them one at a time, applies the
reschedule policy and persists once at the end.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from timekeeper.config import Settings
from timekeeper.core.scheduler.executor import run_due_task
from timekeeper.core.scheduler.models import ExecutionRecord, Task, to_epoch_ms
from timekeeper.core.scheduler.notification import DeliveryProtocol
from timekeeper.core.scheduler.persistence import JsonFileGateway, PersistenceGateway
from timekeeper.core.scheduler.store import TaskStore
from timekeeper.utils.logging import set_scan_id

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "timekeeper-scan"


class SchedulerManager:
    """Owns the task store and drives the periodic scan.

    Manages scheduled tasks with:
    - JSON snapshot persistence across restarts
    - AsyncIO scheduler running one scan per tick
    - Pluggable delivery via DeliveryProtocol
    """

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: DeliveryProtocol | None = None,
        gateway: PersistenceGateway | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler manager.

        Args:
            settings: Scheduler settings. Defaults to Settings().
            notifier: Delivery backend; may also be set later.
            gateway: Snapshot storage. Defaults to a JSON file at
                settings.data_file.
            clock: Returns the current time. Defaults to datetime.now(tz).
        """
        self._settings = settings or Settings()
        self._tz = self._settings.tzinfo
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._notifier = notifier
        self._store = TaskStore(
            gateway=gateway or JsonFileGateway(self._settings.data_file),
            max_per_destination=self._settings.max_tasks_per_destination,
            tz=self._tz,
            clock=self._clock,
        )
        self._scheduler: AsyncIOScheduler | None = None
        self._starting = False

        logger.info(
            "SchedulerManager initialized: data_file=%s, interval=%ss, limit=%d",
            self._settings.data_file,
            self._settings.scan_interval_seconds,
            self._settings.max_tasks_per_destination,
        )

    @property
    def store(self) -> TaskStore:
        """The task store owned by this manager."""
        return self._store

    def set_notifier(self, notifier: DeliveryProtocol) -> None:
        """Set the delivery backend.

        Args:
            notifier: Implementation of DeliveryProtocol.
        """
        self._notifier = notifier
        logger.info("Notifier set for scheduler deliveries")

    def get_notifier(self) -> DeliveryProtocol | None:
        """Get the configured delivery backend.

        Returns:
            DeliveryProtocol implementation or None if not configured.
        """
        return self._notifier

    async def start(self) -> None:
        """Load persisted tasks, run a catch-up scan, then start ticking.

        Raises:
            PersistenceError: If the data file exists but cannot be read.
        """
        if self.is_running or self._starting:
            return

        self._starting = True
        try:
            loaded = self._store.load()
            logger.info("Loaded %d tasks", loaded)

            # Tasks that came due while the process was down fire now
            await self.scan()

            scheduler = AsyncIOScheduler(timezone=self._tz)
            scheduler.add_listener(
                self._on_job_event,
                EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES,
            )
            scheduler.add_job(
                self._run_scan_job,
                "interval",
                seconds=self._settings.scan_interval_seconds,
                id=SCAN_JOB_ID,
                coalesce=True,  # Combine missed ticks into one
                max_instances=1,  # Never overlap two scans
                replace_existing=True,
            )
            scheduler.start()
            self._scheduler = scheduler
            logger.info("Scheduler started")
        finally:
            self._starting = False

    def shutdown(self, wait: bool = True) -> None:
        """Stop ticking and write any unsaved changes.

        Args:
            wait: Whether to wait for a running scan to complete.
        """
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown")
        self._scheduler = None
        self._store.flush()

    async def scan(self, now: datetime | None = None) -> list[ExecutionRecord]:
        """Run one scan over the store.

        Due tasks are delivered sequentially; a failed delivery is logged and
        does not stop the rest of the batch. The store is persisted once at
        the end of the scan.

        Args:
            now: Scan time. Defaults to the manager's clock.

        Returns:
            One record per due task that was still present when applied.
        """
        set_scan_id(uuid.uuid4().hex[:8])
        now_ms = to_epoch_ms(now or self._clock())
        due = self._store.due_tasks(now_ms)

        if due and self._notifier is None:
            logger.error("No notifier configured; %d due tasks left pending", len(due))
            return []

        if due:
            logger.info("Found %d due tasks", len(due))

        records: list[ExecutionRecord] = []
        for task in due:
            fired_at = max(now_ms, to_epoch_ms(self._clock()))
            outcome = await run_due_task(
                self._notifier,
                task,
                fired_at,
                timeout=self._settings.delivery_timeout_seconds,
                tz=self._tz,
            )
            record = self._store.apply_execution_result(
                task.id,
                outcome,
                fired_at,
                max_failures=self._settings.max_delivery_failures,
                persist=False,
            )
            if record is not None:
                records.append(record)

        # also retries a save that failed on an earlier mutation
        self._store.flush()
        return records

    async def _run_scan_job(self) -> None:
        """Interval job body; a failed tick is logged and the next one runs."""
        try:
            await self.scan()
        except Exception:
            logger.exception("Scan failed")

    # ---- collaborator surface ----

    def create_task(
        self, owner_id: str, destination: str, payload: str, time_text: str
    ) -> Task:
        """Create a task. See TaskStore.create_task."""
        return self._store.create_task(owner_id, destination, payload, time_text)

    def delete_task(self, task_id: int, requesting_owner_id: str) -> Task:
        """Delete a task. See TaskStore.delete_task."""
        return self._store.delete_task(task_id, requesting_owner_id)

    def list_tasks(self, destination: str) -> list[Task]:
        """List enabled tasks for a destination, soonest first."""
        return self._store.list_tasks(destination)

    def get_task(self, task_id: int) -> Task | None:
        """Get a task by ID, or None if it does not exist."""
        return self._store.get_task(task_id)

    def _on_job_event(self, event: JobEvent) -> None:
        """Log scheduler-level job problems.

        Args:
            event: Job event from APScheduler.
        """
        if isinstance(event, JobExecutionEvent) and event.exception:
            logger.error("Job %s failed: %s", event.job_id, str(event.exception))
        else:
            logger.warning("Job %s skipped a tick (code=%s)", event.job_id, event.code)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running.

        Returns:
            True if scheduler is running.
        """
        return self._scheduler is not None and self._scheduler.running


# Module-level helpers for the process-wide instance
_manager: SchedulerManager | None = None


def get_scheduler(settings: Settings | None = None) -> SchedulerManager:
    """Get the process-wide scheduler manager.

    Args:
        settings: Scheduler settings (only used on first call).

    Returns:
        SchedulerManager instance.
    """
    global _manager
    if _manager is None:
        _manager = SchedulerManager(settings)
    return _manager


def reset_scheduler() -> None:
    """Drop the process-wide scheduler manager (for testing)."""
    global _manager
    if _manager is not None:
        _manager.shutdown(wait=False)
    _manager = None
