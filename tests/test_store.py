# tests/test_store.py
"""Tests for the dual-indexed task store."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from timekeeper.core.scheduler.errors import (
    LimitReachedError,
    ParseError,
    PersistenceError,
    TaskNotFoundError,
    UnauthorizedError,
)
from timekeeper.core.scheduler.models import (
    DAY_MS,
    MAX_RUN_MS,
    WEEK_MS,
    ExecutionOutcome,
    StoreSnapshot,
    Task,
    TaskKind,
    TimeOfDay,
    to_epoch_ms,
)
from timekeeper.core.scheduler.persistence import JsonFileGateway, MemoryGateway
from timekeeper.core.scheduler.store import TaskStore

UTC = ZoneInfo("UTC")
NOW_MS = to_epoch_ms(datetime(2024, 1, 15, 14, 0, 0, tzinfo=UTC))


class FailingGateway(MemoryGateway):
    """Gateway whose saves fail until ``fail`` is cleared."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = True

    def save(self, snapshot: StoreSnapshot) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        super().save(snapshot)


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def store(gateway: MemoryGateway, clock) -> TaskStore:
    return TaskStore(gateway=gateway, max_per_destination=3, clock=clock)


def make_task(task_id: int, destination: str = "C1", **kwargs) -> Task:
    values = {
        "id": task_id,
        "owner_id": "U1",
        "destination": destination,
        "payload": "hello",
        "kind": TaskKind.ONCE,
        "next_run": NOW_MS + 1000,
    }
    values.update(kwargs)
    return Task(**values)


class TestCreateTask:
    """Tests for TaskStore.create_task."""

    def test_create_assigns_increasing_ids(self, store):
        """Test IDs start at 1 and increase."""
        first = store.create_task("U1", "C1", "one", "in 5 minutes")
        second = store.create_task("U1", "C1", "two", "in 10 minutes")

        assert first.id == 1
        assert second.id == 2
        assert first.kind is TaskKind.ONCE
        assert first.next_run == NOW_MS + 5 * 60 * 1000
        assert first.created_at == NOW_MS

    def test_create_persists(self, store, gateway):
        """Test a successful create is saved."""
        store.create_task("U1", "C1", "one", "in 5 minutes")

        assert gateway.save_count == 1
        assert [t.id for t in gateway.load().tasks] == [1]

    def test_limit_reached(self, store):
        """Test max + 1 creates: the last fails and the count stays at max."""
        for i in range(3):
            store.create_task("U1", "C1", f"task {i}", "in 5 minutes")

        with pytest.raises(LimitReachedError) as exc_info:
            store.create_task("U1", "C1", "one too many", "in 5 minutes")

        assert exc_info.value.limit == 3
        assert exc_info.value.destination == "C1"
        assert store.count_enabled("C1") == 3
        assert len(store.list_tasks("C1")) == 3

    def test_limit_is_per_destination(self, store):
        """Test a full destination does not block another one."""
        for i in range(3):
            store.create_task("U1", "C1", f"task {i}", "in 5 minutes")

        task = store.create_task("U1", "C2", "other", "in 5 minutes")

        assert task.destination == "C2"

    def test_limit_checked_before_parse(self, store):
        """Test a full destination reports the limit even for bad text."""
        for i in range(3):
            store.create_task("U1", "C1", f"task {i}", "in 5 minutes")

        with pytest.raises(LimitReachedError):
            store.create_task("U1", "C1", "bad", "whenever")

    def test_parse_error_leaves_store_unchanged(self, store, gateway):
        """Test invalid time text creates nothing and consumes no ID."""
        with pytest.raises(ParseError):
            store.create_task("U1", "C1", "bad", "whenever")

        assert len(store) == 0
        assert gateway.save_count == 0
        assert store.create_task("U1", "C1", "ok", "in 1 minute").id == 1

    def test_out_of_range_amount_stores_nothing(self, store, gateway):
        """Test a delay past the supported range is rejected before insert."""
        for text in ("in 99999999 weeks", "every 99999999 weeks"):
            with pytest.raises(ParseError):
                store.create_task("U1", "C1", "far", text)

        assert len(store) == 0
        assert gateway.save_count == 0

    def test_disabled_tasks_do_not_count(self, store):
        """Test disabled tasks free their slot."""
        for i in range(3):
            store.create_task("U1", "C1", f"task {i}", "in 5 minutes")
        for _ in range(2):
            store.apply_execution_result(1, ExecutionOutcome.FAILED, NOW_MS, max_failures=2)

        assert store.get_task(1).enabled is False
        assert store.create_task("U1", "C1", "fits", "in 5 minutes").id == 4


class TestDeleteTask:
    """Tests for TaskStore.delete_task."""

    def test_delete_by_owner(self, store):
        """Test the owner can delete a task."""
        task = store.create_task("U1", "C1", "bye", "in 5 minutes")

        deleted = store.delete_task(task.id, "U1")

        assert deleted.id == task.id
        assert store.get_task(task.id) is None
        assert store.list_tasks("C1") == []

    def test_delete_by_non_owner(self, store):
        """Test a non-owner is refused and the task is unchanged."""
        task = store.create_task("U1", "C1", "mine", "in 5 minutes")

        with pytest.raises(UnauthorizedError):
            store.delete_task(task.id, "U2")

        assert store.get_task(task.id) == task

    def test_delete_missing(self, store):
        """Test deleting an unknown ID."""
        with pytest.raises(TaskNotFoundError) as exc_info:
            store.delete_task(99, "U1")

        assert exc_info.value.task_id == 99

    def test_ids_not_reused_after_delete(self, store):
        """Test a deleted task's ID is never handed out again."""
        task = store.create_task("U1", "C1", "a", "in 5 minutes")
        store.delete_task(task.id, "U1")

        assert store.create_task("U1", "C1", "b", "in 5 minutes").id == 2


class TestListTasks:
    """Tests for TaskStore.list_tasks."""

    def test_ordered_by_next_run_then_id(self, store):
        """Test ascending next_run with ties broken by ID."""
        store.insert(make_task(1, next_run=NOW_MS + 3000))
        store.insert(make_task(2, next_run=NOW_MS + 1000))
        store.insert(make_task(3, next_run=NOW_MS + 1000))

        assert [t.id for t in store.list_tasks("C1")] == [2, 3, 1]

    def test_listing_is_idempotent(self, store):
        """Test two listings without mutation return the same sequence."""
        store.create_task("U1", "C1", "a", "in 10 minutes")
        store.create_task("U1", "C1", "b", "daily 9am")
        store.create_task("U1", "C1", "c", "every 2 minutes")

        assert store.list_tasks("C1") == store.list_tasks("C1")

    def test_returns_copies(self, store):
        """Test mutating a listed task does not touch the store."""
        store.create_task("U1", "C1", "a", "in 10 minutes")

        store.list_tasks("C1")[0].payload = "changed"

        assert store.get_task(1).payload == "a"

    def test_unknown_destination(self, store):
        """Test an unknown destination lists nothing."""
        assert store.list_tasks("nowhere") == []


class TestIndexPrimitives:
    """Tests for insert/remove keeping both indexes in sync."""

    def test_insert_and_remove(self, store):
        """Test both indexes follow insert and remove."""
        store.insert(make_task(5, destination="C9"))

        assert store.count_enabled("C9") == 1
        assert store.get_task(5) is not None

        store.remove(5)

        assert store.count_enabled("C9") == 0
        assert store.get_task(5) is None
        assert len(store) == 0

    def test_insert_duplicate_id(self, store):
        """Test a duplicate ID is rejected."""
        store.insert(make_task(1))

        with pytest.raises(ValueError):
            store.insert(make_task(1, destination="C2"))

        assert store.list_tasks("C2") == []

    def test_insert_advances_id_counter(self, store):
        """Test new IDs continue after the largest inserted ID."""
        store.insert(make_task(41))

        assert store.create_task("U1", "C2", "x", "in 1 minute").id == 42

    def test_remove_missing(self, store):
        """Test removing an unknown ID."""
        with pytest.raises(TaskNotFoundError):
            store.remove(1)


class TestTaskValidation:
    """Tests for kind-specific field validation."""

    def test_once_rejects_interval(self):
        """Test an interval on a once task is rejected."""
        with pytest.raises(ValueError):
            make_task(1, interval_ms=1000)

    def test_weekly_requires_weekday(self):
        """Test a weekly task needs a weekday."""
        with pytest.raises(ValueError):
            make_task(1, kind=TaskKind.RECURRING_WEEKLY, time_of_day=TimeOfDay(9, 0))

    def test_interval_requires_positive_interval(self):
        """Test an interval task needs a positive interval."""
        with pytest.raises(ValueError):
            make_task(1, kind=TaskKind.INTERVAL_FROM_NOW, interval_ms=0)


class TestApplyExecutionResult:
    """Tests for the reschedule policy."""

    def test_once_removed(self, store):
        """Test a delivered once task is removed."""
        store.insert(make_task(1))

        record = store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS)

        assert record.removed is True
        assert record.next_run is None
        assert store.get_task(1) is None

    def test_daily_advances_fixed_day(self, store):
        """Test daily tasks advance by exactly 24h from the scheduled time."""
        store.insert(
            make_task(
                1,
                kind=TaskKind.RECURRING_DAILY,
                time_of_day=TimeOfDay(14, 0),
                next_run=NOW_MS,
            )
        )

        record = store.apply_execution_result(
            1, ExecutionOutcome.DELIVERED, NOW_MS + 400
        )

        assert record.next_run == NOW_MS + DAY_MS
        assert store.get_task(1).next_run == NOW_MS + DAY_MS

    def test_weekly_advances_fixed_week(self, store):
        """Test weekly tasks advance by exactly 7 days."""
        store.insert(
            make_task(
                1,
                kind=TaskKind.RECURRING_WEEKLY,
                weekday=0,
                time_of_day=TimeOfDay(14, 0),
                next_run=NOW_MS,
            )
        )

        store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS + 400)

        assert store.get_task(1).next_run == NOW_MS + WEEK_MS

    def test_daily_skips_missed_days(self, store):
        """Test a daily task overdue by days lands on the next future slot."""
        store.insert(
            make_task(
                1,
                kind=TaskKind.RECURRING_DAILY,
                time_of_day=TimeOfDay(14, 0),
                next_run=NOW_MS - 3 * DAY_MS,
            )
        )

        store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS + 10)

        assert store.get_task(1).next_run == NOW_MS + DAY_MS

    def test_interval_anchored_to_fire_time(self, store):
        """Test interval tasks reschedule from the actual fire time."""
        store.insert(
            make_task(1, kind=TaskKind.INTERVAL_FROM_NOW, interval_ms=1000, next_run=NOW_MS)
        )

        store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS + 250)

        assert store.get_task(1).next_run == NOW_MS + 1250

    def test_failure_leaves_schedule(self, store):
        """Test a failed delivery keeps next_run and counts the failure."""
        store.insert(make_task(1, next_run=NOW_MS))

        record = store.apply_execution_result(1, ExecutionOutcome.FAILED, NOW_MS)

        task = store.get_task(1)
        assert record.outcome is ExecutionOutcome.FAILED
        assert task.next_run == NOW_MS
        assert task.failure_count == 1
        assert task.enabled is True

    def test_failures_disable_at_threshold(self, store):
        """Test the task is disabled when failures reach the threshold."""
        store.insert(make_task(1, next_run=NOW_MS))

        first = store.apply_execution_result(
            1, ExecutionOutcome.FAILED, NOW_MS, max_failures=2
        )
        second = store.apply_execution_result(
            1, ExecutionOutcome.FAILED, NOW_MS, max_failures=2
        )

        assert first.disabled is False
        assert second.disabled is True
        assert store.get_task(1).enabled is False
        assert store.list_tasks("C1") == []
        assert store.due_tasks(NOW_MS) == []

    def test_success_resets_failure_count(self, store):
        """Test a delivered recurring task clears its failure count."""
        store.insert(
            make_task(1, kind=TaskKind.INTERVAL_FROM_NOW, interval_ms=1000, next_run=NOW_MS)
        )
        store.apply_execution_result(1, ExecutionOutcome.FAILED, NOW_MS)

        store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS + 1)

        assert store.get_task(1).failure_count == 0

    def test_interval_past_range_is_disabled(self, store):
        """Test a reschedule past the supported range disables the task."""
        interval = MAX_RUN_MS - NOW_MS
        store.insert(
            make_task(
                1, kind=TaskKind.INTERVAL_FROM_NOW, interval_ms=interval, next_run=NOW_MS
            )
        )

        record = store.apply_execution_result(1, ExecutionOutcome.DELIVERED, NOW_MS + 1)

        assert record.disabled is True
        assert store.get_task(1).enabled is False
        assert store.due_tasks(MAX_RUN_MS + 1) == []

    def test_deleted_meanwhile(self, store):
        """Test applying a result to a deleted task is a no-op."""
        assert store.apply_execution_result(7, ExecutionOutcome.DELIVERED, NOW_MS) is None

    def test_persist_false_defers_save(self, store, gateway):
        """Test batching leaves the store dirty until flushed."""
        store.insert(make_task(1, next_run=NOW_MS))
        store.flush()
        saves = gateway.save_count

        store.apply_execution_result(
            1, ExecutionOutcome.DELIVERED, NOW_MS, persist=False
        )

        assert gateway.save_count == saves
        assert store.is_dirty is True
        store.flush()
        assert gateway.save_count == saves + 1


class TestDueTasks:
    """Tests for TaskStore.due_tasks."""

    def test_due_inclusive_and_ordered(self, store):
        """Test tasks at or before now are due, soonest first."""
        store.insert(make_task(1, next_run=NOW_MS))
        store.insert(make_task(2, next_run=NOW_MS - 5))
        store.insert(make_task(3, next_run=NOW_MS + 1))

        assert [t.id for t in store.due_tasks(NOW_MS)] == [2, 1]


class TestStorePersistence:
    """Tests for load and flush."""

    def test_load_rebuilds_indexes(self, gateway, clock):
        """Test a fresh store loaded from the gateway matches the original."""
        original = TaskStore(gateway=gateway, clock=clock)
        original.create_task("U1", "C1", "a", "in 5 minutes")
        original.create_task("U2", "C2", "b", "weekly friday 10am")
        original.create_task("U1", "C1", "c", "every 30 seconds")
        original.delete_task(1, "U1")

        restored = TaskStore(gateway=gateway, clock=clock)
        count = restored.load()

        assert count == 2
        assert restored.list_tasks("C1") == original.list_tasks("C1")
        assert restored.list_tasks("C2") == original.list_tasks("C2")
        assert restored.snapshot().next_id == 4

    def test_save_failure_is_swallowed_and_retried(self, clock):
        """Test a failed save keeps the change in memory and retries later."""
        gateway = FailingGateway()
        store = TaskStore(gateway=gateway, clock=clock)

        task = store.create_task("U1", "C1", "a", "in 5 minutes")

        assert store.get_task(task.id) is not None
        assert store.is_dirty is True
        assert gateway.save_count == 0

        gateway.fail = False
        assert store.flush() is True
        assert store.is_dirty is False
        assert [t.id for t in gateway.load().tasks] == [task.id]

    def test_unstorable_task_fails_flush_without_raising(self, temp_data_dir, clock):
        """Test a task the JSON gateway rejects leaves the store dirty."""
        store = TaskStore(
            gateway=JsonFileGateway(f"{temp_data_dir}/tasks.json"), clock=clock
        )
        store.insert(make_task(0))

        assert store.flush() is False
        assert store.is_dirty is True
        assert store.get_task(0) is not None

    def test_created_in_configured_timezone(self, gateway, clock):
        """Test wall-clock expressions use the store's timezone."""
        seoul = ZoneInfo("Asia/Seoul")
        clock.now = datetime(2024, 1, 15, 8, 0, tzinfo=seoul)
        store = TaskStore(gateway=gateway, tz=seoul, clock=clock)

        task = store.create_task("U1", "C1", "a", "at 9am")

        assert task.next_run == to_epoch_ms(clock.now + timedelta(hours=1))
