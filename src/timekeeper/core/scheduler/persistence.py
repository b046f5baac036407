# src/timekeeper/core/scheduler/persistence.py
"""Snapshot persistence for the task store.

The store is written as one JSON document. The destination index is not
stored; TaskStore rebuilds it from the task list when loading.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from timekeeper.core.scheduler.errors import PersistenceError
from timekeeper.core.scheduler.models import StoreSnapshot, Task, TaskKind

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class PersistenceGateway(Protocol):
    """Protocol for durable snapshot storage."""

    def save(self, snapshot: StoreSnapshot) -> None:
        """Write the snapshot.

        Raises:
            PersistenceError: If the snapshot could not be written.
        """
        ...

    def load(self) -> StoreSnapshot:
        """Read the last saved snapshot.

        Returns:
            The snapshot, or an empty one if nothing was saved yet.

        Raises:
            PersistenceError: If stored data exists but cannot be read.
        """
        ...


class TaskRecord(BaseModel):
    """Stored form of a Task."""

    id: int = Field(..., ge=1)
    owner_id: str
    destination: str
    payload: str
    kind: TaskKind
    next_run: int
    interval_ms: int | None = None
    weekday: int | None = Field(None, ge=0, le=6)
    time_of_day: str | None = Field(None, pattern=r"^\d{2}:\d{2}$")
    enabled: bool = True
    created_at: int = 0
    failure_count: int = Field(0, ge=0)


class SnapshotDocument(BaseModel):
    """Top-level JSON document written by JsonFileGateway."""

    version: int = SNAPSHOT_VERSION
    next_id: int = Field(1, ge=1)
    tasks: list[TaskRecord] = Field(default_factory=list)


class JsonFileGateway:
    """Stores snapshots in a single JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash mid-write never leaves a truncated
    file behind. Concurrent saves are serialized; the last one wins.

    Attributes:
        path: Location of the JSON file.
    """

    def __init__(self, path: str | Path = "data/tasks.json") -> None:
        """Initialize the gateway.

        Args:
            path: Location of the JSON file. Its directory is created on
                first save.
        """
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, snapshot: StoreSnapshot) -> None:
        """Write the snapshot atomically.

        Args:
            snapshot: Store contents to persist.

        Raises:
            PersistenceError: If the snapshot is invalid or the file could
                not be written.
        """
        try:
            document = SnapshotDocument(
                next_id=snapshot.next_id,
                tasks=[TaskRecord(**task.to_dict()) for task in snapshot.tasks],
            )
        except ValidationError as e:
            raise PersistenceError(f"Invalid snapshot for {self.path}: {e}") from e
        content = document.model_dump_json(indent=2)

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(content)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_path, self.path)
                except BaseException:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
                    raise
            except OSError as e:
                raise PersistenceError(f"Failed to save {self.path}: {e}") from e

        logger.debug("Saved %d tasks to %s", len(snapshot.tasks), self.path)

    def load(self) -> StoreSnapshot:
        """Read the snapshot from disk.

        Returns:
            Loaded snapshot, or an empty snapshot if the file does not exist.

        Raises:
            PersistenceError: If the file cannot be read or is malformed.
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No existing data file at %s, starting fresh", self.path)
            return StoreSnapshot()
        except OSError as e:
            raise PersistenceError(f"Failed to read {self.path}: {e}") from e

        try:
            document = SnapshotDocument.model_validate_json(content)
            tasks = [Task.from_dict(record.model_dump()) for record in document.tasks]
        except (ValidationError, ValueError) as e:
            raise PersistenceError(f"Malformed data file {self.path}: {e}") from e

        next_id = max([document.next_id, *(task.id + 1 for task in tasks)])
        logger.info("Loaded %d tasks from %s", len(tasks), self.path)
        return StoreSnapshot(next_id=next_id, tasks=tasks)


class MemoryGateway:
    """Keeps the last snapshot in memory. Used when no data file is wanted."""

    def __init__(self) -> None:
        self._snapshot = StoreSnapshot()
        self.save_count = 0

    def save(self, snapshot: StoreSnapshot) -> None:
        self._snapshot = StoreSnapshot(
            next_id=snapshot.next_id,
            tasks=[Task.from_dict(task.to_dict()) for task in snapshot.tasks],
        )
        self.save_count += 1

    def load(self) -> StoreSnapshot:
        return StoreSnapshot(
            next_id=self._snapshot.next_id,
            tasks=[Task.from_dict(task.to_dict()) for task in self._snapshot.tasks],
        )
