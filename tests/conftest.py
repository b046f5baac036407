# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- Singleton reset (scheduler, lifecycle manager)
- Temporary data directories and settings
- A controllable clock and a recording delivery fake
"""

import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from timekeeper.config import Settings
from timekeeper.core.scheduler.models import Delivery

UTC = ZoneInfo("UTC")

# Monday
BASE_TIME = datetime(2024, 1, 15, 14, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """DeliveryProtocol fake that records every delivery it receives.

    Attributes:
        deliveries: Deliveries in the order they were received.
        result: Value returned by deliver(), or an exception to raise.
    """

    def __init__(self, result: bool | Exception = True) -> None:
        self.deliveries: list[Delivery] = []
        self.result = result

    async def deliver(self, delivery: Delivery) -> bool:
        self.deliveries.append(delivery)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def temp_data_dir() -> Generator[str, None, None]:
    """Create a temporary data directory.

    Yields:
        Path to temporary directory.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at BASE_TIME until advanced."""
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Recording notifier that accepts every delivery."""
    return RecordingNotifier()


@pytest.fixture
def make_settings(temp_data_dir: str) -> Callable[..., Settings]:
    """Factory for Settings pointing at the temporary data directory.

    Keyword arguments override individual settings; nothing is read from
    the environment or a .env file.
    """

    def factory(**overrides) -> Settings:
        values = {
            "data_file": f"{temp_data_dir}/tasks.json",
            "scan_interval_seconds": 0.05,
            "max_tasks_per_destination": 3,
            "delivery_timeout_seconds": 1.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset process-wide scheduler and lifecycle manager around each test."""
    from timekeeper.core.lifecycle import reset_lifecycle_manager
    from timekeeper.core.scheduler.manager import reset_scheduler

    reset_scheduler()
    reset_lifecycle_manager()

    yield

    reset_scheduler()
    reset_lifecycle_manager()
