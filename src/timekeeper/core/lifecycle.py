# src/timekeeper/core/lifecycle.py
"""Lifecycle management for long-lived components.

Provides a centralized manager for startup and shutdown of the process-wide
components (SchedulerManager, etc.).

Example:
    >>> from timekeeper.core.lifecycle import get_lifecycle_manager
    >>> from timekeeper.core.scheduler import get_scheduler
    >>>
    >>> lm = get_lifecycle_manager()
    >>> lm.register("scheduler", get_scheduler())
    >>> await lm.startup()
    >>> # ... application runs ...
    >>> await lm.shutdown()
"""

import inspect
import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class LifecycleComponent(Protocol):
    """Protocol for components with lifecycle management."""

    def shutdown(self) -> None:
        """Shutdown the component and release resources."""
        ...


async def _call(method: Any) -> None:
    result = method()
    if inspect.isawaitable(result):
        await result


class LifecycleManager:
    """Manages startup and shutdown of registered components."""

    def __init__(self) -> None:
        self._components: list[tuple[str, Any]] = []
        self._started: list[tuple[str, Any]] = []

    def register(self, name: str, component: Any) -> None:
        """Register a component. Must have start()/startup() and shutdown().

        Either method may be a coroutine function.
        """
        self._components.append((name, component))
        logger.debug("Registered lifecycle component: %s", name)

    async def startup(self) -> None:
        """Start all registered components in order.

        Skips if already started. If a component fails to start, the ones
        already started are shut down and the error is re-raised.
        """
        if self._started:
            logger.debug("Lifecycle manager already started")
            return

        for name, component in self._components:
            logger.info("Starting %s", name)
            try:
                if hasattr(component, "start"):
                    await _call(component.start)
                elif hasattr(component, "startup"):
                    await _call(component.startup)
            except Exception:
                logger.error("Failed to start %s", name)
                await self.shutdown()
                raise
            self._started.append((name, component))

        logger.info(
            "All lifecycle components started (%d total)", len(self._components)
        )

    async def shutdown(self) -> None:
        """Shutdown started components in reverse order.

        A component that fails to stop is logged and the rest still stop.
        """
        if not self._started:
            logger.debug("Lifecycle manager not started, skipping shutdown")
            return

        for name, component in reversed(self._started):
            logger.info("Stopping %s", name)
            try:
                if hasattr(component, "shutdown"):
                    await _call(component.shutdown)
            except Exception as e:
                logger.error("Error shutting down %s: %s", name, e)

        self._started = []
        logger.info("All lifecycle components stopped")

    @property
    def is_started(self) -> bool:
        """Check if any component is currently started.

        Returns:
            True between a successful startup() and the next shutdown().
        """
        return bool(self._started)

    @property
    def component_count(self) -> int:
        """Get the number of registered components.

        Returns:
            Number of registered components.
        """
        return len(self._components)


_lifecycle_manager: LifecycleManager | None = None


def get_lifecycle_manager() -> LifecycleManager:
    """Get the process-wide lifecycle manager.

    Returns:
        The global LifecycleManager instance.
    """
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = LifecycleManager()
    return _lifecycle_manager


def reset_lifecycle_manager() -> None:
    """Reset the global lifecycle manager (for testing)."""
    global _lifecycle_manager
    _lifecycle_manager = None
