# src/timekeeper/core/scheduler/executor.py
"""Executor for due tasks.

Resolves payload templates and performs one bounded delivery attempt.
"""

import asyncio
import logging
from datetime import timezone, tzinfo

from timekeeper.core.scheduler.models import (
    Delivery,
    ExecutionOutcome,
    Task,
    from_epoch_ms,
)
from timekeeper.core.scheduler.notification import DeliveryProtocol

logger = logging.getLogger(__name__)


def render_payload(payload: str, fired_at: int, tz: tzinfo | None = None) -> str:
    """Substitute {date}, {time} and {day} with values at fire time.

    Args:
        payload: Task payload text.
        fired_at: Fire time (epoch milliseconds).
        tz: Timezone for the substituted values. Defaults to UTC.

    Returns:
        Payload with every marker replaced.
    """
    now = from_epoch_ms(fired_at, tz or timezone.utc)
    return (
        payload.replace("{date}", now.strftime("%Y-%m-%d"))
        .replace("{time}", now.strftime("%H:%M"))
        .replace("{day}", now.strftime("%A"))
    )


async def run_due_task(
    notifier: DeliveryProtocol,
    task: Task,
    fired_at: int,
    timeout: float | None = None,
    tz: tzinfo | None = None,
) -> ExecutionOutcome:
    """Deliver a due task.

    Called once per due task per scan. Never raises: failures, exceptions
    and timeouts are logged and reported as FAILED.

    Args:
        notifier: Delivery backend.
        task: Task that is due.
        fired_at: Fire time (epoch milliseconds).
        timeout: Seconds to wait for the notifier. None waits forever.
        tz: Timezone for template substitution.

    Returns:
        DELIVERED or FAILED.
    """
    delivery = Delivery(
        task_id=task.id,
        owner_id=task.owner_id,
        destination=task.destination,
        message=render_payload(task.payload, fired_at, tz),
        kind=task.kind,
        fired_at=fired_at,
    )

    logger.info(
        "Executing task: id=%s, kind=%s, destination=%s, payload=%s",
        task.id,
        task.kind.value,
        task.destination,
        task.payload[:50],
    )

    try:
        delivered = await asyncio.wait_for(notifier.deliver(delivery), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Delivery for task %s timed out after %ss", task.id, timeout)
        return ExecutionOutcome.FAILED
    except Exception as e:
        logger.exception("Delivery for task %s failed: %s", task.id, e)
        return ExecutionOutcome.FAILED

    if not delivered:
        logger.error("Delivery for task %s was rejected by the notifier", task.id)
        return ExecutionOutcome.FAILED

    logger.info("Task %s delivered", task.id)
    return ExecutionOutcome.DELIVERED
