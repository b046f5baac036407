# src/timekeeper/main.py
"""Process entry point.

Loads settings, wires the delivery backend into the scheduler and keeps
the scan loop running until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from timekeeper.config import Settings, settings  # noqa: E402
from timekeeper.core.lifecycle import get_lifecycle_manager  # noqa: E402
from timekeeper.core.scheduler.manager import get_scheduler  # noqa: E402
from timekeeper.core.scheduler.notification import (  # noqa: E402
    DeliveryProtocol,
    LoggingNotifier,
    WebhookNotifier,
)
from timekeeper.utils.logging import configure_structured_logging  # noqa: E402

logger = logging.getLogger(__name__)


def create_notifier(config: Settings) -> DeliveryProtocol:
    """Pick the delivery backend from settings.

    Args:
        config: Application settings.

    Returns:
        WebhookNotifier if a webhook URL is configured, else LoggingNotifier.
    """
    if config.webhook_url:
        return WebhookNotifier(
            config.webhook_url, timeout=config.delivery_timeout_seconds
        )
    logger.warning("TIMEKEEPER_WEBHOOK_URL not set - deliveries are only logged")
    return LoggingNotifier()


async def run(config: Settings, stop: asyncio.Event | None = None) -> None:
    """Start the scheduler and block until stopped.

    Args:
        config: Application settings.
        stop: Event that ends the run when set. Defaults to one set by
            SIGINT/SIGTERM.
    """
    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Not available on Windows event loops; Ctrl+C still raises
                break

    scheduler = get_scheduler(config)
    scheduler.set_notifier(create_notifier(config))

    lifecycle = get_lifecycle_manager()
    lifecycle.register("scheduler", scheduler)
    await lifecycle.startup()

    logger.info("Timekeeper running (timezone=%s)", config.timezone)
    try:
        await stop.wait()
        logger.info("Received shutdown signal")
    finally:
        await lifecycle.shutdown()
        logger.info("Timekeeper stopped")


def main() -> None:
    """Entry point with graceful shutdown handling."""
    configure_structured_logging(settings.log_level, json_format=settings.log_json)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
