# src/timekeeper/utils/__init__.py
"""Utility functions for the task scheduler."""

from timekeeper.utils.logging import (
    configure_structured_logging,
    get_scan_id,
    set_scan_id,
)

__all__ = [
    "configure_structured_logging",
    "get_scan_id",
    "set_scan_id",
]
