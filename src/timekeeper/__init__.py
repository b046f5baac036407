"""Timekeeper: persistent, time-triggered message delivery."""

__version__ = "0.1.0"
