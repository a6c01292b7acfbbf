"""Utility modules for grantshield."""

from .datetime import Clock, SystemClock, format_iso, parse_iso
from .threading import PeriodicTask, start_background_task

__all__ = [
    "Clock",
    "SystemClock",
    "format_iso",
    "parse_iso",
    "PeriodicTask",
    "start_background_task",
]
