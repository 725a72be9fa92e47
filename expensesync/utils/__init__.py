"""
Utilities package for expensesync.

Exports shared helpers for logging, timing, and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from expensesync.utils.logging import configure_logging, get_logger
from expensesync.utils.profiler import ProfileStats, profile_block, track_time

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
    "track_time",
]
