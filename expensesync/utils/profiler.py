"""
Timing utilities for expensesync.

This module provides a context manager and a decorator to measure:
- Wall-clock time (perf_counter)
- Resident memory of the client process at the end of the block (psutil)

Usage examples:
    from expensesync.utils.profiler import profile_block, track_time

    with profile_block("pull") as stats:
        ...

    class Orchestrator:
        @track_time(label="sync cycle", level=logging.INFO)
        async def sync_all(self):
            ...
"""

from __future__ import annotations

import contextlib
import functools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generator, Optional, TypeVar

import psutil

from expensesync.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ProfileStats:
    """
    Container for timing measurements.
    """

    label: str
    started_at: Optional[datetime] = field(default=None)
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    rss_bytes: Optional[int] = field(default=None)
    success: bool = field(default=True)
    error: Optional[BaseException] = field(default=None)

    @property
    def duration_ms(self) -> float:
        return round(self.duration_seconds * 1000, 2)


def _rss_bytes() -> Optional[int]:
    try:
        return psutil.Process().memory_info().rss
    except psutil.Error:
        return None


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager to time a block of code.

    Exceptions raised inside the block propagate; the stats record the failure.
    """
    stats = ProfileStats(label=label, started_at=datetime.now(timezone.utc))
    stats.start_ts = time.perf_counter()
    try:
        yield stats
    except BaseException as exc:
        stats.success = False
        stats.error = exc
        raise
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        stats.rss_bytes = _rss_bytes()


def track_time(
    label: Optional[str] = None,
    level: int = logging.DEBUG,
    threshold_ms: float = 0.0,
    callback: Optional[Callable[[ProfileStats], None]] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to time an async function and log how long it took.

    Parameters
    ----------
    label : str, optional
        Label for the log line. Defaults to the qualified function name.
    level : int
        Logging level for the timing line.
    threshold_ms : float
        Only log when the call took at least this many milliseconds.
    callback : callable, optional
        Receives the ProfileStats of every call. Errors raised by the callback
        are logged and ignored.

    Example
    -------
        @track_time(label="API call", threshold_ms=100)
        async def call_api():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        tag = label or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            stats: Optional[ProfileStats] = None
            try:
                with profile_block(tag) as stats:
                    return await func(*args, **kwargs)
            finally:
                if stats is not None:
                    _report(stats, level, threshold_ms, callback)

        return wrapper

    return decorator


def _report(
    stats: ProfileStats,
    level: int,
    threshold_ms: float,
    callback: Optional[Callable[[ProfileStats], None]],
) -> None:
    if stats.duration_ms >= threshold_ms:
        marker = "OK" if stats.success else "FAILED"
        log.log(
            level,
            f"[{marker}] {stats.label}: {stats.duration_ms}ms",
            extra={"label": stats.label, "duration_ms": stats.duration_ms, "success": stats.success},
        )
    if callback is not None:
        try:
            callback(stats)
        except Exception:  # noqa: BLE001 - a reporting hook must not break the timed call
            log.exception("track_time callback failed", extra={"label": stats.label})


__all__ = ["ProfileStats", "profile_block", "track_time"]
