"""
expensesync - offline-first synchronization core for an expense and receipt tracker.

Records (receipts and time entries) are created, edited and deleted against a
local SQLite store while the client is disconnected. Mutations are queued
durably and reconciled with the remote API once connectivity returns:

- local-first entity services with an immediate push when online
- a single-flight sync orchestrator (batch push, id remap, pull and merge)
- a connectivity signal driven by transport events and a health probe
- an httpx gateway with tenacity retries for transient failures
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from expensesync.config import Settings, get_settings
from expensesync.connectivity import ConnectivityMonitor, ConnectivityState
from expensesync.gateway import AbstractRemoteGateway, HttpRemoteGateway, RemoteGateway
from expensesync.infrastructure import LocalStore
from expensesync.orchestrator import SyncOrchestrator, SyncState, SyncSummary
from expensesync.services import ReceiptService, TimeEntryService
from expensesync.utils.logging import configure_logging, get_logger
from expensesync.utils.profiler import ProfileStats, profile_block, track_time

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Sync core
    "ConnectivityMonitor",
    "ConnectivityState",
    "LocalStore",
    "SyncOrchestrator",
    "SyncState",
    "SyncSummary",
    # Remote authority
    "AbstractRemoteGateway",
    "HttpRemoteGateway",
    "RemoteGateway",
    # Services
    "ReceiptService",
    "TimeEntryService",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
    "track_time",
]
