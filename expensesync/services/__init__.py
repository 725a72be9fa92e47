"""
Entity services for expensesync: the local-first facades the application code
calls to read and mutate receipts and time entries.
"""

from expensesync.services.base import EntityService
from expensesync.services.receipts import ReceiptService
from expensesync.services.time_entries import TimeEntryService

__all__ = ["EntityService", "ReceiptService", "TimeEntryService"]
