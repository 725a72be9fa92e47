"""
Time entry service: local-first time entries plus the small aggregations the
time tracking views need.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from expensesync.domain.models import (
    EntityType,
    TimeEntry,
    TimeEntryCreate,
    TimeEntryUpdate,
    apply_time_entry_update,
)
from expensesync.services.base import EntityService


class TimeEntryService(EntityService[TimeEntry]):
    entity_type = EntityType.TIME_ENTRY

    def _build(self, record_id: str, owner_id: str, data: TimeEntryCreate) -> TimeEntry:
        return TimeEntry(
            id=record_id,
            owner_id=owner_id,
            date=data.date,
            hours=data.hours,
            description=data.description,
            project=data.project,
        )

    def _merge(self, existing: TimeEntry, update: TimeEntryUpdate) -> TimeEntry:
        return apply_time_entry_update(existing, update)

    def _sorted(self, records: List[TimeEntry]) -> List[TimeEntry]:
        """Newest date first."""
        return sorted(records, key=lambda entry: entry.date, reverse=True)

    async def _entries(self, owner_id: Optional[str]) -> List[TimeEntry]:
        owner_id = owner_id or self._identity()
        if not owner_id:
            return []
        return self._sorted(await self.records.get_all(owner_id))

    async def total_hours(
        self, owner_id: Optional[str], start: datetime, end: datetime
    ) -> float:
        """Hours logged with `start <= date <= end`."""
        return sum(
            entry.hours for entry in await self._entries(owner_id) if start <= entry.date <= end
        )

    async def group_by_date(self, owner_id: Optional[str] = None) -> Dict[str, List[TimeEntry]]:
        """
        Entries keyed by ISO calendar date (``YYYY-MM-DD``), newest day first.
        """
        grouped: Dict[str, List[TimeEntry]] = OrderedDict()
        for entry in await self._entries(owner_id):
            grouped.setdefault(entry.date.date().isoformat(), []).append(entry)
        return grouped


__all__ = ["TimeEntryService"]
