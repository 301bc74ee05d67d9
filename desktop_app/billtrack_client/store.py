"""Store seam between the tracking manager and the API."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Protocol

from .api_client import ApiClient
from .models import TimeEntry


class TimeEntryStore(Protocol):
    """Durable record of time entries; enforces one in-progress entry per user."""

    def create(self, task_id: int, start_time: datetime) -> TimeEntry: ...

    def start_progress(self, entry_id: int) -> TimeEntry: ...

    def close(self, entry_id: int, closed_at: Optional[datetime] = None) -> TimeEntry: ...

    def find_in_progress(self) -> Optional[TimeEntry]: ...

    def query_by_date_range(self, start_date: date, end_date: date) -> List[TimeEntry]: ...

    def delete(self, entry_id: int) -> None: ...


class ApiTimeEntryStore:
    """TimeEntryStore backed by the `/time-entries` routes."""

    def __init__(self, api_client: ApiClient) -> None:
        self.api_client = api_client

    def create(self, task_id: int, start_time: datetime) -> TimeEntry:
        return self.api_client.create_time_entry(task_id, start_time, 0.0)

    def start_progress(self, entry_id: int) -> TimeEntry:
        return self.api_client.start_time_entry(entry_id)

    def close(self, entry_id: int, closed_at: Optional[datetime] = None) -> TimeEntry:
        return self.api_client.stop_time_entry(entry_id, closed_at)

    def find_in_progress(self) -> Optional[TimeEntry]:
        return self.api_client.get_in_progress_entry()

    def query_by_date_range(self, start_date: date, end_date: date) -> List[TimeEntry]:
        return self.api_client.list_time_entries(start_date, end_date)

    def delete(self, entry_id: int) -> None:
        self.api_client.delete_time_entry(entry_id)


__all__ = ["ApiTimeEntryStore", "TimeEntryStore"]
