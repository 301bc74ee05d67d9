from __future__ import annotations

import dataclasses
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from billtrack_client.api_client import ConcurrentSessionConflict
from billtrack_client.models import TimeEntry

MUTATIONS = {"create", "start_progress", "close", "delete"}


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self) -> None:
        self.wall = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
        self.mono = 1000.0

    def now(self) -> datetime:
        return self.wall

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.wall += timedelta(seconds=seconds)
        self.mono += seconds

    def jump_wall(self, seconds: float) -> None:
        self.wall += timedelta(seconds=seconds)


class FakeStore:
    """In-memory store with the server's single in-progress rule."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.entries: Dict[int, TimeEntry] = {}
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._next_id = 1

    def _record(self, name: str) -> None:
        self.calls.append(name)
        failure = self.failures.pop(name, None)
        if failure is not None:
            raise failure

    @property
    def mutations(self) -> List[str]:
        return [name for name in self.calls if name in MUTATIONS]

    def running(self) -> Optional[TimeEntry]:
        for entry in self.entries.values():
            if entry.in_progress:
                return entry
        return None

    def add(self, task_id: int, hours: float = 0.0, progress_start: Optional[datetime] = None) -> TimeEntry:
        entry = TimeEntry(self._next_id, task_id, self.clock.now(), hours, progress_start)
        self.entries[entry.entry_id] = entry
        self._next_id += 1
        return dataclasses.replace(entry)

    def create(self, task_id: int, start_time: datetime) -> TimeEntry:
        self._record("create")
        entry = TimeEntry(self._next_id, task_id, start_time, 0.0)
        self.entries[entry.entry_id] = entry
        self._next_id += 1
        return dataclasses.replace(entry)

    def start_progress(self, entry_id: int) -> TimeEntry:
        self._record("start_progress")
        entry = self.entries[entry_id]
        running = self.running()
        if running is not None and running.entry_id != entry_id:
            raise ConcurrentSessionConflict("busy", existing_entry_id=running.entry_id)
        if entry.progress_start_time is None:
            entry.progress_start_time = self.clock.now()
        return dataclasses.replace(entry)

    def close(self, entry_id: int, closed_at: Optional[datetime] = None) -> TimeEntry:
        self._record("close")
        entry = self.entries[entry_id]
        if entry.progress_start_time is None:
            raise ConcurrentSessionConflict("not in progress")
        closed_at = closed_at or self.clock.now()
        delta = max((closed_at - entry.progress_start_time).total_seconds(), 0.0)
        entry.total_duration_in_hour += delta / 3600
        entry.progress_start_time = None
        return dataclasses.replace(entry)

    def find_in_progress(self) -> Optional[TimeEntry]:
        self._record("find_in_progress")
        running = self.running()
        return dataclasses.replace(running) if running else None

    def query_by_date_range(self, start_date: date, end_date: date) -> List[TimeEntry]:
        self._record("query_by_date_range")
        return [
            dataclasses.replace(entry)
            for entry in self.entries.values()
            if start_date <= entry.start_time.date() <= end_date
        ]

    def delete(self, entry_id: int) -> None:
        self._record("delete")
        self.entries.pop(entry_id, None)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> FakeStore:
    return FakeStore(clock)
