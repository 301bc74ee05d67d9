"""Data models for the BillTrack client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_HOUR = 3600


@dataclass(slots=True)
class TimeEntry:
    """A time entry as reported by the store."""

    entry_id: int
    task_id: int
    start_time: datetime
    total_duration_in_hour: float = 0.0
    progress_start_time: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self.progress_start_time is not None


@dataclass(slots=True, frozen=True)
class ActiveTracking:
    """The one running session of a user, derived from an in-progress entry."""

    entry_id: int
    task_id: int
    session_started_at: datetime
    progress_started_at: Optional[datetime]
    accumulated_hours: float

    @classmethod
    def from_entry(cls, entry: TimeEntry) -> "ActiveTracking":
        return cls(
            entry_id=entry.entry_id,
            task_id=entry.task_id,
            session_started_at=entry.start_time,
            progress_started_at=entry.progress_start_time,
            accumulated_hours=entry.total_duration_in_hour,
        )

    @property
    def accumulated_seconds(self) -> float:
        return self.accumulated_hours * SECONDS_PER_HOUR

    def elapsed_seconds_at(self, now: datetime) -> float:
        """Wall-clock based elapsed time, never below the accumulated base."""
        if self.progress_started_at is None:
            return self.accumulated_seconds
        running = (now - self.progress_started_at).total_seconds()
        return self.accumulated_seconds + max(running, 0.0)

    def to_dict(self) -> dict[str, object]:
        return {
            "entry_id": self.entry_id,
            "task_id": self.task_id,
            "session_started_at": self.session_started_at.isoformat(),
            "progress_started_at": self.progress_started_at.isoformat() if self.progress_started_at else None,
            "accumulated_hours": self.accumulated_hours,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActiveTracking":
        progress = data.get("progress_started_at")
        return cls(
            entry_id=int(data["entry_id"]),
            task_id=int(data["task_id"]),
            session_started_at=parse_datetime(data["session_started_at"]),
            progress_started_at=parse_datetime(progress) if progress else None,
            accumulated_hours=float(data.get("accumulated_hours", 0.0)),
        )


def parse_datetime(value: str) -> datetime:
    """Parse an ISO timestamp from the API; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = ["ActiveTracking", "TimeEntry", "parse_datetime", "SECONDS_PER_HOUR"]
