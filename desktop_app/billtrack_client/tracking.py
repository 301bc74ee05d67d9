"""Client-side owner of the "one running session per user" rule.

The manager keeps a single cursor (the current :class:`ActiveTracking` or
``None``) that only changes after the store has confirmed a transition. All
mutating calls are serialized through one lock; readers such as elapsed-time
pollers see an immutable snapshot and never touch the network.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, List, Optional

from .api_client import ApiError, ConcurrentSessionConflict
from .cache import TrackingCache
from .models import ActiveTracking, TimeEntry
from .store import TimeEntryStore

logger = logging.getLogger(__name__)

Observer = Callable[[Optional[ActiveTracking]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Snapshot:
    tracking: Optional[ActiveTracking] = None
    anchor_monotonic: float = 0.0
    anchor_elapsed: float = 0.0


class ActiveTrackingManager:
    """Start, restart and stop the user's single running time entry."""

    def __init__(
        self,
        store: TimeEntryStore,
        *,
        cache: Optional[TrackingCache] = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        hydrate: bool = True,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock
        self._monotonic = monotonic
        self._lock = RLock()
        self._snapshot = _Snapshot()
        self._observers: List[Observer] = []
        if hydrate:
            self.refresh()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def current(self) -> Optional[ActiveTracking]:
        return self._snapshot.tracking

    @property
    def cached_hint(self) -> Optional[ActiveTracking]:
        """Last confirmed state from a previous run, for display only."""
        return self._cache.load() if self._cache else None

    def is_tracking(self) -> bool:
        return self._snapshot.tracking is not None

    def elapsed_seconds(self) -> int:
        snapshot = self._snapshot
        if snapshot.tracking is None:
            return 0
        running = max(self._monotonic() - snapshot.anchor_monotonic, 0.0)
        return int(math.floor(snapshot.anchor_elapsed + running))

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, callback: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, tracking: Optional[ActiveTracking]) -> None:
        for callback in list(self._observers):
            try:
                callback(tracking)
            except Exception:
                logger.exception("Tracking observer %r failed", callback)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def refresh(self) -> Optional[ActiveTracking]:
        """Re-read the in-progress entry from the store."""
        with self._lock:
            self._apply(self._store.find_in_progress())
            return self._snapshot.tracking

    def start(self, task_id: int) -> None:
        with self._lock:
            stopped = self._close_current()
            try:
                entry = self._store.create(task_id, self._clock())
            except ApiError:
                if stopped:
                    self._apply(None)
                raise
            try:
                started = self._start_progress(entry.entry_id)
            except ApiError:
                self._discard(entry)
                if stopped:
                    self._apply(None)
                raise
            logger.info("Tracking task %s in entry %s", task_id, started.entry_id)
            self._rehydrate(started)

    def restart(self, entry: TimeEntry) -> None:
        with self._lock:
            current = self._snapshot.tracking
            stopped = False
            if current is None or current.entry_id != entry.entry_id:
                stopped = self._close_current()
            try:
                started = self._start_progress(entry.entry_id)
            except ApiError:
                if stopped:
                    self._apply(None)
                raise
            logger.info("Resumed entry %s at %.4f h", started.entry_id, started.total_duration_in_hour)
            self._rehydrate(started)

    def stop(self) -> Optional[TimeEntry]:
        with self._lock:
            current = self._snapshot.tracking
            if current is None:
                return None
            try:
                closed = self._store.close(current.entry_id, self._clock())
            except ConcurrentSessionConflict:
                logger.info("Entry %s was already closed elsewhere; re-hydrating", current.entry_id)
                self.refresh()
                return None
            logger.info("Stopped entry %s at %.4f h", closed.entry_id, closed.total_duration_in_hour)
            self._rehydrate(None)
            return closed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _close_current(self) -> bool:
        current = self._snapshot.tracking
        if current is None:
            return False
        try:
            self._store.close(current.entry_id, self._clock())
        except ConcurrentSessionConflict:
            # Closed by another client already.
            logger.info("Entry %s was no longer in progress", current.entry_id)
        return True

    def _start_progress(self, entry_id: int) -> TimeEntry:
        try:
            return self._store.start_progress(entry_id)
        except ConcurrentSessionConflict as exc:
            existing = exc.existing_entry_id
            if existing is None or existing == entry_id:
                raise
            logger.info("Closing entry %s left in progress by another client", existing)
            self._store.close(existing, self._clock())
            return self._store.start_progress(entry_id)

    def _discard(self, entry: TimeEntry) -> None:
        try:
            self._store.delete(entry.entry_id)
        except ApiError as exc:
            logger.warning("Could not remove unstarted entry %s: %s", entry.entry_id, exc)

    def _rehydrate(self, confirmed: Optional[TimeEntry]) -> None:
        try:
            entry = self._store.find_in_progress()
        except ApiError as exc:
            logger.warning("Re-hydration failed, keeping the confirmed transition: %s", exc)
            entry = confirmed
        self._apply(entry)

    def _apply(self, entry: Optional[TimeEntry]) -> None:
        tracking = ActiveTracking.from_entry(entry) if entry is not None and entry.in_progress else None
        if self._cache is not None:
            try:
                self._cache.save(tracking)
            except OSError as exc:
                logger.warning("Could not write tracking cache %s: %s", self._cache.path, exc)
        previous = self._snapshot
        if tracking == previous.tracking:
            return
        if (
            tracking is not None
            and previous.tracking is not None
            and tracking.entry_id == previous.tracking.entry_id
            and tracking.progress_started_at == previous.tracking.progress_started_at
        ):
            # Same running segment: keep the anchor so polling never goes backwards.
            self._snapshot = _Snapshot(tracking, previous.anchor_monotonic, previous.anchor_elapsed)
        elif tracking is None:
            self._snapshot = _Snapshot()
        else:
            self._snapshot = _Snapshot(tracking, self._monotonic(), tracking.elapsed_seconds_at(self._clock()))
        self._notify(tracking)


__all__ = ["ActiveTrackingManager", "Observer"]
