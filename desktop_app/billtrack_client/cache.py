"""Local hint of the last confirmed tracking state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from .models import ActiveTracking

logger = logging.getLogger(__name__)


class TrackingCache:
    """JSON file holding the last ActiveTracking the store confirmed.

    Only used to pre-populate a UI before the manager has re-confirmed with the
    store. A missing or unreadable file reads as no hint.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[ActiveTracking]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return ActiveTracking.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable tracking cache %s: %s", self.path, exc)
            return None

    def save(self, tracking: Optional[ActiveTracking]) -> None:
        if tracking is None:
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(tracking.to_dict()), encoding="utf-8")
        tmp_path.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


__all__ = ["TrackingCache"]
