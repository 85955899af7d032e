"""Live progress counters and persisted run history."""

import json
import logging
import os
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..models import FailedItem, RunResult
from .interfaces import Clock, utc_now

logger = logging.getLogger(__name__)

HISTORY_SIZE = 10


class ProgressTracker:
    """Counters updated by worker threads and read by a status poller."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._lock = threading.Lock()
        self._reset()

    def _reset(self):
        self.phase = "Idle"
        self.total_items = 0
        self.processed_items = 0
        self.created = 0
        self.updated = 0
        self.is_running = False
        self.started_at: Optional[datetime] = None

    def start(self):
        with self._lock:
            self._reset()
            self.is_running = True
            self.started_at = self.clock()
            self.phase = "Starting"

    def set_phase(self, phase: str):
        with self._lock:
            self.phase = phase

    def add_total(self, count: int):
        with self._lock:
            self.total_items += count

    def item_done(self, created: int = 0, updated: int = 0):
        with self._lock:
            self.processed_items += 1
            self.created += created
            self.updated += updated

    def finish(self):
        with self._lock:
            self.is_running = False
            self.phase = "Idle"

    def snapshot(self) -> dict:
        """Consistent copy of all counters."""
        with self._lock:
            percent = 0.0
            if self.total_items:
                percent = min(100.0, self.processed_items / self.total_items * 100)
            return {
                "is_running": self.is_running,
                "phase": self.phase,
                "total_items": self.total_items,
                "processed_items": self.processed_items,
                "created": self.created,
                "updated": self.updated,
                "percent": percent,
                "started_at": self.started_at.isoformat() if self.started_at else None,
            }


class RunHistory:
    """Most recent run results, newest first, persisted as JSON.

    Only the newest result keeps its failed items on disk; they are what a
    retry works from after a restart.
    """

    def __init__(self, path: Optional[Path] = None, size: int = HISTORY_SIZE):
        """Initialize history and load any persisted results.

        Args:
            path: JSON file to persist to (None keeps history in memory)
            size: Number of results to keep
        """
        self.path = Path(path) if path else None
        self._results = deque(maxlen=size)
        self._lock = threading.Lock()
        self._load()

    def _load(self):
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            results = [RunResult.from_dict(item) for item in data.get("runs", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable run history {self.path}: {e}")
            return
        self._results.extend(results[: self._results.maxlen])
        logger.debug(f"Loaded {len(self._results)} run(s) from history")

    def _save(self):
        if self.path is None:
            return
        runs = [
            result.to_dict(include_failed=(index == 0))
            for index, result in enumerate(self._results)
        ]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"runs": runs}, f, indent=2)
        os.replace(tmp, self.path)

    def record(self, result: RunResult):
        """Add a result as the newest entry and persist."""
        with self._lock:
            self._results.appendleft(result)
            self._save()

    def update_last(self, result: RunResult):
        """Replace the newest entry (after a retry changed it) and persist."""
        with self._lock:
            if self._results:
                self._results[0] = result
            else:
                self._results.appendleft(result)
            self._save()

    def last(self) -> Optional[RunResult]:
        with self._lock:
            return self._results[0] if self._results else None

    def all(self) -> List[RunResult]:
        with self._lock:
            return list(self._results)

    def failed_items(self) -> List[FailedItem]:
        """The retry queue: failed items of the newest run."""
        with self._lock:
            if not self._results:
                return []
            return list(self._results[0].failed_items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
