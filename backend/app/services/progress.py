"""
In-memory progress log shared by import jobs and submission grading channels.

Each job owns an append-only list of ProgressEvent capped to the most recent
`max_events`. Appends to an unknown job are dropped silently: the log is a
best-effort observability channel, not a durable record.
"""

import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional, Any

from app.config import logger
from app.models.progress import ProgressEvent


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProgressLog:
    """Per-job append-only event log with a size cap."""

    def __init__(self, name: str, max_events: int = 200):
        self.name = name
        self.max_events = max_events
        self._jobs: Dict[str, Deque[ProgressEvent]] = {}
        self._lock = threading.Lock()

    def create_job(self, job_id: str):
        with self._lock:
            if job_id not in self._jobs:
                self._jobs[job_id] = deque(maxlen=self.max_events)

    def has_job(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def append(
        self,
        job_id: str,
        stage: str,
        message: str = "",
        current: Optional[int] = None,
        total: Optional[int] = None,
        meta: Optional[Dict[str, Any]] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[ProgressEvent]:
        with self._lock:
            events = self._jobs.get(job_id)
            if events is None:
                return None

            # Times are strictly increasing per job so `read_since(last.time)` never skips an event
            stamp = _now_ms()
            if events and stamp <= events[-1].time:
                stamp = events[-1].time + 1

            event = ProgressEvent(
                time=stamp,
                stage=getattr(stage, "value", stage),
                message=message,
                current=current,
                total=total,
                meta=meta,
                result=result,
            )
            events.append(event)

        logger.debug(f"[{self.name}] {job_id} {event.stage}: {message}")
        return event

    def read_since(self, job_id: str, since: Optional[int] = None) -> List[ProgressEvent]:
        with self._lock:
            events = list(self._jobs.get(job_id, ()))
        if not since:
            return events
        return [e for e in events if e.time > since]

    def last_event(self, job_id: str) -> Optional[ProgressEvent]:
        with self._lock:
            events = self._jobs.get(job_id)
            return events[-1] if events else None

    def discard(self, job_id: str):
        with self._lock:
            self._jobs.pop(job_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
