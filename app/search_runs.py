from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from leadscout import settings
from leadscout.events import emit
from leadscout.models import EnrichedLead

_LOCK = threading.Lock()
MAX_LOG_LINES = 500


@dataclass
class SearchRun:
    search_id: str
    status: str = "running"
    progress: float = 0.0
    label: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    leads: List[EnrichedLead] = field(default_factory=list)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def on_progress(self, percent: float, label: Optional[str] = None) -> None:
        self.progress = percent
        if label:
            self.label = label
            self.logs.append(label)
            del self.logs[:-MAX_LOG_LINES]
        emit(self.search_id, "progress", label or "", {"progress": percent})

    def finish(self, leads: List[EnrichedLead]) -> None:
        self.leads = leads
        self.status = "done"
        emit(self.search_id, "done", self.label or "", {"progress": self.progress, "lead_count": len(leads)})

    def fail(self, error: str) -> None:
        self.error = error
        self.status = "failed"
        emit(self.search_id, "failed", error, {"progress": self.progress})


_runs: Dict[str, SearchRun] = {}


def _prune(now: float) -> None:
    ttl = settings.SEARCH_RUN_TTL_S
    for sid in [k for k, r in _runs.items() if r.status != "running" and now - r.created_at > ttl]:
        _runs.pop(sid, None)


def create_run() -> SearchRun:
    run = SearchRun(search_id=f"s-{uuid.uuid4().hex[:16]}")
    with _LOCK:
        _prune(run.created_at)
        _runs[run.search_id] = run
    return run


def get_run(search_id: str) -> Optional[SearchRun]:
    with _LOCK:
        return _runs.get(search_id)
