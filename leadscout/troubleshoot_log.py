"""Structured JSONL records for pipeline and API troubleshooting.

One record per line on stdout, mirrored to ``<LOG_DIR>/<service>-YYYY-MM-DD.jsonl``
when a log directory is configured. Logging must never break a search, so
every failure in here is swallowed.
"""

import json
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from leadscout import settings

_write_lock = threading.Lock()


def _daily_file(service: str, now: time.struct_time) -> Optional[Path]:
    if not settings.LOG_DIR:
        return None
    base = Path(settings.LOG_DIR).expanduser()
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    return base / f"{service}-{time.strftime('%Y-%m-%d', now)}.jsonl"


def log_json(service: str, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
    """Emit one record: timestamp, level, service, env, message and optional data."""
    try:
        now = time.gmtime()
        rec: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", now),
            "level": level,
            "service": service,
            "env": settings.APP_ENV,
            "message": message,
        }
        if data:
            rec["data"] = data
        line = json.dumps(rec, ensure_ascii=False, default=str)
        print(line, flush=True)
        path = _daily_file(service, now)
        if path is None:
            return
        with _write_lock, path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except Exception:
        pass
