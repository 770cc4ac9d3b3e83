# app/main.py
import json
import logging
import os
import re
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.middleware_request_id import CorrelationMiddleware
from app.search_routes import get_pipeline, router as search_router
from app.verify_routes import router as verify_router
from leadscout import __version__, settings
from leadscout.pipeline import LeadPipeline

_console_fmt = logging.Formatter("[%(levelname)s] %(asctime)s %(name)s :: %(message)s", "%H:%M:%S")
_NOISY_LOGGERS = ("openai", "langchain", "langchain_openai", "httpx", "httpcore")


def configure_logging() -> None:
    """Route root logging to stderr and, when LOG_DIR is set, a daily-rotated api.log."""
    root = logging.getLogger()
    if root.level == logging.NOTSET or root.level > logging.INFO:
        root.setLevel(logging.INFO)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(_console_fmt)
        root.addHandler(console)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not settings.LOG_DIR:
        return
    try:
        log_dir = Path(settings.LOG_DIR).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        target = str(log_dir / "api.log")
        # uvicorn --reload imports this module again
        if any(getattr(h, "baseFilename", None) == target for h in root.handlers):
            return
        rotating = TimedRotatingFileHandler(target, when="midnight", backupCount=14, encoding="utf-8", utc=True)
        rotating.suffix = "%Y-%m-%d"
        rotating.extMatch = re.compile(r"^\d{4}-\d{2}-\d{2}$")  # type: ignore[attr-defined]
        rotating.setFormatter(logging.Formatter("%(asctime)s %(name)s %(message)s", "%Y-%m-%d %H:%M:%S"))
        rotating.setLevel(logging.INFO)
        root.addHandler(rotating)
    except OSError as exc:  # pragma: no cover - best effort
        logging.getLogger("startup").warning("api.log disabled: %s", exc)


configure_logging()

app = FastAPI(title="Lead Scout", version=__version__)
app.add_middleware(CorrelationMiddleware)

_origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
_origins += [o.strip() for o in (os.getenv("EXTRA_CORS_ORIGINS") or "").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(search_router)
app.include_router(verify_router)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        "level": "error",
        "service": "api",
        "env": settings.APP_ENV,
        "message": f"Unhandled exception on {request.method} {request.url.path}",
        "request_id": getattr(request.state, "request_id", None),
        "trace_id": getattr(request.state, "trace_id", None),
        "error": {"type": type(exc).__name__, "message": str(exc)},
    }
    logging.getLogger("troubleshoot").error(json.dumps(record, ensure_ascii=False))
    return JSONResponse(status_code=500, content={"detail": "internal_error"})


@app.get("/health")
def health(pipeline: LeadPipeline = Depends(get_pipeline)):
    """Liveness plus the shared provider breaker and queue state."""
    breaker = pipeline.provider_breaker
    scheduler = pipeline.provider_scheduler
    return {
        "ok": True,
        "provider_circuit": breaker.state if breaker else None,
        "provider_queue": scheduler.pending if scheduler else None,
        "provider_in_flight": scheduler.in_flight if scheduler else None,
    }
