import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_lg = logging.getLogger("api.access")


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Assigns a request_id and trace_id per request and logs slow calls.

    - request_id: from X-Request-Id header or generated as r-<hex>
    - trace_id: W3C traceparent trace-id when present; else t-<hex>
    Both land on request.state and are echoed as response headers.
    """

    def __init__(self, app, slow_ms: float = 2000.0):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        req_id = request.headers.get("x-request-id") or f"r-{uuid.uuid4().hex[:16]}"
        trace_id = None
        traceparent = request.headers.get("traceparent") or ""
        # traceparent format: 00-<trace-id>-<span-id>-<flags>
        parts = traceparent.split("-")
        if len(parts) >= 3 and parts[1]:
            trace_id = parts[1]
        trace_id = trace_id or f"t-{uuid.uuid4().hex[:16]}"

        request.state.request_id = req_id
        request.state.trace_id = trace_id

        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        response.headers["x-request-id"] = req_id
        response.headers["x-trace-id"] = trace_id
        if elapsed_ms > self.slow_ms:
            _lg.warning("slow request %s %s %.0fms request_id=%s", request.method, request.url.path, elapsed_ms, req_id)
        return response
