from __future__ import annotations

from typing import Optional


class LeadScoutError(Exception):
    """Base class for failures the pipeline knows how to absorb."""


class UpstreamError(LeadScoutError):
    """A call across the process boundary failed.

    ``status_code`` is the HTTP status when the client library exposed one.
    ``retryable`` overrides the text/status classification when set.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def from_exception(cls, exc: BaseException) -> "UpstreamError":
        status = getattr(exc, "status_code", None)
        if status is None:
            resp = getattr(exc, "response", None)
            status = getattr(resp, "status_code", None)
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            status = None
        return cls(f"{type(exc).__name__}: {exc}", status_code=status)


class CircuitOpen(LeadScoutError):
    def __init__(self, retry_after_s: float):
        super().__init__(f"Upstream temporarily suspended; retry in {retry_after_s:.0f}s")
        self.retry_after_s = retry_after_s


class QueueFull(LeadScoutError):
    def __init__(self, max_size: int):
        super().__init__(f"Request queue full ({max_size} pending); try again later")
        self.max_size = max_size


class VerificationError(UpstreamError):
    pass


class PipelineError(Exception):
    """Unexpected failure in the orchestrator itself; the run is lost."""
