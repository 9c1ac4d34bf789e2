"""
Caller-supplied cancellation and deadline handling.

Every network operation accepts an optional RequestContext. Waits introduced
by request pacing or retry backoff go through RequestContext.wait(), which
returns early (by raising RequestCancelled) as soon as the caller cancels or
the deadline would be crossed.
"""

import threading
import time
from typing import Optional

from .errors import RequestCancelled


class RequestContext:
    """Cancellation flag plus an optional monotonic deadline."""

    def __init__(self, deadline: Optional[float] = None):
        self._cancelled = threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "RequestContext":
        return cls(deadline=time.monotonic() + max(0.0, seconds))

    def bounded(self, seconds: float) -> "RequestContext":
        """
        Context sharing this one's cancellation flag whose deadline is the
        earlier of the current deadline and now + seconds.
        """
        deadline = time.monotonic() + max(0.0, seconds)
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        child = RequestContext(deadline=deadline)
        child._cancelled = self._cancelled
        return child

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context is already cancelled or expired."""
        if self._cancelled.is_set():
            raise RequestCancelled("request cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise RequestCancelled("deadline exceeded")

    def wait(self, seconds: float) -> None:
        """Sleep for `seconds` unless cancelled first."""
        self.check()
        if seconds <= 0:
            return
        remaining = self.remaining()
        if remaining is not None and seconds > remaining:
            self._cancelled.wait(remaining)
            self.check()
            raise RequestCancelled("deadline exceeded")
        if self._cancelled.wait(seconds):
            raise RequestCancelled("request cancelled")

    def timeout(self, default: float) -> float:
        """Per-request socket timeout clamped to the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))


def ensure_context(ctx: Optional[RequestContext]) -> RequestContext:
    """Return ctx, or a context that is never cancelled."""
    return ctx if ctx is not None else RequestContext()
