"""Cancellation and timeout signal passed to every store operation."""

import threading
import time
from typing import Optional

from .errors import CancelledError


class OperationContext:
    """Cancellation signal with an optional deadline.

    Backends call ``check()`` between units of work (one chunk read, one
    network call, one listed entry). Once the context is cancelled or its
    deadline passes, ``check()`` raises ``CancelledError``.

    Example:
        >>> ctx = OperationContext(timeout=30)
        >>> store.store(stream, ctx=ctx)
    """

    def __init__(self, timeout: Optional[float] = None):
        """Create a context.

        Args:
            timeout: Seconds from now after which the context counts as
                cancelled. None means no deadline.
        """
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason = "operation cancelled"

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Cancel the context. Safe to call from any thread."""
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise CancelledError if the context is done."""
        if self._event.is_set():
            raise CancelledError(self._reason)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise CancelledError("operation deadline exceeded")


class _Background(OperationContext):
    """Context that is never cancelled."""

    def cancel(self, reason: str = "operation cancelled") -> None:
        raise TypeError("the background context cannot be cancelled")


BACKGROUND = _Background()


def ensure_context(ctx: Optional[OperationContext]) -> OperationContext:
    return ctx if ctx is not None else BACKGROUND
