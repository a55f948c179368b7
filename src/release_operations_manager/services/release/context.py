"""Cancellation and per-request timeout carried through one operation."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import timedelta

from release_operations_manager.services.release.exceptions import OperationCancelledError


@dataclass
class OperationContext:
    """Cancellation token for a single orchestrator call.

    Components call :meth:`check` right before each blocking network call.
    ``request_timeout`` bounds individual calls, never the whole operation.
    """

    request_timeout: float | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self) -> None:
        """Raise OperationCancelledError if the context was cancelled."""
        if self._cancelled.is_set():
            raise OperationCancelledError()

    def with_timeout(self, timeout: timedelta | None) -> OperationContext:
        """Context sharing this cancellation token, bounded by *timeout*.

        A request timeout already set on this context wins.
        """
        if timeout is None or self.request_timeout is not None:
            return self
        return OperationContext(request_timeout=timeout.total_seconds(), _cancelled=self._cancelled)


def ensure_context(ctx: OperationContext | None) -> OperationContext:
    """Return *ctx* or a fresh, never-cancelled context."""
    return ctx if ctx is not None else OperationContext()
