"""Cooperative cancellation for long-running aggregations"""

import threading
import time
from typing import Optional

from finplan_engine.domain.exceptions import OperationCancelledError


class CancellationToken:
    """
    Caller-owned abort signal with an optional timeout.

    The caller keeps a reference and calls cancel() from any thread; the
    computation polls raise_if_cancelled() between units of work.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        if self.cancelled:
            reason = "timed out" if not self._event.is_set() else "cancelled by caller"
            raise OperationCancelledError(f"{operation} {reason}")


def check_cancelled(token: Optional[CancellationToken], operation: str) -> None:
    """No-op when the caller did not supply a token"""
    if token is not None:
        token.raise_if_cancelled(operation)
