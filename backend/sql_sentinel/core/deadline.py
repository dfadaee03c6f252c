"""
Query deadline and cancellation
"""
from typing import Callable, List, Optional
import threading
import time

import structlog

logger = structlog.get_logger()


class Deadline:
    """
    Time budget for one query, with an optional cancel switch.

    Connectors bind a backend-specific cancel callback while a statement
    runs so that cancel() can interrupt it from another thread.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds
        self._expires_at = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining_seconds(self) -> Optional[float]:
        """Seconds left, or None for no time limit."""
        if self.cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def remaining_ms(self) -> Optional[int]:
        remaining = self.remaining_seconds()
        if remaining is None:
            return None
        return int(remaining * 1000)

    def bind(self, callback: Callable[[], None]) -> None:
        """Register a callback run on cancel(). Runs at once if already cancelled."""
        with self._lock:
            if not self.cancelled:
                self._callbacks.append(callback)
                return
        callback()

    def unbind(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def cancel(self) -> None:
        """Cancel the query and interrupt any statement in flight."""
        with self._lock:
            self._cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("query_cancel_callback_failed", error=str(e))
