"""
Cooperative cancellation.

A ``CancellationToken`` is created once per run and threaded through the
analysis orchestrator and the real-time emitter. It is set from outside
(typically a SIGINT/SIGTERM handler) and only ever observed by the workers,
which poll it at bounded intervals. Once set it stays set.
"""

import threading
from typing import Optional


class CancellationToken:
    """Idempotent, thread-safe "stop requested" flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "user_interrupt") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; return True if cancelled."""
        return self._event.wait(timeout)
