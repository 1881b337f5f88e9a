from __future__ import annotations

import threading
import time
from typing import Optional

from phaseboard.core.errors import Unavailable


class Deadline:
    """Request-scoped deadline and cancellation token shared by all pipeline stages."""

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        self._expires_at = time.monotonic() + timeout_s if timeout_s is not None else None
        self._cancelled = threading.Event()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def cancel(self) -> None:
        self._cancelled.set()

    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self, stage: str) -> None:
        if self.expired():
            raise Unavailable(context={"stage": stage})

    def sqlite_progress_handler(self) -> int:
        # Non-zero aborts the running statement with "interrupted".
        return 1 if self.expired() else 0
