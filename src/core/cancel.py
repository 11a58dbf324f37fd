# src/core/cancel.py
from __future__ import annotations

import threading
from typing import Optional

from core.errors import OperationCancelledError


class CancelToken:
    """
    Cooperative cancellation flag shared between a caller and the engine.

    Every suspension point (inclusion wait, polling delay, view call)
    checks the token; `wait()` doubles as an interruptible sleep.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled by caller.")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))


def check_cancelled(cancel: Optional[CancelToken]) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()
