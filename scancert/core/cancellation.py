"""
Cooperative cancellation shared by every pipeline stage.
"""

import threading
from typing import Optional

from ..exceptions import ScanCancelledError


class CancellationToken:
    """
    Thread-safe cancellation flag.

    A single token is created per session and handed to every stage and
    provider call. Stages call :meth:`raise_if_cancelled` at each suspension
    point (loop iteration, device call, file read).
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, stage: str = "pipeline") -> None:
        if self._event.is_set():
            raise ScanCancelledError(stage, self._reason or "cancelled")


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh token that is never cancelled."""
    return token if token is not None else CancellationToken()
