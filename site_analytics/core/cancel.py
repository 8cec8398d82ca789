import threading
from typing import Optional

from site_analytics.errors import EvaluationCancelled


class CancelSignal:
    """Cooperative cancellation flag shared between the event loop and a worker thread."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled"):
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise EvaluationCancelled(self.reason or "cancelled")


def check(cancel: Optional[CancelSignal]):
    if cancel is not None:
        cancel.raise_if_cancelled()
