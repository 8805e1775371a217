""" Printer idle/active status with hysteresis.

`<base>/printer_status` is "active" while any print-activity field is
positive. Snapshots are partial, so a single snapshot without those fields
does not flip the status to idle: the last active observation holds for
STATUS_WINDOW seconds. The topic is re-emitted only when the status
changes or STATUS_WINDOW has passed since the last emission.

The gateway's own per-topic throttle sits on top of this; they track
different things (classification age vs. publish volume).
"""
import threading
import time
from typing import Any, Callable, Mapping, Optional, Tuple

from .coerce import get_int

IDLE = "idle"
ACTIVE = "active"

STATUS_WINDOW = 10.0


def classify(snapshot: Mapping[str, Any]) -> str:
    """Instantaneous idle/active reading of one snapshot."""
    progress = get_int(snapshot, "printProgress")
    if progress is not None and progress > 0:
        # note: pairs with leftTime, not printLeftTime
        left = get_int(snapshot, "leftTime")
        if left is not None and left > 0:
            return ACTIVE
    for key in ("printJobTime", "printLeftTime", "layer", "gcodeState"):
        v = get_int(snapshot, key)
        if v is not None and v > 0:
            return ACTIVE
    return IDLE


class StatusTracker:
    def __init__(self, clock: Callable[[], float] = time.monotonic, window: float = STATUS_WINDOW):
        self._clock = clock
        self.window = window
        self._lock = threading.Lock()
        self.last_status: Optional[str] = None
        self.last_published_at: Optional[float] = None
        self.last_active_at: Optional[float] = None

    def evaluate(self, snapshot: Mapping[str, Any]) -> Tuple[str, bool]:
        """Return (status, should_publish) and record the emission when should_publish."""
        with self._lock:
            now = self._clock()
            status = classify(snapshot)
            if status == ACTIVE:
                self.last_active_at = now
            elif (
                self.last_active_at is not None
                and now - self.last_active_at < self.window
                and self.last_status == ACTIVE
            ):
                status = ACTIVE

            publish = (
                status != self.last_status
                or self.last_published_at is None
                or now - self.last_published_at >= self.window
            )
            if publish:
                self.last_status = status
                self.last_published_at = now
            return status, publish
