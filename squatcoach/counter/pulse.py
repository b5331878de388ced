from __future__ import annotations
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SuccessPulse:
    """
    Short-lived "success" flag shown after a correct rep. trigger() raises it
    and schedules the auto-clear; cancel() drops it immediately so a torn-down
    session leaves no timer behind.
    """
    def __init__(self, duration: float = 1.5, on_change: Optional[Callable[[bool], None]] = None):
        self.duration = duration
        self.on_change = on_change
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._gen = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._gen += 1
            self._timer = threading.Timer(self.duration, self._expire, args=(self._gen,))
            self._timer.daemon = True
            was_active = self._active
            self._active = True
            self._timer.start()
        if not was_active:
            self._notify(True)

    def _expire(self, gen: int):
        with self._lock:
            # a newer trigger() or cancel() owns the pulse now
            if gen != self._gen:
                return
            self._timer = None
            self._active = False
        self._notify(False)

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._gen += 1
            was_active = self._active
            self._active = False
        if was_active:
            self._notify(False)

    def _notify(self, active: bool):
        if self.on_change is None:
            return
        try:
            self.on_change(active)
        except Exception:
            logger.exception("pulse callback failed")
