"""
Fixed-rate heartbeat timer.

The timer thread never publishes itself; on every tick it calls on_tick, which
the lifecycle controller uses to post a tick event onto its queue. Publishing
therefore always happens on the controller's dispatcher.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class HeartbeatTimer:
    def __init__(
        self,
        interval_s: float,
        on_tick: Callable[[], None],
        *,
        name: str = "heartbeat-timer",
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.interval_s = interval_s
        self._on_tick = on_tick
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def start(self) -> None:
        if self._thread:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self._name)
        self._thread.start()

    def cancel(self, timeout: float = 2.0) -> None:
        if not self._thread:
            return
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Heartbeat timer thread did not stop within timeout")
        self._thread = None

    def _loop(self) -> None:
        # Ticks are scheduled against the start time so slow ticks do not drift.
        next_due = time.monotonic() + self.interval_s
        while not self._stop_event.wait(timeout=max(0.0, next_due - time.monotonic())):
            try:
                self._on_tick()
            except Exception:
                logger.exception("Heartbeat tick callback failed")
            next_due += self.interval_s
            now = time.monotonic()
            if next_due < now:
                # missed ticks are skipped, not replayed
                next_due = now + self.interval_s
