"""Clocks and repeating timers driving the tracking engine.

Real runs use :class:`SystemClock` and :class:`RepeatingTimer` threads.
Replays and tests swap in :class:`SimulatedClock` and :class:`ManualTimer`
so time only moves when the caller says so.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], None]


class SystemClock:
    """Wall clock in epoch milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class SimulatedClock:
    """Clock that only advances when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def advance(self, seconds: float) -> int:
        with self._lock:
            self._now_ms += int(round(seconds * 1000))
            return self._now_ms

    def set(self, now_ms: int) -> None:
        with self._lock:
            if now_ms < self._now_ms:
                raise ValueError("SimulatedClock cannot move backwards")
            self._now_ms = now_ms


class RepeatingTimer:
    """Daemon thread invoking ``callback`` every ``interval`` seconds.

    ``cancel`` only signals the thread; a callback already running finishes,
    so callers must tolerate one late invocation.
    """

    def __init__(
        self, interval: float, callback: TimerCallback, name: str = "timer"
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"kapture-{self.name}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self._callback()
            except Exception:
                LOGGER.error("Timer %s callback failed", self.name, exc_info=True)

    def cancel(self) -> None:
        self._stopped.set()

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stopped.is_set()


class ManualTimer:
    """Timer that fires only when :meth:`fire` is called."""

    def __init__(
        self, interval: float, callback: TimerCallback, name: str = "timer"
    ) -> None:
        self.interval = interval
        self.name = name
        self._callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return self.started and not self.cancelled

    def fire(self) -> bool:
        if not self.active:
            return False
        self._callback()
        return True


class ManualTimerFactory:
    """Factory handing out :class:`ManualTimer` objects and tracking them."""

    def __init__(self) -> None:
        self.created: List[ManualTimer] = []

    def __call__(
        self, interval: float, callback: TimerCallback, name: str = "timer"
    ) -> ManualTimer:
        timer = ManualTimer(interval, callback, name)
        self.created.append(timer)
        return timer

    def active(self) -> Dict[str, ManualTimer]:
        return {t.name: t for t in self.created if t.active}

    def fire(self, name: str) -> bool:
        """Fire the live timer called ``name``; False when none is running."""

        timer = self.active().get(name)
        if timer is None:
            return False
        return timer.fire()


__all__ = [
    "ManualTimer",
    "ManualTimerFactory",
    "RepeatingTimer",
    "SimulatedClock",
    "SystemClock",
    "TimerCallback",
]
