"""Cancellable delayed callbacks for turn, queue and eviction timers.

``BackgroundScheduler`` runs each timer as a Socket.IO background task
(thread, eventlet or gevent, whatever the server's async mode is).
``ManualScheduler`` is used in TESTING: time only moves when ``advance``
is called, and due callbacks run synchronously on the caller's thread.

Cancelling a timer guarantees its callback is not started afterwards. A
callback that already started must still re-check its owner's state.
"""

import heapq
import itertools
import logging
import time
from typing import Callable, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_POLL_SEC = 1.0


class Timer:
    def __init__(self, delay: float, callback: Callable[[], None], name: str = ''):
        self.delay = delay
        self.callback = callback
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.cancelled:
            logger.debug(f"[timer-abort] {self.name} cancelled before firing")
            return
        self.callback()


class BackgroundScheduler:
    def __init__(self, socketio, heartbeat_sec: int = 0, poll_sec: float = DEFAULT_POLL_SEC):
        self.socketio = socketio
        self.heartbeat_sec = heartbeat_sec
        # cancelled timers stop waiting within one poll step
        self.poll_sec = poll_sec

    def time(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None], name: str = '') -> Timer:
        timer = Timer(delay, callback, name)
        self.socketio.start_background_task(self._worker, timer)
        return timer

    def _worker(self, timer: Timer) -> None:
        remaining = max(0.0, timer.delay)
        since_beat = 0.0
        while remaining > 0 and not timer.cancelled:
            step = min(self.poll_sec, remaining)
            self.socketio.sleep(step)
            remaining -= step
            since_beat += step
            if self.heartbeat_sec and since_beat >= self.heartbeat_sec:
                since_beat = 0.0
                logger.info(f"[timer-heartbeat] {timer.name} remaining={max(0.0, remaining):.0f}s")
        if timer.cancelled:
            logger.debug(f"[timer-abort] {timer.name} cancelled while waiting")
            return
        try:
            timer.fire()
        except Exception:
            logger.exception(f"[timer-error] {timer.name}")


class ManualScheduler:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self._seq = itertools.count()
        self._pending: List[Tuple[float, int, Timer]] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None], name: str = '') -> Timer:
        timer = Timer(delay, callback, name)
        heapq.heappush(self._pending, (self.now + max(0.0, delay), next(self._seq), timer))
        return timer

    @property
    def pending(self) -> List[Timer]:
        return [t for _, _, t in sorted(self._pending) if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in deadline order."""
        target = self.now + seconds
        while self._pending and self._pending[0][0] <= target:
            due, _, timer = heapq.heappop(self._pending)
            self.now = max(self.now, due)
            timer.fire()
        self.now = target
