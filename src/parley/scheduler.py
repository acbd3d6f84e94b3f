"""Cooperative timers driven by the host loop."""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .timeutil import Clock, utc_now

logger = logging.getLogger("parley")


class ScheduledCall:
    def __init__(
        self,
        due: datetime,
        callback: Callable[[], None],
        seq: int,
        interval: Optional[float] = None,
        name: str = "",
    ) -> None:
        self.due = due
        self.callback = callback
        self.seq = seq
        self.interval = interval
        self.name = name or getattr(callback, "__name__", "call")
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __repr__(self) -> str:
        return f"ScheduledCall({self.name!r}, due={self.due.isoformat()})"


class Scheduler:
    """Queue of delayed and periodic callbacks.

    Nothing runs on its own: the host calls :meth:`run_pending` (usually from
    ``ConversationEngine.tick``) and due callbacks execute on that thread in
    due order. A run that starts while another one is in progress returns
    immediately, so callbacks never overlap.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._calls: List[ScheduledCall] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def call_later(
        self, delay_seconds: float, callback: Callable[[], None], name: str = ""
    ) -> ScheduledCall:
        due = self._clock() + timedelta(seconds=max(0.0, delay_seconds))
        call = ScheduledCall(due, callback, next(self._seq), name=name)
        self._calls = [c for c in self._calls if not c.cancelled]
        self._calls.append(call)
        return call

    def call_every(
        self, interval_seconds: float, callback: Callable[[], None], name: str = ""
    ) -> ScheduledCall:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        due = self._clock() + timedelta(seconds=interval_seconds)
        call = ScheduledCall(
            due, callback, next(self._seq), interval=interval_seconds, name=name
        )
        self._calls.append(call)
        return call

    def pending(self) -> List[ScheduledCall]:
        return sorted(
            (c for c in self._calls if not c.cancelled), key=lambda c: (c.due, c.seq)
        )

    def run_pending(self) -> int:
        if not self._lock.acquire(blocking=False):
            logger.debug("Scheduler busy; skipping overlapping run")
            return 0
        ran = 0
        try:
            while True:
                now = self._clock()
                due = [c for c in self._calls if not c.cancelled and c.due <= now]
                if not due:
                    break
                call = min(due, key=lambda c: (c.due, c.seq))
                if call.interval:
                    call.due = now + timedelta(seconds=call.interval)
                else:
                    call.cancelled = True
                call.callback()
                ran += 1
        finally:
            self._calls = [c for c in self._calls if not c.cancelled]
            self._lock.release()
        return ran

    def cancel_all(self) -> None:
        for call in self._calls:
            call.cancel()
        self._calls = []


class Debouncer:
    """Coalesce bursts of triggers into one call after ``wait_seconds`` of quiet."""

    def __init__(
        self, scheduler: Scheduler, wait_seconds: float, callback: Callable[[], None]
    ) -> None:
        self._scheduler = scheduler
        self._wait = wait_seconds
        self._callback = callback
        self._pending: Optional[ScheduledCall] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.cancelled

    def trigger(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._scheduler.call_later(
            self._wait, self._fire, name="debounce"
        )

    def cancel(self) -> bool:
        was_pending = self.pending
        if self._pending is not None:
            self._pending.cancel()
        self._pending = None
        return was_pending

    def flush(self) -> bool:
        if not self.cancel():
            return False
        self._callback()
        return True

    def _fire(self) -> None:
        self._pending = None
        self._callback()
