"""Alert queue and display scheduler for the live screen.

A two-state machine: IDLE (nothing visible) and SHOWING (exactly one
payload visible). Two events drive it: a payload being enqueued and the
display timer elapsing. Payloads are shown strictly in arrival order, each
for at least `display_seconds`, and there is no way to dismiss one early.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional

from risk_tracker.config import ALERT_DISPLAY_SECONDS
from risk_tracker.models import AlertPayload

logger = logging.getLogger("risk_tracker.alerts")

AlertCallback = Callable[[AlertPayload], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    SHOWING = "showing"


class AlertScheduler:
    """
    Serializes alert display.

    Args:
        display_seconds: Minimum time each payload stays visible
        on_show: Called when a payload becomes visible
        on_hide: Called when a payload's display time is over
        loop: Event loop used for the display timer; defaults to the running loop
    """

    def __init__(
        self,
        display_seconds: float = ALERT_DISPLAY_SECONDS,
        on_show: Optional[AlertCallback] = None,
        on_hide: Optional[AlertCallback] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if display_seconds <= 0:
            raise ValueError("display_seconds must be positive")
        self.display_seconds = display_seconds
        self._on_show = on_show
        self._on_hide = on_hide
        self._given_loop = loop
        self._loop = loop
        self._queue: Deque[AlertPayload] = deque()
        self._current: Optional[AlertPayload] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._shown_at: Optional[float] = None
        self._closed = False

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.SHOWING if self._current is not None else SchedulerState.IDLE

    @property
    def current(self) -> Optional[AlertPayload]:
        return self._current

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def remaining_seconds(self) -> float:
        """Time left before the visible payload may be replaced."""
        if self._current is None or self._shown_at is None:
            return 0.0
        elapsed = self._get_loop().time() - self._shown_at
        return max(0.0, self.display_seconds - elapsed)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, payload: AlertPayload) -> None:
        """Add a payload at the tail. Starts showing it right away when idle."""
        if self._closed:
            logger.warning("Alert %s dropped: scheduler is closed", payload.alert_id)
            return
        self._queue.append(payload)
        logger.debug("Queued alert %s (%d pending)", payload.alert_id, len(self._queue))
        if self.state is SchedulerState.IDLE:
            self._show_next()

    def close(self) -> None:
        """Cancel the pending timer and drop queued payloads. Safe to call twice."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._queue.clear()
        self._current = None

    def reopen(self) -> None:
        """Accept payloads again after `close`, starting from an empty queue."""
        self.close()
        self._closed = False
        self._shown_at = None
        self._loop = self._given_loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _show_next(self) -> None:
        if not self._queue:
            return
        loop = self._get_loop()
        payload = self._queue.popleft()
        self._current = payload
        self._shown_at = loop.time()
        self._timer = loop.call_later(self.display_seconds, self._timer_elapsed, payload.alert_id)
        logger.info("Showing alert %s for %s", payload.alert_id, payload.names)
        self._notify(self._on_show, payload)

    def _timer_elapsed(self, alert_id: str) -> None:
        # A stale or post-close fire is a no-op
        if self._closed or self._current is None or self._current.alert_id != alert_id:
            return
        finished = self._current
        self._current = None
        self._timer = None
        self._shown_at = None
        self._notify(self._on_hide, finished)
        self._show_next()

    def _notify(self, callback: Optional[AlertCallback], payload: AlertPayload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:
            logger.error("Alert display callback failed for %s: %s", payload.alert_id, e)
