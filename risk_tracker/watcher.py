"""Live watch session: store snapshots -> new-risk detection -> alert scheduler.

Snapshots pushed by the store subscription are put on a single queue and
consumed by one worker task, so detection runs once per snapshot, in
delivery order, never overlapping. If the subscription fails the worker
falls back to a one-shot full read and keeps going.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from risk_tracker.alerts import AlertScheduler
from risk_tracker.config import ALERT_DISPLAY_SECONDS
from risk_tracker.detector import AlertSession, NewRiskDetector
from risk_tracker.models import StudentRecord
from risk_tracker.store import RecordStore, Subscription

logger = logging.getLogger("risk_tracker.watcher")


@dataclass
class SnapshotEvent:
    snapshot: Optional[List[StudentRecord]] = None
    error: Optional[Exception] = None


class WatchSession:
    """
    One operator's live view of the store.

    Owns the alerted-identity set, the alert scheduler, the store
    subscription and the worker task. `stop()` releases all of them.
    Every `start()` begins a new session with an empty alerted set, so
    starting again after `stop()` re-alerts records that are still Red.
    """

    def __init__(
        self,
        store: RecordStore,
        scheduler: Optional[AlertScheduler] = None,
        display_seconds: float = ALERT_DISPLAY_SECONDS,
        on_snapshot: Optional[Callable[[List[StudentRecord]], None]] = None,
    ):
        self.store = store
        self.session = AlertSession()
        self.scheduler = scheduler or AlertScheduler(display_seconds=display_seconds)
        self.detector = NewRiskDetector(self.session, self.scheduler.enqueue)
        self.latest_snapshot: List[StudentRecord] = []
        self.last_error: Optional[str] = None
        self._on_snapshot = on_snapshot
        self._events: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def live(self) -> bool:
        """True while the change stream is delivering snapshots."""
        return self._subscription is not None and self._subscription.active

    async def start(self) -> None:
        if self.running:
            return
        if self._stopped:
            self._reset()
        self._events = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        try:
            self._subscription = self.store.subscribe(self._push_snapshot, self._push_error)
        except Exception as e:
            logger.error("Error setting up snapshot subscription: %s", e)
            self._push_error(e)
        logger.info("Watch session started")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        self.scheduler.close()
        self._stopped = True
        logger.info("Watch session stopped (%d identities alerted)", len(self.session))

    def _reset(self) -> None:
        self.session = AlertSession()
        self.detector = NewRiskDetector(self.session, self.scheduler.enqueue)
        self.scheduler.reopen()
        self.latest_snapshot = []
        self.last_error = None
        self._stopped = False

    async def refresh(self) -> None:
        """Queue a one-shot full read behind any snapshots already pending."""
        if self._events is None:
            return
        self._push_snapshot(self.store.read_all())

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        if self._events is not None:
            await self._events.join()

    def _push_snapshot(self, snapshot: List[StudentRecord]) -> None:
        if self._events is not None:
            self._events.put_nowait(SnapshotEvent(snapshot=snapshot))

    def _push_error(self, exc: Exception) -> None:
        if self._events is not None:
            self._events.put_nowait(SnapshotEvent(error=exc))

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self._handle(event)
            except Exception as e:
                logger.error("Failed to process snapshot event: %s", e)
            finally:
                self._events.task_done()

    def _handle(self, event: SnapshotEvent) -> None:
        if event.error is not None:
            snapshot = self._fallback_read(event.error)
            if snapshot is None:
                return
        else:
            snapshot = event.snapshot or []

        self.latest_snapshot = snapshot
        self.detector.process(snapshot)
        if self._on_snapshot:
            self._on_snapshot(snapshot)

    def _fallback_read(self, error: Exception) -> Optional[List[StudentRecord]]:
        self.last_error = str(error)
        logger.warning("Change stream unavailable (%s), falling back to a one-shot read", error)
        try:
            return self.store.read_all()
        except Exception as e:
            logger.error("Fallback read failed: %s", e)
            return None
