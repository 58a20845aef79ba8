"""Record store boundary: batch upsert, point delete, full read and snapshot feed.

`RecordStore` is the contract the rest of the package relies on. The
persistence engine behind it is not part of this package;
`InMemoryRecordStore` is a process-local implementation that honours the
same contract and backs the HTTP service and the tests.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from risk_tracker.exceptions import CommitError, DeleteError, SubscriptionError
from risk_tracker.models import CommitReport, StudentRecord
from risk_tracker.risk import classify_record

logger = logging.getLogger("risk_tracker.store")

SnapshotCallback = Callable[[List[StudentRecord]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """Handle for one change-stream listener.

    The store calls `deliver` with a full snapshot after every change and
    `fail` at most once when it can no longer keep the feed alive. After
    `close` or `fail` nothing more is delivered.
    """

    def __init__(
        self,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ):
        self._callback = callback
        self._on_error = on_error
        self._on_close = on_close
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, snapshot: List[StudentRecord]) -> None:
        if self._active:
            self._callback(snapshot)

    def fail(self, exc: Exception) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_close:
            self._on_close(self)
        logger.warning("Subscription failed: %s", exc)
        if self._on_error:
            self._on_error(exc)

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_close:
            self._on_close(self)


class RecordStore(ABC):
    """Key-value document store keyed by record identity."""

    @abstractmethod
    def commit_batch(self, records: Iterable[StudentRecord]) -> CommitReport:
        """
        Upsert every record by identity, all-or-nothing.

        Stamps created_at (kept on overwrite) and updated_at at commit time.

        Raises:
            CommitError: if any part of the batch could not be written
        """

    @abstractmethod
    def read_all(self) -> List[StudentRecord]:
        """One-shot read of every live record."""

    @abstractmethod
    def delete(self, identity: str) -> None:
        """
        Remove one record.

        Raises:
            DeleteError: if the record could not be removed
        """

    @abstractmethod
    def subscribe(
        self,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Deliver the current snapshot now and a fresh one after every change."""

    def get(self, identity: str) -> Optional[StudentRecord]:
        for record in self.read_all():
            if record.identity == identity:
                return record
        return None


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store. Batches are applied to a copy and swapped in."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._records: Dict[str, StudentRecord] = {}
        self._subscriptions: List[Subscription] = []
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def commit_batch(self, records: Iterable[StudentRecord]) -> CommitReport:
        records = list(records)
        now = self._clock()
        staged = dict(self._records)
        created = 0
        updated = 0

        for position, record in enumerate(records):
            if not record.identity:
                raise CommitError(
                    f"Record at position {position} ({record.display_name!r}) has no identity; "
                    f"batch of {len(records)} not written"
                )
            existing = staged.get(record.identity)
            stored = record.model_copy(deep=True)
            stored.risk_tier = classify_record(stored)
            stored.updated_at = now
            if existing is None:
                stored.created_at = now
                created += 1
            else:
                stored.created_at = existing.created_at or now
                updated += 1
            staged[record.identity] = stored

        self._records = staged
        logger.info("Committed batch: %d written (%d new, %d updated)", len(records), created, updated)
        self._notify()

        return CommitReport(
            written=len(records),
            created=created,
            updated=updated,
            committed_at=now,
        )

    def read_all(self) -> List[StudentRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    def get(self, identity: str) -> Optional[StudentRecord]:
        record = self._records.get(identity)
        return record.model_copy(deep=True) if record else None

    def delete(self, identity: str) -> None:
        if identity not in self._records:
            raise DeleteError(f"No student with id '{identity}'", identity, not_found=True)
        del self._records[identity]
        logger.info("Deleted record %s", identity)
        self._notify()

    def subscribe(
        self,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(callback, on_error, on_close=self._unsubscribe)
        self._subscriptions.append(subscription)
        subscription.deliver(self.read_all())
        return subscription

    def fail_subscriptions(self, message: str = "Change stream unavailable") -> None:
        """Signal every open subscription that the feed has been lost."""
        for subscription in list(self._subscriptions):
            subscription.fail(SubscriptionError(message))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription.deliver(self.read_all())
            except Exception as e:
                logger.error("Snapshot listener raised: %s", e)
