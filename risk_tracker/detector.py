"""Detection of newly surfaced high-risk (Red) records in store snapshots."""

import logging
from typing import Callable, Iterable, Optional, Set

from risk_tracker.models import AlertPayload, RiskTier, StudentRecord

logger = logging.getLogger("risk_tracker.detector")


class AlertSession:
    """
    Identities already alerted during one live watch session.

    Lives exactly as long as the session that created it: a new session
    starts empty, so a record that is still Red will alert again after a
    restart. The set only grows while the session is open.
    """

    def __init__(self):
        self._alerted: Set[str] = set()

    def __contains__(self, identity: str) -> bool:
        return identity in self._alerted

    def __len__(self) -> int:
        return len(self._alerted)

    @property
    def alerted(self) -> frozenset:
        return frozenset(self._alerted)

    def mark(self, identities: Iterable[str]) -> None:
        self._alerted.update(identities)


def detect_new_risks(
    snapshot: Iterable[StudentRecord],
    session: AlertSession,
) -> Optional[AlertPayload]:
    """
    Find Red records in a snapshot that have not been alerted this session.

    Matching identities are marked in the same call, so a duplicate snapshot
    delivered right after this one finds nothing new. Records leaving Red
    never produce an alert.

    Args:
        snapshot: Full set of live records
        session: Alerted identities for the current session (mutated)

    Returns:
        One AlertPayload covering every new Red record, or None
    """
    fresh = []
    seen = set()
    for record in snapshot:
        if record.risk_tier != RiskTier.RED:
            continue
        if record.identity in session or record.identity in seen:
            continue
        seen.add(record.identity)
        fresh.append(record)

    if not fresh:
        return None

    session.mark(seen)
    return AlertPayload(records=fresh)


class NewRiskDetector:
    """Runs detection on each snapshot and hands payloads to a sink."""

    def __init__(self, session: AlertSession, sink: Callable[[AlertPayload], None]):
        self.session = session
        self._sink = sink

    def process(self, snapshot: Iterable[StudentRecord]) -> Optional[AlertPayload]:
        payload = detect_new_risks(snapshot, self.session)
        if payload is not None:
            logger.info("New Red records detected: %s", payload.names)
            self._sink(payload)
        return payload
