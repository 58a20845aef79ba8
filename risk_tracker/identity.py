"""Identity derivation and batch deduplication for student records.

The identity is the storage primary key. The same resolver is used when
building the upload preview and when committing, so a preview row and the
document it ends up in always share one key.
"""

import re
import time
from typing import Dict, Iterable, List, Optional

from risk_tracker.exceptions import IdentityResolutionError
from risk_tracker.models import StudentRecord

MAX_IDENTITY_LENGTH = 100

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def sanitize_identity(raw) -> Optional[str]:
    """
    Turn an arbitrary value into a storage-safe key.

    Lowercases, collapses every run of non-alphanumeric characters into a
    single underscore, trims underscores from both ends and truncates.

    Args:
        raw: Any value (None is treated as empty)

    Returns:
        Sanitized key, or None when nothing usable remains
    """
    if raw is None:
        return None
    cleaned = _NON_ALNUM.sub('_', str(raw).strip().lower()).strip('_')
    return cleaned[:MAX_IDENTITY_LENGTH] or None


def fallback_identity(ordinal: int) -> str:
    """Generated key for rows with neither a usable enroll id nor a usable name."""
    return f"r_{int(time.time() * 1000)}_{ordinal}"


def resolve_identity(enroll_id: str, display_name: str, ordinal: int) -> str:
    """
    Pick the identity for one row: enroll id, then name, then a generated key.

    Raises:
        IdentityResolutionError: if every strategy came up empty
    """
    identity = (
        sanitize_identity(enroll_id)
        or sanitize_identity(display_name)
        or sanitize_identity(fallback_identity(ordinal))
    )
    if not identity:
        raise IdentityResolutionError(
            f"Could not derive an identity for row {ordinal + 1} "
            f"(enroll_id={enroll_id!r}, name={display_name!r})"
        )
    return identity


def dedupe_records(records: Iterable[StudentRecord]) -> List[StudentRecord]:
    """
    Collapse records sharing an identity, keeping the last one seen.

    Mirrors upsert-by-identity in the store: writing the input in order
    leaves exactly the records returned here. Output order is the order in
    which each identity first appeared.
    """
    by_identity: Dict[str, StudentRecord] = {}
    for record in records:
        by_identity[record.identity] = record
    return list(by_identity.values())
