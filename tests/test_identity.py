"""Unit tests for identity resolution and deduplication."""

import pytest

from risk_tracker.exceptions import IdentityResolutionError
from risk_tracker.identity import (
    MAX_IDENTITY_LENGTH,
    dedupe_records,
    resolve_identity,
    sanitize_identity,
)


def test_sanitize_identity():
    """Test identity sanitization."""
    assert sanitize_identity("  ID 101! ") == "id_101"
    assert sanitize_identity("STU-2024/0042") == "stu_2024_0042"
    assert sanitize_identity("__a__b__") == "a_b"
    assert sanitize_identity(101) == "101"


def test_sanitize_identity_empty():
    """Nothing usable left means no identity."""
    assert sanitize_identity("") is None
    assert sanitize_identity("   ") is None
    assert sanitize_identity("!!!") is None
    assert sanitize_identity(None) is None


def test_sanitize_identity_truncates():
    raw = "x" * 250
    assert len(sanitize_identity(raw)) == MAX_IDENTITY_LENGTH


def test_resolve_identity_order():
    """Enroll id first, then name, then a generated key."""
    assert resolve_identity("101", "John Doe", 0) == "101"
    assert resolve_identity("", "John Doe", 0) == "john_doe"
    assert resolve_identity("***", "John Doe", 0) == "john_doe"

    generated = resolve_identity("", "???", 7)
    assert generated.startswith("r_")
    assert generated.endswith("_7")


def test_resolve_identity_failure(monkeypatch):
    """An empty generated key is an invariant violation."""
    monkeypatch.setattr("risk_tracker.identity.fallback_identity", lambda ordinal: "")

    with pytest.raises(IdentityResolutionError):
        resolve_identity("", "", 0)


def test_dedupe_records_last_write_wins(record_factory):
    """Later records replace earlier ones; first-seen order is kept."""
    first = record_factory("a", attendance_pct=50)
    other = record_factory("b")
    second = record_factory("a", attendance_pct=99)

    result = dedupe_records([first, other, second])

    assert [r.identity for r in result] == ["a", "b"]
    assert result[0].attendance_pct == 99
    assert result[0] is second


def test_dedupe_records_empty():
    assert dedupe_records([]) == []
