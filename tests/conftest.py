"""
Pytest configuration and fixtures for Student Risk Tracker tests.
"""

import pytest
from fastapi.testclient import TestClient

from risk_tracker.models import StudentRecord
from risk_tracker.risk import classify
from risk_tracker.store import InMemoryRecordStore


@pytest.fixture
def record_factory():
    """Build classified records without going through the parser."""
    def make(identity, attendance_pct=90.0, score=90.0, fee_status="paid", display_name=None):
        return StudentRecord(
            identity=identity,
            enroll_id=identity,
            display_name=display_name or f"Student {identity}",
            attendance_pct=attendance_pct,
            score=score,
            fee_status=fee_status,
            risk_tier=classify(attendance_pct, score, fee_status),
        )
    return make


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def client():
    """Test client against a fresh store and an empty upload cache."""
    from risk_tracker import main

    main.app.state.store = InMemoryRecordStore()
    main.pending_batches.clear()
    with TestClient(main.app) as test_client:
        yield test_client
    main.pending_batches.clear()


@pytest.fixture
def sample_csv():
    return (
        "Enroll No,Student Name,Attendance %,Marks,Fee Status\n"
        "101,John Doe,85,75,paid\n"
        "102,Jane Smith,60,35,unpaid\n"
        "103,Ravi Kumar,60,90,paid\n"
        "104,Mei Lin,90,90,Paid\n"
    ).encode("utf-8")
