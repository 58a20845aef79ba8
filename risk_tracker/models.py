"""Data models for the Student Risk Tracker application."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List

from pydantic import BaseModel, Field


class RiskTier(str, Enum):
    """Derived risk classification of a student record."""
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"


class StudentRecord(BaseModel):
    """Canonical risk snapshot of one student."""
    identity: str
    enroll_id: str = ""
    display_name: str
    attendance_pct: float = 0.0
    score: float = 0.0
    fee_status: str = "unpaid"
    risk_tier: RiskTier
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _new_alert_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertPayload(BaseModel):
    """Batch of newly detected Red records shown as a single notification."""
    alert_id: str = Field(default_factory=_new_alert_id)
    records: List[StudentRecord]
    detected_at: datetime = Field(default_factory=_utcnow)

    @property
    def names(self) -> List[str]:
        return [r.display_name or r.identity for r in self.records]


class IngestionResult(BaseModel):
    """Outcome of parsing and normalizing one uploaded file."""
    records: List[StudentRecord]
    total_rows: int
    duplicates_collapsed: int

    def preview(self, limit: int) -> List[StudentRecord]:
        return self.records[:limit]


class CommitReport(BaseModel):
    """What the store reports back after a successful batch write."""
    written: int
    created: int
    updated: int
    committed_at: datetime


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    batch_id: str
    preview: List[StudentRecord]
    total: int
    duplicates_collapsed: int
    summary: Dict[str, int]


class CommitResponse(BaseModel):
    """Response from the commit endpoint."""
    success: bool
    message: str
    written: int
    created: int
    updated: int


class CurrentAlertResponse(BaseModel):
    """Alert currently visible on the live screen, if any."""
    alert: Optional[AlertPayload] = None
    pending: int = 0
    remaining_seconds: float = 0.0
    display_seconds: float


class EmailDraftRequest(BaseModel):
    """Request for email draft generation."""
    identity: str


class EmailDraftResponse(BaseModel):
    """Email draft response."""
    subject: str
    body: str
    to: Optional[str] = None
