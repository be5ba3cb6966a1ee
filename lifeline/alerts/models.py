"""
models.py — Shared data structures for alert submission.

Defines:
    • Coordinates       — a location fix, or an explicit "unavailable" marker
    • Identity          — the sender (temporary / durable)
    • AlertRecord       — the record appended to the remote store
    • PendingAlert      — a record queued on the device awaiting delivery
    • SubmissionStatus  — delivered / queued / rejected
    • SubmissionState   — per-attempt state machine
    • SubmissionResult  — what the UI layer receives

═══════════════════════════════════════════════════════════════════════════
SUBMISSION STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    Idle → RateChecking ──reject──► Idle
                │
                ▼
            Triaging → Sending ──ok──► Delivered
                          │
                          └─fail / offline──► Queued ──reconnect──► Sending

Coordinates are never defaulted to (0, 0): a missing fix is carried as
``Coordinates.unavailable()`` and serialised with an explicit flag.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from lifeline.ml.triage import TriageResult


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class SubmissionStatus(str, Enum):
    """Final outcome of ``submit_alert``."""
    DELIVERED = "delivered"   # accepted by the remote store
    QUEUED    = "queued"      # persisted on device, will retry
    REJECTED  = "rejected"    # rate limit / cooldown, nothing recorded


class SubmissionState(str, Enum):
    """States of a single send attempt."""
    IDLE          = "idle"
    RATE_CHECKING = "rate_checking"
    TRIAGING      = "triaging"
    SENDING       = "sending"
    DELIVERED     = "delivered"
    QUEUED        = "queued"


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude fix, or the explicit absence of one."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, reason: str = "No location available") -> "Coordinates":
        return cls(error=reason)

    @property
    def is_available(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        if not self.is_available:
            return {"available": False, "error": self.error or "No location available"}
        return {
            "available": True,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Coordinates":
        if not data or not data.get("available", "latitude" in data):
            return cls.unavailable((data or {}).get("error", "No location available"))
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


@dataclass(frozen=True)
class Identity:
    """
    The sender as reported by the identity provider.

    Attributes
    ----------
    subject_id : str
        Stable subject identifier.
    is_temporary : bool
        True for anonymous / guest sessions.
    email : str | None
        Durable identifier shown to responders for permanent accounts.
    """
    subject_id: str
    is_temporary: bool = False
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.is_temporary:
            return f"Guest ({self.subject_id})"
        return self.email or self.subject_id


UNKNOWN_USER = "Unknown User"


@dataclass
class AlertRecord:
    """The structured record appended to the remote alert store."""
    user: str
    message: str
    coordinates: Coordinates
    triage: TriageResult
    user_id: Optional[str] = None
    alert_id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "user": self.user,
            "user_id": self.user_id,
            "coords": self.coordinates.to_dict(),
            "message": self.message,
            "category": self.triage.category,
            "category_confidence": self.triage.to_dict()["category_confidence"],
            "urgency_level": self.triage.urgency,
            "urgency_confidence": self.triage.to_dict()["urgency_confidence"],
            "time": self.created_at.isoformat(),
            "alert_completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRecord":
        return cls(
            alert_id=data.get("alert_id") or _generate_id(),
            user=data.get("user", UNKNOWN_USER),
            user_id=data.get("user_id"),
            coordinates=Coordinates.from_dict(data.get("coords")),
            message=data.get("message", ""),
            triage=TriageResult(
                category=data.get("category", "Unknown"),
                urgency=data.get("urgency_level", "Unknown"),
                category_confidence=data.get("category_confidence"),
                urgency_confidence=data.get("urgency_confidence"),
            ),
            created_at=_parse_dt(data["time"]) if data.get("time") else datetime.now(timezone.utc),
            completed=bool(data.get("alert_completed", False)),
        )


@dataclass
class PendingAlert:
    """An alert persisted on the device because delivery failed or was skipped."""
    record: AlertRecord
    queued_at: datetime
    last_error: Optional[str] = None

    @property
    def alert_id(self) -> str:
        return self.record.alert_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "queued_at": self.queued_at.isoformat(),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingAlert":
        return cls(
            record=AlertRecord.from_dict(data["record"]),
            queued_at=_parse_dt(data["queued_at"]),
            last_error=data.get("last_error"),
        )


@dataclass
class SubmissionResult:
    """
    What ``submit_alert`` hands back to the UI layer.

    ``reason`` is always a human-readable sentence.
    """
    status: SubmissionStatus
    reason: str
    triage: Optional[TriageResult] = None
    alert_id: Optional[str] = None
    record_id: Optional[str] = None
    retry_after_seconds: Optional[float] = None
    coordinates: Optional[Coordinates] = None

    @property
    def delivered(self) -> bool:
        return self.status == SubmissionStatus.DELIVERED

    @property
    def queued(self) -> bool:
        return self.status == SubmissionStatus.QUEUED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "triage": self.triage.to_dict() if self.triage else None,
            "alert_id": self.alert_id,
            "record_id": self.record_id,
            "retry_after_seconds": (
                round(self.retry_after_seconds, 1)
                if self.retry_after_seconds is not None else None
            ),
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
        }
