"""
Pydantic schemas for the device agent API.

Separated from the route handlers so they are reusable across the codebase
(route modules, tests).
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class AlertSubmitRequest(BaseModel):
    """Body of POST /api/v1/alerts. A blank message is sent as "HELP"."""
    message: Optional[str] = Field(
        default="",
        max_length=2000,
        description="Free-text emergency message",
        examples=["fire downtown need help"],
    )


class TriageRequest(BaseModel):
    message: Optional[str] = Field(default="", max_length=2000, examples=["water rising fast"])


class ConnectivityUpdate(BaseModel):
    online: bool = Field(..., description="Current network reachability of the device")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TriageResponse(BaseModel):
    category: str
    category_confidence: Optional[float] = None
    urgency: str
    urgency_confidence: Optional[float] = None


class CoordinatesResponse(BaseModel):
    available: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[str] = None


class SubmissionResponse(BaseModel):
    status: str = Field(..., examples=["delivered"], description="delivered | queued | rejected")
    reason: str
    triage: Optional[TriageResponse] = None
    alert_id: Optional[str] = None
    record_id: Optional[str] = None
    retry_after_seconds: Optional[float] = None
    coordinates: Optional[CoordinatesResponse] = None


class PendingAlertResponse(BaseModel):
    alert_id: str
    message: str
    category: str
    urgency: str
    queued_at: str
    last_error: Optional[str] = None


class RetryResponse(BaseModel):
    attempted: int
    delivered: List[str]
    remaining: int
    skipped_offline: bool


class ConnectivityResponse(BaseModel):
    online: bool
    changed: bool
    pending_alerts: int
