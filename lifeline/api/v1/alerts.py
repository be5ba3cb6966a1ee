"""
FastAPI routes: alert submission and the pending queue.

    POST /api/v1/alerts           — submit an emergency message
    POST /api/v1/alerts/retry     — explicit retry of queued alerts
    GET  /api/v1/alerts/pending   — alerts queued on this device
    POST /api/v1/triage           — triage only, no side effects
    PUT  /api/v1/connectivity     — report online / offline
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from lifeline.alerts.models import SubmissionStatus
from lifeline.api.schemas import (
    AlertSubmitRequest,
    ConnectivityResponse,
    ConnectivityUpdate,
    PendingAlertResponse,
    RetryResponse,
    SubmissionResponse,
    TriageRequest,
    TriageResponse,
)
from lifeline.core.errors import LifelineError, RateLimitError
from lifeline.services import AppServices, get_services

router = APIRouter(prefix="/api/v1", tags=["alerts"])


@router.post(
    "/alerts",
    response_model=SubmissionResponse,
    summary="Submit an emergency alert",
    responses={429: {"description": "Rate limit or cooldown; see Retry-After"}},
)
async def submit_alert(
    body: AlertSubmitRequest,
    services: AppServices = Depends(get_services),
):
    """
    Rate-check, triage, geotag and send the alert, or queue it on the
    device when the store cannot be reached. Rejections come back as 429
    with a Retry-After header.
    """
    result = await services.pipeline.submit_alert(body.message)
    if result.status == SubmissionStatus.REJECTED:
        if result.retry_after_seconds is None:
            raise LifelineError(result.reason, error_code="SUBMISSION_FAILED")
        raise RateLimitError(result.reason, retry_after=result.retry_after_seconds)
    return result.to_dict()


@router.post("/alerts/retry", response_model=RetryResponse, summary="Retry queued alerts")
async def retry_pending(services: AppServices = Depends(get_services)):
    report = await services.pipeline.retry_pending()
    return report.to_dict()


@router.get(
    "/alerts/pending",
    response_model=List[PendingAlertResponse],
    summary="Alerts queued on this device",
)
async def list_pending(services: AppServices = Depends(get_services)):
    items = await services.pipeline.pending_alerts()
    return [
        PendingAlertResponse(
            alert_id=p.alert_id,
            message=p.record.message,
            category=p.record.triage.category,
            urgency=p.record.triage.urgency,
            queued_at=p.queued_at.isoformat(),
            last_error=p.last_error,
        )
        for p in items
    ]


@router.post("/triage", response_model=TriageResponse, summary="Classify a message")
async def triage_message(
    body: TriageRequest,
    services: AppServices = Depends(get_services),
):
    result = await services.triage.triage(body.message)
    return result.to_dict()


@router.put(
    "/connectivity",
    response_model=ConnectivityResponse,
    summary="Report device connectivity",
)
async def update_connectivity(
    body: ConnectivityUpdate,
    services: AppServices = Depends(get_services),
):
    """An offline → online transition retries queued alerts before returning."""
    changed = await services.connectivity.set_online(body.online)
    return ConnectivityResponse(
        online=services.connectivity.is_online,
        changed=changed,
        pending_alerts=await services.pipeline.pending.count(),
    )
