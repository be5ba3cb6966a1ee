"""
submission.py — Alert submission orchestration.

This is the single entry point the UI layer calls. It:
    1. Applies the local rate limit and cooldown
    2. Triages the message (category + urgency) while acquiring a location
    3. Assembles the alert record (identity, coordinates, triage, timestamp)
    4. Sends it to the remote store, or queues it on the device
    5. Retries queued alerts on reconnect / next explicit send

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

    Failure                        Outcome
    ─────────────────────────────  ─────────────────────────────────────────
    Blank message                  triaged and sent as "HELP"
    Classifier artifact broken     "Unknown" label on that axis, send goes on
    Location denied / timed out    last known fix, else explicit unavailable
    Device offline                 QUEUED, store never contacted
    Store unreachable / rejects    QUEUED ("queued, will retry")
    Rate limit / cooldown          REJECTED with wait hint, nothing recorded
    Send history unreadable        sent without the local limit
    Pending queue write fails      QUEUED with a warning in the reason

``submit_alert`` never raises.

═══════════════════════════════════════════════════════════════════════════
RETRY POLICY
═══════════════════════════════════════════════════════════════════════════

    • Each offline → online transition triggers exactly one retry pass
    • An online explicit send first runs a retry pass, then sends the new
      alert; delivering the new alert clears whatever is still queued
    • A retry pass tries pending alerts oldest first, one attempt each, and
      stops at the first failure; failed alerts stay queued unchanged
    • Retries are not deduplicated against the remote store
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from lifeline.alerts.connectivity import ConnectivityMonitor
from lifeline.alerts.identity import IdentityProvider, StaticIdentityProvider, format_user
from lifeline.alerts.location import (
    FixedGeolocationSource,
    HttpGeolocationSource,
    LocationResolver,
)
from lifeline.alerts.models import (
    AlertRecord,
    Coordinates,
    Identity,
    PendingAlert,
    SubmissionResult,
    SubmissionState,
    SubmissionStatus,
)
from lifeline.alerts.pending import PendingAlertQueue
from lifeline.alerts.rate_limiter import RateDecision, SendRateLimiter
from lifeline.alerts.stores import AlertStore, HttpAlertStore
from lifeline.core.clock import Clock, SystemClock
from lifeline.core.config import Settings
from lifeline.core.storage import LocalStore
from lifeline.ml.triage import DEFAULT_MESSAGE, TriageResult, TriageService

logger = logging.getLogger(__name__)


@dataclass
class RetryReport:
    """Outcome of one pass over the pending queue."""
    attempted: int = 0
    delivered: List[str] = field(default_factory=list)
    remaining: int = 0
    skipped_offline: bool = False

    def to_dict(self):
        return {
            "attempted": self.attempted,
            "delivered": list(self.delivered),
            "remaining": self.remaining,
            "skipped_offline": self.skipped_offline,
        }


class SubmissionPipeline:
    """
    Owns the alert lifecycle on one device.

    Usage:
        pipeline = SubmissionPipeline(
            triage=triage_service,
            store=HttpAlertStore(url),
            local_store=JsonFileStore("data/device_state.json"),
            connectivity=ConnectivityMonitor(online=True),
            location=LocationResolver(source, local_store, clock),
            identity=StaticIdentityProvider(Identity("u1", is_temporary=True)),
        )
        result = await pipeline.submit_alert("fire downtown need help")
    """

    def __init__(
        self,
        *,
        triage: TriageService,
        store: AlertStore,
        local_store: LocalStore,
        connectivity: ConnectivityMonitor,
        location: LocationResolver,
        identity: IdentityProvider,
        clock: Optional[Clock] = None,
        rate_limiter: Optional[SendRateLimiter] = None,
        pending: Optional[PendingAlertQueue] = None,
        default_message: str = DEFAULT_MESSAGE,
    ):
        self.triage_service = triage
        self.store = store
        self.local_store = local_store
        self.connectivity = connectivity
        self.location = location
        self.identity = identity
        self.clock = clock or SystemClock()
        self.rate_limiter = rate_limiter or SendRateLimiter(local_store, self.clock)
        self.pending = pending or PendingAlertQueue(local_store)
        self.default_message = default_message

        self.state = SubmissionState.IDLE
        self._retry_lock = asyncio.Lock()
        self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)

    # ---- Construction ----

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        *,
        triage: TriageService,
        local_store: LocalStore,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Optional[Clock] = None,
    ) -> "SubmissionPipeline":
        clock = clock or SystemClock()
        if config.GEOLOCATION_URL:
            source = HttpGeolocationSource(config.GEOLOCATION_URL)
        else:
            source = FixedGeolocationSource(config.DEVICE_LATITUDE, config.DEVICE_LONGITUDE)
        return cls(
            triage=triage,
            store=HttpAlertStore(
                config.ALERT_STORE_URL,
                timeout=config.ALERT_STORE_TIMEOUT,
                token=config.ALERT_STORE_TOKEN,
            ),
            local_store=local_store,
            connectivity=connectivity or ConnectivityMonitor(online=True),
            location=LocationResolver(
                source, local_store, clock, timeout_seconds=config.LOCATION_TIMEOUT_SECONDS,
            ),
            identity=StaticIdentityProvider.from_settings(config),
            clock=clock,
            rate_limiter=SendRateLimiter(
                local_store,
                clock,
                max_sends=config.RATE_LIMIT_MAX_SENDS,
                window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
                cooldown_seconds=config.SEND_COOLDOWN_SECONDS,
            ),
            pending=PendingAlertQueue(local_store, capacity=config.PENDING_QUEUE_CAPACITY),
            default_message=config.DEFAULT_MESSAGE,
        )

    def close(self) -> None:
        """Stop listening to connectivity changes."""
        self._unsubscribe()

    # ---- Helpers ----

    def _enter(self, state: SubmissionState) -> None:
        logger.debug("Submission state %s → %s", self.state.value, state.value,
                     extra={"state": state.value})
        self.state = state

    async def _current_identity(self) -> Optional[Identity]:
        try:
            return await self.identity.current_identity()
        except Exception:
            logger.exception("Identity provider failed, sending as unknown user")
            return None

    async def _queue(
        self,
        record: AlertRecord,
        reason: str,
        last_error: str,
        triage: TriageResult,
        coordinates: Coordinates,
    ) -> SubmissionResult:
        try:
            await self.pending.enqueue(
                PendingAlert(record=record, queued_at=self.clock.now(), last_error=last_error)
            )
        except Exception as e:
            logger.error("Alert %s could not be saved to the pending queue: %s",
                         record.alert_id, e, extra={"alert_id": record.alert_id})
            reason = (
                f"{reason} Warning: the alert could not be saved on this device ({e}) "
                "and will not be retried automatically."
            )
        else:
            logger.info("Alert %s queued: %s", record.alert_id, last_error,
                        extra={"alert_id": record.alert_id})
        self._enter(SubmissionState.QUEUED)
        return SubmissionResult(
            status=SubmissionStatus.QUEUED, reason=reason, triage=triage,
            alert_id=record.alert_id, coordinates=coordinates,
        )

    # ---- Entry point ----

    async def submit_alert(self, message: Optional[str]) -> SubmissionResult:
        """
        Submit one emergency message.

        Returns
        -------
        SubmissionResult
            DELIVERED, QUEUED, or REJECTED (rate limit / cooldown).
        """
        try:
            return await self._submit(message)
        except Exception as e:
            logger.exception("Unexpected failure during submission")
            self._enter(SubmissionState.IDLE)
            return SubmissionResult(
                status=SubmissionStatus.REJECTED,
                reason=f"Alert could not be processed: {e}",
            )

    async def _submit(self, message: Optional[str]) -> SubmissionResult:
        # ── Rate check ──
        self._enter(SubmissionState.RATE_CHECKING)
        try:
            decision = await self.rate_limiter.try_acquire()
        except Exception:
            logger.exception("Send history unavailable, sending without the local rate limit")
            decision = RateDecision(allowed=True)
        if not decision.allowed:
            self._enter(SubmissionState.IDLE)
            logger.info("Alert rejected: %s", decision.reason)
            return SubmissionResult(
                status=SubmissionStatus.REJECTED,
                reason=decision.reason,
                retry_after_seconds=decision.retry_after_seconds,
            )

        # ── Triage (location fix runs alongside; both finish before sending) ──
        self._enter(SubmissionState.TRIAGING)
        text = (message or "").strip() or self.default_message
        triage, coordinates = await asyncio.gather(
            self._safe_triage(text),
            self._safe_location(),
        )
        identity = await self._current_identity()

        record = AlertRecord(
            user=format_user(identity),
            user_id=identity.subject_id if identity else None,
            message=text,
            coordinates=coordinates,
            triage=triage,
            created_at=self.clock.now(),
        )

        # ── Send or queue ──
        self._enter(SubmissionState.SENDING)
        if not self.connectivity.is_online:
            reason = "Offline: alert queued locally and will be sent when connectivity returns."
            return await self._queue(record, reason, reason, triage, coordinates)

        try:
            await self.retry_pending()
        except Exception:
            logger.exception("Pending queue unavailable, skipping retry before send")

        try:
            record_id = await self.store.append(record)
        except Exception as e:
            logger.warning("Send failed for %s: %s", record.alert_id, e,
                           extra={"alert_id": record.alert_id})
            reason = "Alert could not be sent; queued, will retry."
            return await self._queue(record, reason, str(e), triage, coordinates)

        try:
            superseded = await self.pending.clear()
        except Exception as e:
            logger.warning("Could not clear superseded pending alerts: %s", e)
            superseded = 0
        if superseded:
            logger.warning("Delivered alert %s supersedes %d queued alert(s)",
                           record.alert_id, superseded,
                           extra={"alert_id": record.alert_id, "pending_count": superseded})
        self._enter(SubmissionState.DELIVERED)
        logger.info(
            "Alert %s delivered [%s / %s]", record.alert_id, triage.category, triage.urgency,
            extra={"alert_id": record.alert_id, "category": triage.category,
                   "urgency": triage.urgency},
        )
        return SubmissionResult(
            status=SubmissionStatus.DELIVERED,
            reason="Help request sent.",
            triage=triage,
            alert_id=record.alert_id,
            record_id=record_id,
            coordinates=coordinates,
        )

    async def _safe_triage(self, text: str) -> TriageResult:
        try:
            return await self.triage_service.triage(text)
        except Exception:
            logger.exception("Triage failed, sending without classification")
            return TriageResult.fallback(self.triage_service.fallback_label)

    async def _safe_location(self) -> Coordinates:
        try:
            return await self.location.resolve()
        except Exception as e:
            logger.exception("Location resolution failed")
            return Coordinates.unavailable(str(e))

    # ---- Queue handling ----

    async def retry_pending(self) -> RetryReport:
        """
        One delivery attempt per pending alert, oldest first.

        Stops at the first failure; delivered alerts are removed, the rest
        stay queued unchanged.
        """
        async with self._retry_lock:
            report = RetryReport()
            items = await self.pending.list()
            if not items:
                return report
            if not self.connectivity.is_online:
                report.skipped_offline = True
                report.remaining = len(items)
                return report

            for item in items:
                report.attempted += 1
                try:
                    await self.store.append(item.record)
                except Exception as e:
                    logger.warning("Retry of pending alert %s failed: %s", item.alert_id, e,
                                   extra={"alert_id": item.alert_id})
                    break
                await self.pending.remove(item.alert_id)
                report.delivered.append(item.alert_id)
                logger.info("Pending alert %s sent", item.alert_id,
                            extra={"alert_id": item.alert_id})

            report.remaining = await self.pending.count()
            return report

    async def _on_connectivity_change(self, online: bool) -> None:
        if online:
            report = await self.retry_pending()
            if report.attempted:
                logger.info(
                    "Reconnect retry: %d sent, %d still pending",
                    len(report.delivered), report.remaining,
                    extra={"pending_count": report.remaining},
                )

    async def pending_alerts(self) -> List[PendingAlert]:
        return await self.pending.list()

    async def prime_location(self) -> Coordinates:
        """Refresh the cached location ahead of any send (app open / UI refresh)."""
        return await self._safe_location()
