"""
test_submission.py — End-to-end alert submission: delivery, offline queueing,
reconnect retry, rate limiting and degraded inputs.

Run with:
    pytest tests/test_submission.py -v
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import DEVICE_LAT, DEVICE_LON, make_pipeline
from lifeline.core.storage import MemoryStore
from lifeline.alerts.location import FixedGeolocationSource
from lifeline.alerts.models import SubmissionState, SubmissionStatus
from lifeline.ml.category import CategoryClassifier
from lifeline.ml.registry import ModelRegistry
from lifeline.ml.triage import TriageService
from lifeline.ml.urgency import UrgencyClassifier

COOLDOWN_GAP = 11


class YieldingStore(MemoryStore):
    """Suspends on every access, like a networked backend."""

    async def get(self, key, default=None):
        await asyncio.sleep(0)
        return await super().get(key, default)

    async def set(self, key, value):
        await asyncio.sleep(0)
        await super().set(key, value)


class FullDiskStore(MemoryStore):
    """Reads work, every write fails."""

    async def set(self, key, value):
        raise OSError("disk full")


@pytest.fixture
def full_disk_pipeline(triage_service, alert_store, connectivity, clock):
    return make_pipeline(
        triage=triage_service, store=alert_store, local_store=FullDiskStore(),
        connectivity=connectivity, clock=clock,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Online delivery
# ═══════════════════════════════════════════════════════════════════════════

class TestDelivery:
    @pytest.mark.asyncio
    async def test_fire_alert_delivered(self, pipeline, alert_store):
        result = await pipeline.submit_alert("fire downtown need help")

        assert result.status == SubmissionStatus.DELIVERED
        assert result.reason == "Help request sent."
        assert result.triage.category == "Fire"
        assert result.triage.urgency == "High"
        assert pipeline.state == SubmissionState.DELIVERED

        [stored] = alert_store.records
        assert stored["id"] == result.record_id
        assert stored["user"] == "Guest (u-123)"
        assert stored["category"] == "Fire"
        assert stored["urgency_level"] == "High"
        assert stored["coords"] == {"available": True, "latitude": DEVICE_LAT, "longitude": DEVICE_LON}
        assert stored["alert_completed"] is False

    @pytest.mark.asyncio
    async def test_blank_message_sent_as_help(self, pipeline, alert_store):
        result = await pipeline.submit_alert("   ")
        assert result.delivered
        assert alert_store.records[0]["message"] == "HELP"

    @pytest.mark.asyncio
    async def test_record_time_from_clock(self, pipeline, alert_store, clock):
        await pipeline.submit_alert("flood")
        assert alert_store.records[0]["time"] == clock.now().isoformat()

    @pytest.mark.asyncio
    async def test_unknown_user(self, triage_service, alert_store, memory_store,
                                connectivity, clock):
        pipeline = make_pipeline(
            triage=triage_service, store=alert_store, local_store=memory_store,
            connectivity=connectivity, clock=clock, identity=None,
        )
        await pipeline.submit_alert("help")
        assert alert_store.records[0]["user"] == "Unknown User"
        assert alert_store.records[0]["user_id"] is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Degraded inputs still send
# ═══════════════════════════════════════════════════════════════════════════

class TestDegraded:
    @pytest.mark.asyncio
    async def test_location_unavailable_marked_not_zeroed(
        self, triage_service, alert_store, memory_store, connectivity, clock,
    ):
        pipeline = make_pipeline(
            triage=triage_service, store=alert_store, local_store=memory_store,
            connectivity=connectivity, clock=clock, source=FixedGeolocationSource(),
        )
        result = await pipeline.submit_alert("fire")
        assert result.delivered
        coords = alert_store.records[0]["coords"]
        assert coords["available"] is False
        assert "latitude" not in coords

    @pytest.mark.asyncio
    async def test_missing_classifiers_send_unknown(
        self, alert_store, memory_store, connectivity, clock,
    ):
        empty = ModelRegistry()
        triage = TriageService(UrgencyClassifier(empty), CategoryClassifier(empty))
        pipeline = make_pipeline(
            triage=triage, store=alert_store, local_store=memory_store,
            connectivity=connectivity, clock=clock,
        )
        result = await pipeline.submit_alert("fire downtown")
        assert result.delivered
        assert alert_store.records[0]["category"] == "Unknown"
        assert alert_store.records[0]["urgency_level"] == "Unknown"

    @pytest.mark.asyncio
    async def test_failing_identity_provider(self, pipeline, alert_store):
        pipeline.identity = AsyncMock()
        pipeline.identity.current_identity.side_effect = RuntimeError("auth backend down")
        assert (await pipeline.submit_alert("help")).delivered
        assert alert_store.records[0]["user"] == "Unknown User"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Offline queueing and retry
# ═══════════════════════════════════════════════════════════════════════════

class TestOfflineAndRetry:
    @pytest.mark.asyncio
    async def test_offline_alert_queued_without_contacting_store(
        self, pipeline, alert_store, connectivity,
    ):
        await connectivity.set_online(False)
        result = await pipeline.submit_alert("flood water rising")

        assert result.status == SubmissionStatus.QUEUED
        assert result.reason.startswith("Offline")
        assert alert_store.calls == 0
        pending = await pipeline.pending_alerts()
        assert [p.alert_id for p in pending] == [result.alert_id]
        assert pipeline.state == SubmissionState.QUEUED

    @pytest.mark.asyncio
    async def test_reconnect_sends_pending(self, pipeline, alert_store, connectivity):
        await connectivity.set_online(False)
        queued = await pipeline.submit_alert("flood water rising")

        await connectivity.set_online(True)

        assert [r["alert_id"] for r in alert_store.records] == [queued.alert_id]
        assert await pipeline.pending.count() == 0

    @pytest.mark.asyncio
    async def test_reconnect_retry_failure_keeps_alert(self, pipeline, alert_store, connectivity):
        await connectivity.set_online(False)
        queued = await pipeline.submit_alert("flood")
        alert_store.available = False

        await connectivity.set_online(True)
        assert alert_store.calls == 1
        assert [p.alert_id for p in await pipeline.pending_alerts()] == [queued.alert_id]

        # next reconnect gets exactly one more attempt
        await connectivity.set_online(False)
        alert_store.available = True
        await connectivity.set_online(True)
        assert alert_store.calls == 2
        assert await pipeline.pending.count() == 0

    @pytest.mark.asyncio
    async def test_repeated_online_reports_do_not_retry(self, pipeline, alert_store, connectivity):
        await connectivity.set_online(False)
        await pipeline.submit_alert("flood")
        alert_store.available = False
        await connectivity.set_online(True)
        await connectivity.set_online(True)
        assert alert_store.calls == 1

    @pytest.mark.asyncio
    async def test_store_failure_online_queues(self, pipeline, alert_store):
        alert_store.fail_next = 1
        result = await pipeline.submit_alert("fire")
        assert result.status == SubmissionStatus.QUEUED
        assert result.reason == "Alert could not be sent; queued, will retry."
        assert (await pipeline.pending.peek()).last_error

    @pytest.mark.asyncio
    async def test_explicit_send_retries_pending_first(self, pipeline, alert_store, clock):
        alert_store.fail_next = 1
        queued = await pipeline.submit_alert("smoke in stairwell")
        clock.advance(COOLDOWN_GAP)

        result = await pipeline.submit_alert("fire spreading")

        assert result.delivered
        assert [r["alert_id"] for r in alert_store.records] == [queued.alert_id, result.alert_id]
        assert await pipeline.pending.count() == 0

    @pytest.mark.asyncio
    async def test_new_delivery_supersedes_stuck_pending(self, pipeline, alert_store, clock):
        alert_store.fail_next = 1
        await pipeline.submit_alert("first")
        clock.advance(COOLDOWN_GAP)

        # the retry of "first" fails, the new alert goes through
        alert_store.fail_next = 1
        result = await pipeline.submit_alert("second")

        assert result.delivered
        assert [r["message"] for r in alert_store.records] == ["second"]
        assert await pipeline.pending.count() == 0

    @pytest.mark.asyncio
    async def test_single_slot_keeps_newest(self, pipeline, connectivity, clock):
        await connectivity.set_online(False)
        await pipeline.submit_alert("older")
        clock.advance(COOLDOWN_GAP)
        newer = await pipeline.submit_alert("newer")

        pending = await pipeline.pending_alerts()
        assert [p.alert_id for p in pending] == [newer.alert_id]

    @pytest.mark.asyncio
    async def test_larger_queue_retries_oldest_first(
        self, triage_service, alert_store, memory_store, connectivity, clock,
    ):
        pipeline = make_pipeline(
            triage=triage_service, store=alert_store, local_store=memory_store,
            connectivity=connectivity, clock=clock, capacity=3,
        )
        await connectivity.set_online(False)
        ids = []
        for msg in ("one", "two", "three"):
            ids.append((await pipeline.submit_alert(msg)).alert_id)
            clock.advance(COOLDOWN_GAP)

        await connectivity.set_online(True)
        assert [r["alert_id"] for r in alert_store.records] == ids

    @pytest.mark.asyncio
    async def test_retry_stops_at_first_failure(
        self, triage_service, alert_store, memory_store, connectivity, clock,
    ):
        pipeline = make_pipeline(
            triage=triage_service, store=alert_store, local_store=memory_store,
            connectivity=connectivity, clock=clock, capacity=3,
        )
        await connectivity.set_online(False)
        for msg in ("one", "two", "three"):
            await pipeline.submit_alert(msg)
            clock.advance(COOLDOWN_GAP)

        connectivity._online = True
        alert_store.fail_next = 1
        report = await pipeline.retry_pending()
        assert report.attempted == 1
        assert report.delivered == []
        assert report.remaining == 3

    @pytest.mark.asyncio
    async def test_retry_while_offline_skipped(self, pipeline, alert_store, connectivity):
        await connectivity.set_online(False)
        await pipeline.submit_alert("flood")
        report = await pipeline.retry_pending()
        assert report.skipped_offline
        assert report.remaining == 1
        assert alert_store.calls == 0

    @pytest.mark.asyncio
    async def test_close_stops_reconnect_retry(self, pipeline, alert_store, connectivity):
        await connectivity.set_online(False)
        await pipeline.submit_alert("flood")
        pipeline.close()
        await connectivity.set_online(True)
        assert alert_store.calls == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Rate limiting through the pipeline
# ═══════════════════════════════════════════════════════════════════════════

class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_cooldown_rejects_without_side_effects(self, pipeline, alert_store, clock):
        await pipeline.submit_alert("fire")
        clock.advance(3)

        result = await pipeline.submit_alert("fire again")

        assert result.status == SubmissionStatus.REJECTED
        assert result.retry_after_seconds == pytest.approx(7)
        assert result.triage is None
        assert len(alert_store.records) == 1
        assert pipeline.state == SubmissionState.IDLE

    @pytest.mark.asyncio
    async def test_sixth_send_in_hour_rejected(self, pipeline, alert_store, clock):
        for i in range(5):
            assert (await pipeline.submit_alert(f"help {i}")).delivered
            clock.advance(COOLDOWN_GAP)

        result = await pipeline.submit_alert("help again")
        assert result.status == SubmissionStatus.REJECTED
        assert "Too many alerts" in result.reason
        assert len(alert_store.records) == 5

    @pytest.mark.asyncio
    async def test_queued_attempts_count_towards_limit(self, pipeline, connectivity, clock):
        await connectivity.set_online(False)
        for _ in range(5):
            assert (await pipeline.submit_alert("help")).queued
            clock.advance(COOLDOWN_GAP)
        assert (await pipeline.submit_alert("help")).status == SubmissionStatus.REJECTED

    @pytest.mark.asyncio
    async def test_window_expiry_allows_sending_again(self, pipeline, alert_store, clock):
        for i in range(5):
            assert (await pipeline.submit_alert(f"help {i}")).delivered
            clock.advance(COOLDOWN_GAP)
        assert (await pipeline.submit_alert("help")).status == SubmissionStatus.REJECTED

        clock.advance(60 * 60)
        result = await pipeline.submit_alert("help again")
        assert result.delivered
        assert len(alert_store.records) == 6

    @pytest.mark.asyncio
    async def test_concurrent_submits_share_one_cooldown(
        self, triage_service, alert_store, connectivity, clock,
    ):
        pipeline = make_pipeline(
            triage=triage_service, store=alert_store, local_store=YieldingStore(),
            connectivity=connectivity, clock=clock,
        )
        results = await asyncio.gather(
            pipeline.submit_alert("fire"), pipeline.submit_alert("fire"),
        )
        statuses = sorted(r.status for r in results)
        assert statuses == [SubmissionStatus.DELIVERED, SubmissionStatus.REJECTED]
        assert alert_store.calls == 1

    @pytest.mark.asyncio
    async def test_reconnect_retry_not_rate_limited(self, pipeline, alert_store, connectivity, clock):
        await connectivity.set_online(False)
        await pipeline.submit_alert("flood")
        # still inside the cooldown window
        clock.advance(1)
        await connectivity.set_online(True)
        assert len(alert_store.records) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Never raises
# ═══════════════════════════════════════════════════════════════════════════

class TestNeverRaises:
    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_rejection(self, pipeline, monkeypatch):
        def broken(identity):
            raise RuntimeError("formatter bug")

        monkeypatch.setattr("lifeline.alerts.submission.format_user", broken)
        result = await pipeline.submit_alert("fire")
        assert result.status == SubmissionStatus.REJECTED
        assert "could not be processed" in result.reason
        assert pipeline.state == SubmissionState.IDLE

    @pytest.mark.asyncio
    async def test_prime_location_caches_fix(self, pipeline, memory_store):
        coords = await pipeline.prime_location()
        assert coords.is_available
        assert await pipeline.location.last_known() == coords


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Device store failures
# ═══════════════════════════════════════════════════════════════════════════

class TestDeviceStoreFailures:
    @pytest.mark.asyncio
    async def test_history_write_failure_still_delivers(self, full_disk_pipeline, alert_store):
        result = await full_disk_pipeline.submit_alert("fire downtown")
        assert result.delivered
        assert alert_store.calls == 1
        assert result.coordinates.is_available

    @pytest.mark.asyncio
    async def test_unpersisted_attempt_still_enforces_cooldown(
        self, full_disk_pipeline, alert_store, clock,
    ):
        await full_disk_pipeline.submit_alert("fire")
        clock.advance(3)
        result = await full_disk_pipeline.submit_alert("fire again")
        assert result.status == SubmissionStatus.REJECTED
        assert alert_store.calls == 1

    @pytest.mark.asyncio
    async def test_queue_write_failure_reported_as_queued(
        self, full_disk_pipeline, alert_store, connectivity,
    ):
        await connectivity.set_online(False)
        result = await full_disk_pipeline.submit_alert("flood water rising")
        assert result.status == SubmissionStatus.QUEUED
        assert "disk full" in result.reason
        assert "will not be retried" in result.reason
        assert alert_store.calls == 0

    @pytest.mark.asyncio
    async def test_unreadable_history_sends_without_limit(self, pipeline, alert_store):
        pipeline.rate_limiter = AsyncMock()
        pipeline.rate_limiter.try_acquire.side_effect = ConnectionError("redis down")
        assert (await pipeline.submit_alert("fire")).delivered
        assert alert_store.calls == 1
