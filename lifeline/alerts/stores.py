"""
stores.py — Remote, append-only alert stores.

Contract:
    await store.append(record) -> record id      (AlertStoreError on failure)

No update/merge semantics; marking an alert completed belongs to the
responder side and is not part of this package.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

import httpx

from lifeline.alerts.models import AlertRecord
from lifeline.core.errors import AlertStoreError

logger = logging.getLogger(__name__)


class AlertStore(Protocol):
    async def append(self, record: AlertRecord) -> str:
        ...


class HttpAlertStore:
    """
    POSTs the alert record as JSON to a collection endpoint.

    The response body is expected to carry the new record id as ``id``
    (``name`` / ``alert_id`` also accepted); otherwise the local alert id
    is used.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.token = token
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
            self._http_client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def append(self, record: AlertRecord) -> str:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=record.to_dict())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AlertStoreError(
                f"store rejected record ({e.response.status_code})",
                alert_id=record.alert_id,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise AlertStoreError(
                f"store unreachable ({type(e).__name__})", alert_id=record.alert_id,
            ) from e

        try:
            body: Dict[str, Any] = response.json()
        except ValueError:
            body = {}
        record_id = str(
            body.get("id") or body.get("name") or body.get("alert_id") or record.alert_id
        )
        logger.info("Alert %s appended as %s", record.alert_id, record_id,
                    extra={"alert_id": record.alert_id})
        return record_id


class InMemoryAlertStore:
    """Append-only list; ``fail_next`` / ``available`` simulate outages."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []
        self.available = True
        self.fail_next = 0
        self.calls = 0

    async def append(self, record: AlertRecord) -> str:
        self.calls += 1
        if not self.available:
            raise AlertStoreError("store unavailable", alert_id=record.alert_id)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise AlertStoreError("simulated failure", alert_id=record.alert_id)

        record_id = uuid.uuid4().hex[:20]
        self.records.append({"id": record_id, **record.to_dict()})
        return record_id
