"""
pending.py — On-device queue of alerts awaiting delivery.

Stored under one key of the local store as a JSON list, oldest first.

Capacity policy:
    capacity == 1   single pending slot; a new failure replaces the old
                    pending alert
    capacity  > 1   small bounded queue; when full the OLDEST entry is
                    dropped to make room

Either way a drop is logged at WARNING with the dropped alert id.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from lifeline.alerts.models import PendingAlert
from lifeline.core.storage import LocalStore

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_alerts"


class PendingAlertQueue:
    """Bounded FIFO of PendingAlert persisted in a LocalStore."""

    def __init__(self, store: LocalStore, capacity: int = 1):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.store = store
        self.capacity = capacity

    async def list(self) -> List[PendingAlert]:
        raw = await self.store.get(PENDING_KEY, [])
        items: List[PendingAlert] = []
        for entry in raw or []:
            try:
                items.append(PendingAlert.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Discarding unreadable pending alert: %s", e)
        return items

    async def _save(self, items: List[PendingAlert]) -> None:
        if items:
            await self.store.set(PENDING_KEY, [p.to_dict() for p in items])
        else:
            await self.store.delete(PENDING_KEY)

    async def count(self) -> int:
        return len(await self.list())

    async def peek(self) -> Optional[PendingAlert]:
        items = await self.list()
        return items[0] if items else None

    async def enqueue(self, pending: PendingAlert) -> List[PendingAlert]:
        """
        Add (or update in place, by alert id) a pending alert.

        Returns
        -------
        list of PendingAlert
            Entries dropped to respect the capacity.
        """
        items = await self.list()
        for i, existing in enumerate(items):
            if existing.alert_id == pending.alert_id:
                items[i] = pending
                await self._save(items)
                return []

        items.append(pending)
        dropped: List[PendingAlert] = []
        while len(items) > self.capacity:
            dropped.append(items.pop(0))

        for d in dropped:
            logger.warning(
                "Pending queue full (capacity=%d), dropping older alert %s",
                self.capacity, d.alert_id,
                extra={"alert_id": d.alert_id},
            )

        await self._save(items)
        return dropped

    async def remove(self, alert_id: str) -> bool:
        items = await self.list()
        kept = [p for p in items if p.alert_id != alert_id]
        if len(kept) == len(items):
            return False
        await self._save(kept)
        return True

    async def clear(self) -> int:
        n = await self.count()
        await self.store.delete(PENDING_KEY)
        return n
