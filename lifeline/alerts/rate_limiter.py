"""
rate_limiter.py — Local send throttling.

Two rules, both evaluated against the device's own send history:

    Rule        Limit                               Wait hint
    ──────────  ──────────────────────────────────  ──────────────────────────
    Hourly cap  ≥ max_sends attempts in the window  oldest attempt + window − now
    Cooldown    < cooldown s since the last attempt cooldown − elapsed

Only attempts that passed the check are recorded, whatever their delivery
outcome; a rejected call leaves no trace. History entries older than the
window are pruned on every check, and the counters reset only by time decay.

``try_acquire`` checks and records under one lock, so concurrent sends in
this process see each other. If the device store refuses the history
write, the attempt is kept in memory until the window drops it.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from lifeline.core.clock import Clock, elapsed_since
from lifeline.core.storage import LocalStore

logger = logging.getLogger(__name__)

SEND_HISTORY_KEY = "send_history"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    reason: str = ""
    retry_after_seconds: Optional[float] = None


class SendRateLimiter:
    """Hourly cap + cooldown over a persisted list of attempt timestamps."""

    def __init__(
        self,
        store: LocalStore,
        clock: Clock,
        *,
        max_sends: int = 5,
        window_seconds: float = 3600.0,
        cooldown_seconds: float = 10.0,
    ):
        self.store = store
        self.clock = clock
        self.max_sends = max_sends
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._lock = asyncio.Lock()
        # attempts whose history write failed
        self._unpersisted: List[float] = []

    async def _load_history(self) -> List[float]:
        raw = await self.store.get(SEND_HISTORY_KEY, [])
        history: List[float] = []
        for ts in raw or []:
            try:
                history.append(float(ts))
            except (TypeError, ValueError):
                logger.warning("Dropping malformed send-history entry %r", ts)
        return history

    def _prune(self, history: List[float]) -> List[float]:
        now = self.clock.time()
        # entries from the "future" (clock stepped back) are pinned to now
        pinned = [min(ts, now) for ts in history]
        return sorted(ts for ts in pinned if elapsed_since(self.clock, ts) < self.window_seconds)

    def _merge(self, stored: List[float]) -> List[float]:
        self._unpersisted = self._prune(self._unpersisted)
        return self._prune(list(set(stored) | set(self._unpersisted)))

    async def history(self) -> List[float]:
        return self._merge(await self._load_history())

    async def check(self) -> RateDecision:
        """Evaluate both rules; prunes and persists the history."""
        raw = await self._load_history()
        stored = self._prune(raw)
        if stored != raw:
            try:
                await self.store.set(SEND_HISTORY_KEY, stored)
            except Exception as e:
                logger.warning("Could not persist pruned send history: %s", e)
        history = self._merge(stored)

        if len(history) >= self.max_sends:
            wait = self.window_seconds - elapsed_since(self.clock, history[0])
            return RateDecision(
                allowed=False,
                reason=(
                    f"Too many alerts: {len(history)} sent in the last "
                    f"{self.window_seconds / 60:.0f} minutes. "
                    f"Try again in {math.ceil(max(wait, 0))} seconds."
                ),
                retry_after_seconds=max(wait, 0.0),
            )

        if history:
            since_last = elapsed_since(self.clock, history[-1])
            if since_last < self.cooldown_seconds:
                wait = self.cooldown_seconds - since_last
                return RateDecision(
                    allowed=False,
                    reason=f"Please wait {math.ceil(wait)} seconds before sending another alert.",
                    retry_after_seconds=wait,
                )

        return RateDecision(allowed=True)

    async def record_attempt(self) -> None:
        """Append now to the history. Raises when the store refuses the write."""
        history = await self.history()
        history.append(self.clock.time())
        await self.store.set(SEND_HISTORY_KEY, history[-max(self.max_sends, 1):])

    async def try_acquire(self) -> RateDecision:
        """Check both rules and, when allowed, record the attempt in one step."""
        async with self._lock:
            decision = await self.check()
            if decision.allowed:
                now = self.clock.time()
                try:
                    await self.record_attempt()
                except Exception as e:
                    logger.warning("Send history not persisted, tracking in memory: %s", e)
                    self._unpersisted.append(now)
            return decision
