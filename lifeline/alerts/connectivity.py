"""
connectivity.py — Online/offline signal with change notifications.

Listeners are coroutines called with the new state on every *transition*;
setting the same state twice notifies nobody. ``set_online`` awaits the
listeners, so a caller that reports "back online" can await the retry it
triggers.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Awaitable[None]]


class ConnectivityMonitor:
    """Holds the current connectivity state and fans out transitions."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def set_online(self, online: bool) -> bool:
        """
        Report the current connectivity.

        Returns
        -------
        bool
            True if this was a transition (listeners were notified).
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")

        for listener in list(self._listeners):
            try:
                await listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)
        return True
