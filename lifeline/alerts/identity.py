"""Identity provider contract and a settings-backed implementation."""

from __future__ import annotations

from typing import Optional, Protocol

from lifeline.alerts.models import UNKNOWN_USER, Identity
from lifeline.core.config import Settings


class IdentityProvider(Protocol):
    async def current_identity(self) -> Optional[Identity]:
        ...


class StaticIdentityProvider:
    """Returns one fixed identity (device-bound deployments, tests)."""

    def __init__(self, identity: Optional[Identity] = None):
        self.identity = identity

    async def current_identity(self) -> Optional[Identity]:
        return self.identity

    @classmethod
    def from_settings(cls, config: Settings) -> "StaticIdentityProvider":
        if not config.DEVICE_USER_ID:
            return cls(None)
        return cls(Identity(
            subject_id=config.DEVICE_USER_ID,
            is_temporary=config.DEVICE_USER_TEMPORARY,
            email=config.DEVICE_USER_EMAIL,
        ))


def format_user(identity: Optional[Identity]) -> str:
    """``"Guest (<id>)"`` for temporary identities, durable id otherwise."""
    return identity.display_name if identity else UNKNOWN_USER
