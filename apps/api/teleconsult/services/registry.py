"""Connection registry mapping live connections to declared identities."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..schemas.signaling import IdentityView, Role

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Identity:
    """Identity claimed by a connection through ``register``."""

    id: str
    display_name: str
    role: Role
    connection_id: str
    available: bool = False

    def to_view(self) -> IdentityView:
        return IdentityView(
            id=self.id,
            display_name=self.display_name,
            role=self.role,
            available=self.available,
            connection_id=self.connection_id,
        )


class ConnectionRegistry:
    """Track registered identities keyed by connection id."""

    def __init__(self) -> None:
        self._identities: Dict[str, Identity] = {}

    def register(self, connection_id: str, user_id: str, name: str, role: Role) -> Identity:
        """Record the identity for a connection, replacing any earlier claim."""

        identity = Identity(
            id=user_id,
            display_name=name,
            role=role,
            connection_id=connection_id,
            available=role is Role.EXPERT,
        )
        previous = self._identities.get(connection_id)
        if previous is not None:
            logger.info("[REGISTER] Connection %s re-registered (was %s)", connection_id, previous.id)
        self._identities[connection_id] = identity
        logger.info("[REGISTER] %s registered: %s (%s)", role.value, name, user_id)
        return identity

    def set_availability(self, connection_id: str, available: bool) -> Optional[Identity]:
        """Toggle an expert's availability; anything else is ignored."""

        identity = self._identities.get(connection_id)
        if identity is None:
            logger.debug("Ignoring availability toggle from unregistered connection %s", connection_id)
            return None
        if identity.role is not Role.EXPERT:
            logger.info("Ignoring availability toggle from %s %s", identity.role.value, identity.id)
            return None
        identity.available = available
        logger.info(
            "[AVAILABILITY] %s is now %s",
            identity.display_name,
            "AVAILABLE" if available else "UNAVAILABLE",
        )
        return identity

    def find(self, user_id: str | None) -> Optional[Identity]:
        """Return the first live identity carrying ``user_id``."""

        if user_id is None:
            return None
        for identity in self._identities.values():
            if identity.id == user_id:
                return identity
        return None

    def for_connection(self, connection_id: str) -> Optional[Identity]:
        return self._identities.get(connection_id)

    def find_by_role(self, role: Role) -> list[Identity]:
        return [identity for identity in self._identities.values() if identity.role is role]

    def remove(self, connection_id: str) -> Optional[Identity]:
        return self._identities.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._identities)
