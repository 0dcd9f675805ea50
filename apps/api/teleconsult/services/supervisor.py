"""Cleanup when a connection goes away."""
from __future__ import annotations

import logging

from ..schemas.signaling import Role, SignalType
from .notifications import Notification, fan_out, signal
from .registry import ConnectionRegistry
from .rooms import RoomMembership
from .workflow import SessionWorkflow

logger = logging.getLogger(__name__)

REQUESTER_DISCONNECTED = "Requester disconnected"
EXPERT_DISCONNECTED = "Expert disconnected"


class DisconnectSupervisor:
    """Force every workflow a departing identity took part in to its end state."""

    def __init__(self, registry: ConnectionRegistry, rooms: RoomMembership, workflow: SessionWorkflow) -> None:
        self._registry = registry
        self._rooms = rooms
        self._workflow = workflow

    def handle(self, connection_id: str) -> list[Notification]:
        """Release everything held by ``connection_id``. Safe to call for idle connections."""

        notifications: list[Notification] = []
        identity = self._registry.remove(connection_id)

        # Another connection may still carry the same identity (e.g. a reconnect
        # that arrived before the old socket closed); its sessions stay up.
        if identity is not None and self._registry.find(identity.id) is None:
            # Matched by id: a connection that re-registered under another role
            # still owns the request it opened.
            request = self._workflow.live_request_for(identity.id)
            if request is not None:
                logger.info("[AUTO-END] Requester %s left, ending session %s", identity.display_name, request.id)
                notifications.extend(self._workflow.force_end(request.id, REQUESTER_DISCONNECTED))
            if identity.role is Role.EXPERT:
                for request in self._workflow.requests_for_expert(identity.id):
                    logger.info("[AUTO-END] Expert %s left, ending session %s", identity.display_name, request.id)
                    notifications.extend(self._workflow.force_end(request.id, EXPERT_DISCONNECTED))

        departure = self._rooms.leave(connection_id)
        if departure is not None and departure.remaining:
            payload = {
                "role": departure.member.role.value if departure.member.role is not None else None,
                "roomId": departure.room_id,
                "userId": departure.member.user_id,
                "userName": departure.member.user_name,
            }
            message = signal(SignalType.LEAVE, payload)
            notifications.extend(fan_out((member.connection_id for member in departure.remaining), message))

        logger.info("[DISCONNECT] Connection %s cleaned up", connection_id)
        return notifications
