"""Coordination core for the signaling server.

The coordinator is the single owner of the registry, the workflow tables and
the room membership table. Inbound messages are applied one at a time under a
lock; each handler returns the notifications it produced and delivery happens
once the lock is released.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable

from ..core.config import Settings, settings as default_settings
from ..schemas.signaling import (
    AssignExpertMessage,
    CreateSessionRequestMessage,
    EndSessionMessage,
    InboundMessage,
    JoinRoomMessage,
    LeaveSessionMessage,
    QueryMessage,
    RegisterMessage,
    RelayMessage,
    RespondToAssignmentMessage,
    Role,
    SetAvailabilityMessage,
    SignalType,
    dump_view,
)
from . import presence
from .notifications import Notification, event, fan_out, signal
from .registry import ConnectionRegistry
from .rooms import Member, RoomMembership
from .supervisor import DisconnectSupervisor
from .workflow import SessionWorkflow, room_id_sequence

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]

DISPATCHER_END_REASON = "Session ended by dispatcher"


@dataclass(slots=True)
class ClientConnection:
    """Transport handle for one connected client."""

    connection_id: str
    send: SendCallable


class Coordinator:
    """Apply inbound messages to the coordination state and fan out the results."""

    def __init__(self, config: Settings | None = None) -> None:
        config = config or default_settings
        self.registry = ConnectionRegistry()
        self.rooms = RoomMembership()
        self.workflow = SessionWorkflow(self.registry, self.rooms, room_id_sequence(config.room_id_prefix))
        self.supervisor = DisconnectSupervisor(self.registry, self.rooms, self.workflow)
        self._connections: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()
        self._handlers: Dict[type, Callable[[str, Any], list[Notification]]] = {
            RegisterMessage: self._on_register,
            SetAvailabilityMessage: self._on_set_availability,
            CreateSessionRequestMessage: self._on_create_session_request,
            AssignExpertMessage: self._on_assign_expert,
            RespondToAssignmentMessage: self._on_respond_to_assignment,
            EndSessionMessage: self._on_end_session,
            LeaveSessionMessage: self._on_leave_session,
            JoinRoomMessage: self._on_join_room,
            RelayMessage: self._on_relay,
            QueryMessage: self._on_query,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, connection: ClientConnection) -> None:
        async with self._lock:
            self._connections[connection.connection_id] = connection
        logger.info("[CONNECT] Client connected: %s", connection.connection_id)

    async def disconnect(self, connection_id: str) -> None:
        """Run disconnect cleanup and tell the affected parties."""

        async with self._lock:
            self._connections.pop(connection_id, None)
            try:
                notifications = self.supervisor.handle(connection_id)
            except Exception:  # noqa: BLE001 - cleanup must never propagate to the transport
                logger.exception("Disconnect cleanup failed for %s", connection_id)
                notifications = []
            notifications.extend(self._refresh_dispatchers())
        await self._deliver(notifications)

    async def dispatch(self, connection_id: str, message: InboundMessage) -> None:
        """Apply one inbound message from ``connection_id``."""

        handler = self._handlers[type(message)]
        async with self._lock:
            try:
                notifications = handler(connection_id, message)
            except Exception:  # noqa: BLE001 - a bad message must not close the connection
                logger.exception("Failed handling %s from %s", message.event, connection_id)
                notifications = []
        await self._deliver(notifications)

    async def _deliver(self, notifications: Iterable[Notification]) -> None:
        tasks = []
        for notification in notifications:
            connection = self._connections.get(notification.connection_id)
            if connection is None:
                logger.debug("Dropping message for departed connection %s", notification.connection_id)
                continue
            tasks.append(connection.send(notification.message))
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.debug("Failed to deliver message: %s", result)

    def status(self) -> dict[str, Any]:
        return {
            "rooms": self.rooms.room_ids(),
            "active_rooms": len(self.rooms),
            "connected_users": len(self.registry),
            "session_requests": len(self.workflow),
        }

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _refresh_dispatchers(self, users: bool = True, requests: bool = True) -> list[Notification]:
        notifications: list[Notification] = []
        if users:
            notifications.extend(presence.user_list_update(self.registry))
        if requests:
            notifications.extend(presence.session_requests_update(self.registry, self.workflow))
        return notifications

    def _on_register(self, connection_id: str, message: RegisterMessage) -> list[Notification]:
        identity = self.registry.register(connection_id, message.id, message.name, message.role)
        notifications = self._refresh_dispatchers(requests=False)
        if identity.role is Role.DISPATCHER:
            requests = event("session-requests-update", requests=presence.request_list(self.workflow))
            notifications.append(Notification(connection_id, requests))
        return notifications

    def _on_set_availability(self, connection_id: str, message: SetAvailabilityMessage) -> list[Notification]:
        if self.registry.set_availability(connection_id, message.available) is None:
            return []
        return self._refresh_dispatchers(requests=False)

    def _on_create_session_request(
        self, connection_id: str, message: CreateSessionRequestMessage
    ) -> list[Notification]:
        identity = self.registry.for_connection(connection_id)
        if identity is None or identity.role is not Role.REQUESTER:
            logger.info("Ignoring session request from %s: not a registered requester", connection_id)
            return []
        if message.requester_id is not None and message.requester_id != identity.id:
            logger.warning(
                "Session request from %s names requester %s; using registered id %s",
                connection_id,
                message.requester_id,
                identity.id,
            )
        requester_name = message.requester_name or identity.display_name
        notifications = self.workflow.create(connection_id, identity.id, requester_name)
        if not notifications:
            return []
        return notifications + self._refresh_dispatchers(users=False)

    def _on_assign_expert(self, connection_id: str, message: AssignExpertMessage) -> list[Notification]:
        notifications = self.workflow.assign(message.request_id, message.expert_id, message.expert_name)
        if not notifications:
            return []
        return notifications + self._refresh_dispatchers(users=False)

    def _on_respond_to_assignment(
        self, connection_id: str, message: RespondToAssignmentMessage
    ) -> list[Notification]:
        assignment = self.workflow.get_assignment(message.assignment_id)
        before = assignment.status if assignment is not None else None
        notifications = self.workflow.respond(message.assignment_id, message.accept, message.comment)
        if assignment is None or assignment.status is before:
            return notifications
        return notifications + self._refresh_dispatchers()

    def _on_end_session(self, connection_id: str, message: EndSessionMessage) -> list[Notification]:
        logger.info("[END SESSION] Received end-session for %s", message.request_id)
        if self.workflow.get(message.request_id) is None:
            logger.info("Session request %s not found, ignoring end", message.request_id)
            return []
        notifications = self.workflow.end(message.request_id, message.reason or DISPATCHER_END_REASON)
        if self.workflow.get(message.request_id) is not None:
            return notifications
        return notifications + self._refresh_dispatchers()

    def _on_leave_session(self, connection_id: str, message: LeaveSessionMessage) -> list[Notification]:
        if self.workflow.request_for_room(message.room_id) is None:
            logger.debug("No session request owns room %s, ignoring leave", message.room_id)
            return []
        identity = self.registry.for_connection(connection_id)
        notifications = self.workflow.leave(message.room_id, identity)
        return notifications + self._refresh_dispatchers()

    def _on_join_room(self, connection_id: str, message: JoinRoomMessage) -> list[Notification]:
        notifications: list[Notification] = []
        current = self.rooms.room_of(connection_id)
        if current == message.room_id:
            logger.debug("Connection %s already in room %s", connection_id, current)
            return [self._room_info(connection_id, current)]
        if current is not None:
            notifications.extend(self._leave_room(connection_id))

        identity = self.registry.for_connection(connection_id)
        member = Member(
            connection_id=connection_id,
            user_id=identity.id if identity is not None else None,
            user_name=identity.display_name if identity is not None else None,
            role=identity.role if identity is not None else None,
        )
        existing = self.rooms.join(message.room_id, member)

        payload = {
            "role": member.role.value if member.role is not None else None,
            "roomId": message.room_id,
            "userId": member.user_id,
            "userName": member.user_name,
            "connectionId": connection_id,
        }
        notifications.extend(fan_out((m.connection_id for m in existing), signal(SignalType.JOIN, payload)))
        notifications.append(self._room_info(connection_id, message.room_id))
        return notifications

    def _room_info(self, connection_id: str, room_id: str) -> Notification:
        snapshot = event(
            "room-info",
            roomId=room_id,
            members=[dump_view(m.to_view()) for m in self.rooms.members(room_id)],
        )
        return Notification(connection_id, snapshot)

    def _leave_room(self, connection_id: str) -> list[Notification]:
        departure = self.rooms.leave(connection_id)
        if departure is None:
            return []
        payload = {
            "role": departure.member.role.value if departure.member.role is not None else None,
            "roomId": departure.room_id,
            "userId": departure.member.user_id,
            "userName": departure.member.user_name,
        }
        return fan_out((m.connection_id for m in departure.remaining), signal(SignalType.LEAVE, payload))

    def _on_relay(self, connection_id: str, message: RelayMessage) -> list[Notification]:
        room_id = self.rooms.room_of(connection_id)
        if room_id is None:
            logger.debug("Dropping %s from %s: not in a room", message.tag.value, connection_id)
            return []
        peers = [member.connection_id for member in self.rooms.peers(connection_id)]
        if message.to is not None:
            if message.to not in peers:
                logger.debug("Dropping %s for %s: not a member of room %s", message.tag.value, message.to, room_id)
                return []
            peers = [message.to]
        logger.debug("[SIGNAL] %s in room %s", message.tag.value, room_id)
        return fan_out(peers, signal(message.tag, message.body, **{"from": connection_id}))

    def _on_query(self, connection_id: str, message: QueryMessage) -> list[Notification]:
        if message.event == "get-users":
            result: Any = presence.user_list(self.registry)
        elif message.event == "get-session-requests":
            result = presence.request_list(self.workflow)
        else:
            result = presence.available_experts(self.registry)
        return [Notification(connection_id, event("query-result", query=message.event, result=result))]


coordinator = Coordinator()
