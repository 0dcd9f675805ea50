"""Session request and room assignment workflows.

A session request moves PENDING -> ASSIGNED -> ACTIVE and is deleted when the
session ends. Each room assignment is one invitation of an expert into the
request's room; rejecting it sends the request back to PENDING so a dispatcher
can try another expert. Every operation returns the notifications it produced
instead of sending them, so callers decide when delivery happens.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional
from uuid import uuid4

from ..schemas.signaling import (
    AssignmentStatus,
    RequestStatus,
    Role,
    RoomAssignmentView,
    SessionRequestView,
    SignalType,
    dump_view,
)
from .notifications import Notification, event, fan_out, signal
from .registry import ConnectionRegistry, Identity
from .rooms import RoomMembership

logger = logging.getLogger(__name__)

LIVE_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.ASSIGNED, RequestStatus.ACTIVE})
ENDABLE_STATUSES = frozenset({RequestStatus.ASSIGNED, RequestStatus.ACTIVE})


def _new_id() -> str:
    return uuid4().hex[:12]


def room_id_sequence(prefix: str = "US-") -> Iterator[str]:
    """Yield room ids that never repeat for the life of the process."""

    for number in itertools.count(1):
        yield f"{prefix}{number:04d}"


@dataclass(slots=True)
class SessionRequest:
    id: str
    requester_id: str
    requester_name: str
    room_id: str
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    assigned_expert_id: str | None = None
    assigned_expert_name: str | None = None
    rejection_comment: str | None = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def to_view(self) -> SessionRequestView:
        return SessionRequestView(
            id=self.id,
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            status=self.status,
            room_id=self.room_id,
            created_at=self.created_at,
            assigned_expert_id=self.assigned_expert_id,
            assigned_expert_name=self.assigned_expert_name,
            rejection_comment=self.rejection_comment,
        )


@dataclass(slots=True)
class RoomAssignment:
    id: str
    room_id: str
    request_id: str
    requester_id: str
    requester_name: str
    expert_id: str
    expert_name: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    rejection_comment: str | None = None

    def to_view(self) -> RoomAssignmentView:
        return RoomAssignmentView(
            id=self.id,
            room_id=self.room_id,
            request_id=self.request_id,
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            expert_id=self.expert_id,
            expert_name=self.expert_name,
            status=self.status,
            rejection_comment=self.rejection_comment,
        )


class SessionWorkflow:
    """Own the session request and room assignment tables."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomMembership,
        room_ids: Iterator[str] | None = None,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._room_ids = room_ids if room_ids is not None else room_id_sequence()
        self._requests: Dict[str, SessionRequest] = {}
        self._assignments: Dict[str, RoomAssignment] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> Optional[SessionRequest]:
        return self._requests.get(request_id)

    def get_assignment(self, assignment_id: str) -> Optional[RoomAssignment]:
        return self._assignments.get(assignment_id)

    def request_for_room(self, room_id: str) -> Optional[SessionRequest]:
        for request in self._requests.values():
            if request.room_id == room_id:
                return request
        return None

    def live_request_for(self, requester_id: str) -> Optional[SessionRequest]:
        for request in self._requests.values():
            if request.requester_id == requester_id and request.is_live:
                return request
        return None

    def requests_for_expert(self, expert_id: str) -> list[SessionRequest]:
        return [
            request
            for request in self._requests.values()
            if request.assigned_expert_id == expert_id and request.status in ENDABLE_STATUSES
        ]

    def requests(self) -> list[SessionRequest]:
        return list(self._requests.values())

    def assignments(self) -> list[RoomAssignment]:
        return list(self._assignments.values())

    def __len__(self) -> int:
        return len(self._requests)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(self, connection_id: str, requester_id: str, requester_name: str) -> list[Notification]:
        """Open a PENDING request for a requester with no other live request."""

        existing = self.live_request_for(requester_id)
        if existing is not None:
            logger.info(
                "[SESSION REQUEST] %s already has live request %s (%s), ignoring",
                requester_name,
                existing.id,
                existing.status.value,
            )
            return []

        request = SessionRequest(
            id=_new_id(),
            requester_id=requester_id,
            requester_name=requester_name,
            room_id=next(self._room_ids),
        )
        self._requests[request.id] = request
        logger.info("[SESSION REQUEST] %s requested a session (%s, room %s)", requester_name, request.id, request.room_id)
        return [Notification(connection_id, signal(SignalType.SESSION_REQUEST, dump_view(request.to_view())))]

    def assign(self, request_id: str, expert_id: str, expert_name: str | None = None) -> list[Notification]:
        """Invite an expert into a PENDING request's room."""

        request = self._requests.get(request_id)
        if request is None:
            logger.info("Session request %s not found, ignoring assignment", request_id)
            return []
        if request.status is not RequestStatus.PENDING:
            logger.info("Ignoring assignment for request %s in state %s", request_id, request.status.value)
            return []

        expert = self._registry.find(expert_id)
        if expert is None or expert.role is not Role.EXPERT:
            logger.info("Expert %s not found, ignoring assignment", expert_id)
            return []
        if not expert.available:
            logger.warning("Expert %s is marked unavailable; assigning anyway", expert.id)

        name = expert_name or expert.display_name
        assignment = RoomAssignment(
            id=_new_id(),
            room_id=request.room_id,
            request_id=request.id,
            requester_id=request.requester_id,
            requester_name=request.requester_name,
            expert_id=expert.id,
            expert_name=name,
        )
        self._assignments[assignment.id] = assignment
        request.status = RequestStatus.ASSIGNED
        request.assigned_expert_id = expert.id
        request.assigned_expert_name = name
        logger.info("[ASSIGN] %s assigned to %s (room %s)", name, request.requester_name, request.room_id)

        notifications: list[Notification] = []
        requester = self._registry.find(request.requester_id)
        if requester is not None:
            notifications.append(
                Notification(requester.connection_id, signal(SignalType.SESSION_ASSIGNED, dump_view(request.to_view())))
            )
        notifications.append(
            Notification(expert.connection_id, signal(SignalType.ROOM_INVITE, dump_view(assignment.to_view())))
        )
        return notifications

    def respond(self, assignment_id: str, accept: bool, comment: str | None = None) -> list[Notification]:
        """Resolve a PENDING assignment. Duplicate or stale responses are ignored."""

        assignment = self._assignments.get(assignment_id)
        if assignment is None:
            logger.info("Assignment %s not found, ignoring response", assignment_id)
            return []
        if assignment.status is not AssignmentStatus.PENDING:
            logger.info("Assignment %s already %s, ignoring response", assignment_id, assignment.status.value)
            return []

        request = self._requests.get(assignment.request_id)
        if (
            request is None
            or request.status is not RequestStatus.ASSIGNED
            or request.assigned_expert_id != assignment.expert_id
        ):
            logger.info("Assignment %s no longer matches its request, ignoring response", assignment_id)
            return []

        expert = self._registry.find(assignment.expert_id)
        if accept:
            return self._accept(assignment, request, expert)
        return self._reject(assignment, request, expert, comment)

    def _accept(
        self, assignment: RoomAssignment, request: SessionRequest, expert: Identity | None
    ) -> list[Notification]:
        assignment.status = AssignmentStatus.ACCEPTED
        request.status = RequestStatus.ACTIVE
        if expert is not None:
            expert.available = False
        logger.info("[ACCEPTED] %s accepted room %s", assignment.expert_name, assignment.room_id)

        notifications: list[Notification] = []
        requester = self._registry.find(request.requester_id)
        if requester is not None:
            payload = {
                "assignmentId": assignment.id,
                "requestId": request.id,
                "expertId": assignment.expert_id,
                "expertName": assignment.expert_name,
                "roomId": assignment.room_id,
            }
            notifications.append(Notification(requester.connection_id, signal(SignalType.ROOM_ACCEPTED, payload)))
        if expert is not None:
            notifications.append(
                Notification(expert.connection_id, event("join-room", roomId=assignment.room_id, requestId=request.id))
            )
        return notifications

    def _reject(
        self,
        assignment: RoomAssignment,
        request: SessionRequest,
        expert: Identity | None,
        comment: str | None,
    ) -> list[Notification]:
        assignment.status = AssignmentStatus.REJECTED
        assignment.rejection_comment = comment
        request.status = RequestStatus.PENDING
        request.assigned_expert_id = None
        request.assigned_expert_name = None
        request.rejection_comment = comment
        if expert is not None:
            self._refresh_availability(expert)
        logger.info("[REJECTED] %s rejected room %s: %s", assignment.expert_name, assignment.room_id, comment)

        payload = {
            "assignmentId": assignment.id,
            "requestId": request.id,
            "expertId": assignment.expert_id,
            "expertName": assignment.expert_name,
            "comment": comment,
        }
        dispatchers = self._registry.find_by_role(Role.DISPATCHER)
        return fan_out((d.connection_id for d in dispatchers), signal(SignalType.ROOM_REJECTED, payload))

    def end(self, request_id: str, reason: str) -> list[Notification]:
        """End an ASSIGNED or ACTIVE session. Unknown ids are a no-op."""

        request = self._requests.get(request_id)
        if request is None:
            logger.debug("Session request %s already ended", request_id)
            return []
        if request.status not in ENDABLE_STATUSES:
            logger.info("Ignoring end for request %s in state %s", request_id, request.status.value)
            return []
        return self._teardown(request, reason)

    def force_end(self, request_id: str, reason: str) -> list[Notification]:
        """End a request in any live state and tell every dispatcher."""

        request = self._requests.get(request_id)
        if request is None:
            return []
        notifications = self._teardown(request, reason)
        dispatchers = self._registry.find_by_role(Role.DISPATCHER)
        message = signal(SignalType.SESSION_ENDED, self._ended_payload(request, reason))
        notifications.extend(fan_out((d.connection_id for d in dispatchers), message))
        return notifications

    def leave(self, room_id: str, identity: Identity | None) -> list[Notification]:
        """A participant walks out of the session that owns ``room_id``."""

        request = self.request_for_room(room_id)
        if request is None:
            logger.debug("No session request owns room %s", room_id)
            return []
        name = identity.display_name if identity is not None else "A participant"
        logger.info("[LEAVE SESSION] %s leaving room %s", name, room_id)
        leaver = identity.connection_id if identity is not None else None
        notifications = self._teardown(request, f"{name} left the session", skip=leaver)
        if leaver is not None:
            message = signal(SignalType.SESSION_ENDED, self._ended_payload(request, "You ended the session"))
            notifications.append(Notification(leaver, message))
        return notifications

    def _teardown(self, request: SessionRequest, reason: str, skip: str | None = None) -> list[Notification]:
        del self._requests[request.id]
        for assignment_id in [a.id for a in self._assignments.values() if a.room_id == request.room_id]:
            del self._assignments[assignment_id]

        targets: list[str] = []
        requester = self._registry.find(request.requester_id)
        if requester is not None:
            targets.append(requester.connection_id)
        if request.assigned_expert_id is not None:
            expert = self._registry.find(request.assigned_expert_id)
            if expert is not None:
                self._refresh_availability(expert)
                targets.append(expert.connection_id)
        targets.extend(member.connection_id for member in self._rooms.discard(request.room_id))
        logger.info("[END SESSION] Request %s (room %s) ended: %s", request.id, request.room_id, reason)

        message = signal(SignalType.SESSION_ENDED, self._ended_payload(request, reason))
        return fan_out((target for target in targets if target != skip), message)

    def _refresh_availability(self, expert: Identity) -> None:
        """An expert is unavailable exactly while accepted into an ACTIVE session."""

        for assignment in self._assignments.values():
            if assignment.expert_id != expert.id or assignment.status is not AssignmentStatus.ACCEPTED:
                continue
            request = self._requests.get(assignment.request_id)
            if request is not None and request.status is RequestStatus.ACTIVE:
                expert.available = False
                return
        expert.available = True

    @staticmethod
    def _ended_payload(request: SessionRequest, reason: str) -> dict[str, str]:
        return {"requestId": request.id, "roomId": request.room_id, "reason": reason}
