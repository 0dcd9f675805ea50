"""Tests for the session request and room assignment state machines."""
from __future__ import annotations

import pytest

from teleconsult.schemas.signaling import AssignmentStatus, RequestStatus, Role
from teleconsult.services.registry import ConnectionRegistry
from teleconsult.services.rooms import Member, RoomMembership
from teleconsult.services.workflow import SessionWorkflow, room_id_sequence


@pytest.fixture
def registry() -> ConnectionRegistry:
    registry = ConnectionRegistry()
    registry.register("conn-d1", "D1", "Dana", Role.DISPATCHER)
    registry.register("conn-r1", "R1", "Rita", Role.REQUESTER)
    registry.register("conn-e1", "E1", "Eli", Role.EXPERT)
    return registry


@pytest.fixture
def rooms() -> RoomMembership:
    return RoomMembership()


@pytest.fixture
def workflow(registry: ConnectionRegistry, rooms: RoomMembership) -> SessionWorkflow:
    return SessionWorkflow(registry, rooms)


def _assigned(workflow: SessionWorkflow):
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]
    notifications = workflow.assign(request.id, "E1")
    invite = next(n for n in notifications if n.connection_id == "conn-e1")
    return request, invite.message["payload"]["id"]


def test_create_allocates_pending_request_and_notifies_requester(workflow):
    notifications = workflow.create("conn-r1", "R1", "Rita")

    request = workflow.requests()[0]
    assert request.status is RequestStatus.PENDING
    assert request.room_id == "US-0001"
    assert [n.connection_id for n in notifications] == ["conn-r1"]
    assert notifications[0].message["type"] == "SESSION_REQUEST"
    assert notifications[0].message["payload"]["roomId"] == "US-0001"


def test_create_is_refused_while_requester_has_live_request(workflow):
    workflow.create("conn-r1", "R1", "Rita")

    assert workflow.create("conn-r1", "R1", "Rita") == []
    assert len(workflow) == 1


def test_room_ids_are_never_reused():
    ids = room_id_sequence("ROOM-")
    generated = [next(ids) for _ in range(50)]

    assert len(set(generated)) == 50
    assert generated[0] == "ROOM-0001"


def test_assign_invites_expert_without_changing_availability(workflow, registry):
    request, assignment_id = _assigned(workflow)

    assert request.status is RequestStatus.ASSIGNED
    assert request.assigned_expert_id == "E1"
    assert request.assigned_expert_name == "Eli"
    assert workflow.get_assignment(assignment_id).status is AssignmentStatus.PENDING
    assert registry.find("E1").available is True


def test_assign_notifies_requester_and_expert(workflow):
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]

    notifications = workflow.assign(request.id, "E1", "Dr. Eli")

    by_connection = {n.connection_id: n.message for n in notifications}
    assert by_connection["conn-r1"]["type"] == "SESSION_ASSIGNED"
    assert by_connection["conn-r1"]["payload"]["assignedExpertName"] == "Dr. Eli"
    assert by_connection["conn-e1"]["type"] == "ROOM_INVITE"
    assert by_connection["conn-e1"]["payload"]["roomId"] == request.room_id


def test_assign_ignores_unknown_request_and_unknown_expert(workflow):
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]

    assert workflow.assign("missing", "E1") == []
    assert workflow.assign(request.id, "nobody") == []
    assert workflow.assign(request.id, "R1") == []
    assert request.status is RequestStatus.PENDING


def test_assign_only_from_pending(workflow, registry):
    registry.register("conn-e2", "E2", "Eva", Role.EXPERT)
    request, _ = _assigned(workflow)

    assert workflow.assign(request.id, "E2") == []
    assert request.assigned_expert_id == "E1"
    assert len(workflow.assignments()) == 1


def test_assign_unavailable_expert_proceeds(workflow, registry):
    registry.set_availability("conn-e1", False)
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]

    notifications = workflow.assign(request.id, "E1")

    assert request.status is RequestStatus.ASSIGNED
    assert any(n.connection_id == "conn-e1" for n in notifications)


def test_accept_activates_request_and_marks_expert_busy(workflow, registry):
    request, assignment_id = _assigned(workflow)

    notifications = workflow.respond(assignment_id, accept=True)

    assert request.status is RequestStatus.ACTIVE
    assert request.assigned_expert_id == workflow.get_assignment(assignment_id).expert_id
    assert registry.find("E1").available is False
    by_connection = {n.connection_id: n.message for n in notifications}
    assert by_connection["conn-r1"]["type"] == "ROOM_ACCEPTED"
    assert by_connection["conn-r1"]["payload"]["roomId"] == request.room_id
    assert by_connection["conn-e1"] == {"event": "join-room", "roomId": request.room_id, "requestId": request.id}


def test_reject_returns_request_to_pending_and_tells_dispatchers(workflow, registry):
    request, assignment_id = _assigned(workflow)

    notifications = workflow.respond(assignment_id, accept=False, comment="busy")

    assert request.status is RequestStatus.PENDING
    assert request.assigned_expert_id is None
    assert request.assigned_expert_name is None
    assert request.rejection_comment == "busy"
    assert workflow.get_assignment(assignment_id).status is AssignmentStatus.REJECTED
    assert registry.find("E1").available is True
    assert [n.connection_id for n in notifications] == ["conn-d1"]
    assert notifications[0].message["type"] == "ROOM_REJECTED"
    assert notifications[0].message["payload"]["comment"] == "busy"
    assert notifications[0].message["payload"]["expertName"] == "Eli"


def test_rejected_request_can_be_reassigned(workflow, registry):
    registry.register("conn-e2", "E2", "Eva", Role.EXPERT)
    request, assignment_id = _assigned(workflow)
    workflow.respond(assignment_id, accept=False, comment="busy")

    notifications = workflow.assign(request.id, "E2")

    assert request.status is RequestStatus.ASSIGNED
    assert request.assigned_expert_id == "E2"
    assert any(n.connection_id == "conn-e2" for n in notifications)


def test_duplicate_response_is_ignored(workflow, registry):
    request, assignment_id = _assigned(workflow)
    workflow.respond(assignment_id, accept=True)

    assert workflow.respond(assignment_id, accept=False, comment="late") == []
    assert request.status is RequestStatus.ACTIVE
    assert registry.find("E1").available is False


def test_respond_to_unknown_assignment_is_ignored(workflow):
    assert workflow.respond("missing", accept=True) == []


def test_end_frees_expert_and_removes_everything(workflow, registry, rooms):
    request, assignment_id = _assigned(workflow)
    workflow.respond(assignment_id, accept=True)
    rooms.join(request.room_id, Member("conn-r1", "R1", "Rita", Role.REQUESTER))
    rooms.join(request.room_id, Member("conn-e1", "E1", "Eli", Role.EXPERT))

    notifications = workflow.end(request.id, "Session ended by dispatcher")

    assert workflow.get(request.id) is None
    assert workflow.get_assignment(assignment_id) is None
    assert rooms.members(request.room_id) == []
    assert rooms.room_of("conn-r1") is None
    assert registry.find("E1").available is True
    assert sorted(n.connection_id for n in notifications) == ["conn-e1", "conn-r1"]
    assert all(n.message["payload"]["reason"] == "Session ended by dispatcher" for n in notifications)


def test_end_is_idempotent(workflow):
    request, assignment_id = _assigned(workflow)
    workflow.respond(assignment_id, accept=True)

    first = workflow.end(request.id, "done")
    second = workflow.end(request.id, "done")

    assert len(first) == 2
    assert second == []


def test_end_ignores_pending_request(workflow):
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]

    assert workflow.end(request.id, "done") == []
    assert workflow.get(request.id) is request


def test_force_end_removes_pending_request_and_tells_dispatchers(workflow):
    workflow.create("conn-r1", "R1", "Rita")
    request = workflow.requests()[0]

    notifications = workflow.force_end(request.id, "Requester disconnected")

    assert workflow.get(request.id) is None
    assert {n.connection_id for n in notifications} == {"conn-r1", "conn-d1"}


def test_leave_ends_session_for_both_parties(workflow, registry):
    request, assignment_id = _assigned(workflow)
    workflow.respond(assignment_id, accept=True)

    notifications = workflow.leave(request.room_id, registry.for_connection("conn-r1"))

    reasons = {n.connection_id: n.message["payload"]["reason"] for n in notifications}
    assert reasons == {"conn-e1": "Rita left the session", "conn-r1": "You ended the session"}
    assert workflow.get(request.id) is None
    assert registry.find("E1").available is True


@pytest.fixture
def double_booked(workflow, registry):
    """E1 is in an ACTIVE session with R1 and holds a second invite from R2."""

    registry.register("conn-r2", "R2", "Ravi", Role.REQUESTER)
    first, first_assignment = _assigned(workflow)
    workflow.respond(first_assignment, accept=True)
    workflow.create("conn-r2", "R2", "Ravi")
    second = workflow.live_request_for("R2")
    notifications = workflow.assign(second.id, "E1")
    invite = next(n for n in notifications if n.connection_id == "conn-e1")
    return first, second, invite.message["payload"]["id"]


def test_rejecting_second_invite_keeps_busy_expert_unavailable(workflow, registry, double_booked):
    first, second, assignment_id = double_booked

    workflow.respond(assignment_id, accept=False, comment="busy")

    assert first.status is RequestStatus.ACTIVE
    assert second.status is RequestStatus.PENDING
    assert registry.find("E1").available is False


def test_ending_second_invite_keeps_busy_expert_unavailable(workflow, registry, double_booked):
    first, second, _ = double_booked

    workflow.end(second.id, "done")

    assert workflow.get(second.id) is None
    assert registry.find("E1").available is False

    workflow.end(first.id, "done")

    assert registry.find("E1").available is True


def test_force_ending_second_invite_keeps_busy_expert_unavailable(workflow, registry, double_booked):
    first, second, _ = double_booked

    workflow.force_end(second.id, "Requester disconnected")

    assert first.status is RequestStatus.ACTIVE
    assert registry.find("E1").available is False
