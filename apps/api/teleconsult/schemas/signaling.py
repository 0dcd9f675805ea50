"""Wire contracts for the signaling websocket.

Inbound frames are JSON objects discriminated by their ``event`` field and are
parsed into one of the message models below. Outbound entity snapshots use the
``*View`` models, serialised with camelCase keys for browser clients.
"""
from __future__ import annotations

from datetime import datetime
import enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class Role(str, enum.Enum):
    REQUESTER = "REQUESTER"
    EXPERT = "EXPERT"
    DISPATCHER = "DISPATCHER"


# Role names used by older field clients.
LEGACY_ROLE_NAMES = {
    "TECH": Role.REQUESTER,
    "RADIOLOGIST": Role.EXPERT,
    "MEDICAL_ADMIN": Role.DISPATCHER,
}


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"


class AssignmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class SignalType(str, enum.Enum):
    SESSION_REQUEST = "SESSION_REQUEST"
    SESSION_ASSIGNED = "SESSION_ASSIGNED"
    ROOM_INVITE = "ROOM_INVITE"
    ROOM_ACCEPTED = "ROOM_ACCEPTED"
    ROOM_REJECTED = "ROOM_REJECTED"
    SESSION_ENDED = "SESSION_ENDED"
    JOIN = "JOIN"
    LEAVE = "LEAVE"


class RelayTag(str, enum.Enum):
    """Opaque payload categories forwarded between room members."""

    CHAT = "CHAT"
    SYNC_STATE = "SYNC_STATE"
    ANNOTATION = "ANNOTATION"
    OFFER = "OFFER"
    ANSWER = "ANSWER"
    ICE_CANDIDATE = "ICE_CANDIDATE"
    REQUEST_REPORT = "REQUEST_REPORT"
    REPORT_READY = "REPORT_READY"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


class RegisterMessage(CamelModel):
    event: Literal["register"]
    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "userId"))
    name: str = Field(..., validation_alias=AliasChoices("name", "userName", "displayName"))
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def _accept_legacy_roles(cls, value: object) -> object:
        """Map legacy client role names onto the current roles."""

        if isinstance(value, str):
            normalized = value.strip().upper()
            return LEGACY_ROLE_NAMES.get(normalized, normalized)
        return value


class SetAvailabilityMessage(CamelModel):
    event: Literal["set-availability"]
    available: bool


class CreateSessionRequestMessage(CamelModel):
    event: Literal["create-session-request"]
    requester_id: str | None = None
    requester_name: str | None = None


class AssignExpertMessage(CamelModel):
    event: Literal["assign-expert"]
    request_id: str
    expert_id: str
    expert_name: str | None = None


class RespondToAssignmentMessage(CamelModel):
    event: Literal["respond-to-assignment"]
    assignment_id: str
    accept: bool
    comment: str | None = None


class EndSessionMessage(CamelModel):
    event: Literal["end-session"]
    request_id: str
    reason: str | None = Field(default=None, description="Overrides the default end reason")


class LeaveSessionMessage(CamelModel):
    event: Literal["leave-session"]
    room_id: str


class JoinRoomMessage(CamelModel):
    event: Literal["join-room"]
    room_id: str = Field(..., min_length=1)


class RelayMessage(CamelModel):
    event: Literal["relay"]
    tag: RelayTag
    body: Any = None
    to: str | None = Field(default=None, description="Deliver only to this room member")


class QueryMessage(CamelModel):
    event: Literal["get-users", "get-session-requests", "get-available-experts"]


InboundMessage = Annotated[
    Union[
        RegisterMessage,
        SetAvailabilityMessage,
        CreateSessionRequestMessage,
        AssignExpertMessage,
        RespondToAssignmentMessage,
        EndSessionMessage,
        LeaveSessionMessage,
        JoinRoomMessage,
        RelayMessage,
        QueryMessage,
    ],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(data: object) -> InboundMessage:
    """Validate a decoded JSON frame. Raises ``pydantic.ValidationError``."""

    return _inbound_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Outbound snapshots
# ---------------------------------------------------------------------------


class IdentityView(CamelModel):
    id: str
    display_name: str
    role: Role
    available: bool
    connection_id: str


class SessionRequestView(CamelModel):
    id: str
    requester_id: str
    requester_name: str
    status: RequestStatus
    room_id: str
    created_at: datetime
    assigned_expert_id: str | None = None
    assigned_expert_name: str | None = None
    rejection_comment: str | None = None


class RoomAssignmentView(CamelModel):
    id: str
    room_id: str
    request_id: str
    requester_id: str
    requester_name: str
    expert_id: str
    expert_name: str
    status: AssignmentStatus
    rejection_comment: str | None = None


class MemberView(CamelModel):
    connection_id: str
    user_id: str | None = None
    user_name: str | None = None
    role: Role | None = None
    joined_at: datetime


def dump_view(model: BaseModel) -> dict[str, Any]:
    """Serialise a view for the wire."""

    return model.model_dump(mode="json", by_alias=True)
