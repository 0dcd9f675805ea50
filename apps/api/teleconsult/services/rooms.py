"""In-memory room membership table."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from ..schemas.signaling import MemberView, Role

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Member:
    """A connection that has joined a room."""

    connection_id: str
    user_id: str | None = None
    user_name: str | None = None
    role: Role | None = None
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_view(self) -> MemberView:
        return MemberView(
            connection_id=self.connection_id,
            user_id=self.user_id,
            user_name=self.user_name,
            role=self.role,
            joined_at=self.joined_at,
        )


@dataclass(slots=True)
class Departure:
    """Result of a connection leaving its room."""

    room_id: str
    member: Member
    remaining: list[Member]


class RoomMembership:
    """Map room ids to joined connections; a connection sits in one room at a time."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, Member]] = {}
        self._room_of: Dict[str, str] = {}

    def join(self, room_id: str, member: Member) -> list[Member]:
        """Add ``member`` to the room and return the members that were already there.

        The caller is expected to have left any previous room first.
        """

        members = self._rooms.setdefault(room_id, {})
        members[member.connection_id] = member
        self._room_of[member.connection_id] = room_id
        logger.info("[JOIN] %s joined room %s (%d members)", member.connection_id, room_id, len(members))
        return [existing for existing in members.values() if existing.connection_id != member.connection_id]

    def leave(self, connection_id: str) -> Optional[Departure]:
        """Remove a connection from its room, cleaning up the room when it empties."""

        room_id = self._room_of.pop(connection_id, None)
        if room_id is None:
            return None
        members = self._rooms.get(room_id)
        if not members or connection_id not in members:
            return None
        member = members.pop(connection_id)
        if not members:
            self._rooms.pop(room_id, None)
            logger.info("[ROOM] Room %s is empty, discarding", room_id)
        return Departure(room_id=room_id, member=member, remaining=list(members.values()))

    def discard(self, room_id: str) -> list[Member]:
        """Drop a room entirely and return whoever was still in it."""

        members = self._rooms.pop(room_id, None)
        if not members:
            return []
        for connection_id in members:
            if self._room_of.get(connection_id) == room_id:
                del self._room_of[connection_id]
        logger.info("[ROOM] Room %s discarded with %d members", room_id, len(members))
        return list(members.values())

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._room_of.get(connection_id)

    def members(self, room_id: str) -> list[Member]:
        return list(self._rooms.get(room_id, {}).values())

    def peers(self, connection_id: str) -> list[Member]:
        """Members sharing the connection's room, excluding the connection itself."""

        room_id = self._room_of.get(connection_id)
        if room_id is None:
            return []
        return [member for member in self._rooms.get(room_id, {}).values() if member.connection_id != connection_id]

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def __len__(self) -> int:
        return len(self._rooms)
