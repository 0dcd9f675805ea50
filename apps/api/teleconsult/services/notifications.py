"""Outbound notification envelopes produced by the coordination core."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from ..schemas.signaling import RelayTag, SignalType


@dataclass(slots=True, frozen=True)
class Notification:
    """A message addressed to a single connection."""

    connection_id: str
    message: dict[str, Any]


def signal(signal_type: SignalType | RelayTag, payload: Any, **extra: Any) -> dict[str, Any]:
    message = {"event": "signal", "type": signal_type.value, "payload": payload}
    message.update(extra)
    return message


def event(name: str, **fields: Any) -> dict[str, Any]:
    return {"event": name, **fields}


def fan_out(connection_ids: Iterable[str], message: dict[str, Any]) -> list[Notification]:
    """Address the same message to each connection once."""

    seen: set[str] = set()
    notifications: list[Notification] = []
    for connection_id in connection_ids:
        if connection_id in seen:
            continue
        seen.add(connection_id)
        notifications.append(Notification(connection_id, message))
    return notifications
