"""Dispatcher-facing projections over the registry and workflow tables.

Projections are recomputed from current state every time they are pushed.
"""
from __future__ import annotations

from typing import Any

from ..schemas.signaling import Role, dump_view
from .notifications import Notification, event, fan_out
from .registry import ConnectionRegistry
from .workflow import SessionWorkflow


def user_list(registry: ConnectionRegistry) -> dict[str, list[dict[str, Any]]]:
    return {
        "requesters": [dump_view(identity.to_view()) for identity in registry.find_by_role(Role.REQUESTER)],
        "experts": [dump_view(identity.to_view()) for identity in registry.find_by_role(Role.EXPERT)],
    }


def available_experts(registry: ConnectionRegistry) -> list[dict[str, Any]]:
    return [
        dump_view(identity.to_view())
        for identity in registry.find_by_role(Role.EXPERT)
        if identity.available
    ]


def request_list(workflow: SessionWorkflow) -> list[dict[str, Any]]:
    return [dump_view(request.to_view()) for request in workflow.requests()]


def _dispatchers(registry: ConnectionRegistry) -> list[str]:
    return [identity.connection_id for identity in registry.find_by_role(Role.DISPATCHER)]


def user_list_update(registry: ConnectionRegistry) -> list[Notification]:
    """Push the requester/expert roster to every dispatcher."""

    return fan_out(_dispatchers(registry), event("user-list-update", **user_list(registry)))


def session_requests_update(registry: ConnectionRegistry, workflow: SessionWorkflow) -> list[Notification]:
    """Push the live session requests to every dispatcher."""

    return fan_out(_dispatchers(registry), event("session-requests-update", requests=request_list(workflow)))
