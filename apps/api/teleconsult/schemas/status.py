"""Schemas for health and status endpoints."""
from __future__ import annotations

from pydantic import Field

from .signaling import CamelModel


class StatusResponse(CamelModel):
    status: str = Field(default="running")
    service: str
    rooms: list[str] = Field(default_factory=list, description="Rooms with at least one joined connection")
    active_rooms: int = Field(..., ge=0)
    connected_users: int = Field(..., ge=0)
    session_requests: int = Field(..., ge=0)


class HealthResponse(CamelModel):
    status: str
