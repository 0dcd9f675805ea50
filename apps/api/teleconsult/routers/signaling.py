"""Websocket transport for the coordination core."""
from __future__ import annotations

import json
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..schemas.signaling import parse_inbound
from ..services.coordinator import ClientConnection, Coordinator, coordinator as default_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_coordinator() -> Coordinator:
    """FastAPI dependency returning the process-wide coordinator."""

    return default_coordinator


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket, coordinator: Coordinator = Depends(get_coordinator)) -> None:
    """One websocket per participant; frames are JSON objects tagged by ``event``."""

    connection_id = uuid4().hex
    await websocket.accept()
    await coordinator.connect(ClientConnection(connection_id=connection_id, send=websocket.send_json))
    await websocket.send_json({"event": "connected", "connectionId": connection_id})

    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except KeyError:
                # Binary frames carry no "text" key.
                logger.warning("Ignoring non-text frame from %s", connection_id)
                continue
            try:
                data = json.loads(raw)
                message = parse_inbound(data)
            except ValueError as exc:
                # ValidationError subclasses ValueError, as does JSONDecodeError.
                detail = exc.errors() if isinstance(exc, ValidationError) else str(exc)
                logger.warning("Ignoring malformed frame from %s: %s", connection_id, detail)
                continue
            await coordinator.dispatch(connection_id, message)
    except WebSocketDisconnect:
        logger.info("[DISCONNECT] Client disconnected: %s", connection_id)
    finally:
        await coordinator.disconnect(connection_id)
