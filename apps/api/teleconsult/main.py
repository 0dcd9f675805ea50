"""FastAPI application for the teleconsult signaling server."""
from __future__ import annotations

import logging

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.app_logging import configure_logging
from .core.config import settings
from .routers import signaling
from .routers.signaling import get_coordinator
from .schemas.status import HealthResponse, StatusResponse
from .services.coordinator import Coordinator

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Teleconsult Signaling API", version="0.1.0")

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(signaling.router, prefix="/api/signaling", tags=["signaling"])


@app.get("/", response_model=StatusResponse, response_model_by_alias=True, tags=["meta"])
async def status(coordinator: Coordinator = Depends(get_coordinator)) -> StatusResponse:
    """Report live rooms, registered users and outstanding session requests."""

    return StatusResponse(service=settings.service_name, **coordinator.status())


@app.head("/", tags=["meta"])
async def status_head() -> Response:
    """Fast health checks issue HEAD /; answer with 200 to avoid noisy 405s."""

    return Response(status_code=200)


@app.get("/api/health", response_model=HealthResponse, tags=["meta"])
async def health() -> HealthResponse:
    """Simple liveness probe."""

    return HealthResponse(status="ok")


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


def serve() -> None:
    """Run the server with uvicorn using the configured host and port."""

    logger.info("Starting %s on %s:%s", settings.service_name, settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)
