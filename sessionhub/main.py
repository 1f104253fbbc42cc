#!/usr/bin/env python3
"""
Sessionhub - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Runs the HTTP control API

All business logic is in the modules, following black box principles.
"""

import json
import logging
import logging.config as log_config
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import redis.asyncio as redis
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sessionhub import __version__
from sessionhub.logging_config import get_logging_config
from sessionhub.modules.api import (
    DisconnectRequest,
    DisconnectResponse,
    EventHistoryResponse,
    HealthResponse,
    InitRequest,
    InitResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionListResponse,
    StatusResponse,
)
from sessionhub.modules.collaborator import HttpBridgeCollaborator, MessagingCollaborator
from sessionhub.modules.config import ConfigModule, get_config
from sessionhub.modules.control import ControlService
from sessionhub.modules.errors import SessionHubError
from sessionhub.modules.events import EventForwarder, EventJournal
from sessionhub.modules.session import SessionRegistry

# Get configuration
config = get_config()

log_config.dictConfig(get_logging_config(config.get("log_level")))
logger = logging.getLogger("sessionhub.main")

router = APIRouter()


# Dependency injection helpers


def get_control(request: Request) -> ControlService:
    control = getattr(request.app.state, "control", None)
    if control is None:
        raise HTTPException(503, "Service not initialized")
    return control


def get_journal(request: Request) -> EventJournal:
    journal = getattr(request.app.state, "journal", None)
    if journal is None:
        raise HTTPException(503, "Event journal not configured")
    return journal


# Session Endpoints


@router.post("/init", response_model=InitResponse)
async def init_session(request: InitRequest, control: ControlService = Depends(get_control)):
    """
    Start a session for a profile.

    The response only says the handshake started; QR codes, pairing codes
    and the connected event arrive through the webhook.

    Returns:
        200: {"status": "initializing"} or {"status": "existing"}
        400: Missing profileId/userId, or usePairing without phoneNumber
    """
    return await control.init(
        request.profile_id,
        request.user_id,
        use_pairing=request.use_pairing,
        phone_number=request.phone_number,
    )


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect_session(
    request: DisconnectRequest, control: ControlService = Depends(get_control)
):
    """
    End a profile's session. Idempotent.

    Returns:
        200: Session ended (or none existed)
        400: Missing profileId
    """
    return await control.disconnect(request.profile_id)


@router.get("/status/{profile_id}", response_model=StatusResponse)
async def session_status(profile_id: str, control: ControlService = Depends(get_control)):
    """Last known state of a profile's session."""
    return control.status(profile_id)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(control: ControlService = Depends(get_control)):
    """List every session held in the registry."""
    sessions = control.list_sessions()
    return {"sessions": sessions, "count": len(sessions)}


@router.post("/send", response_model=SendMessageResponse)
async def send_message(request: SendMessageRequest, control: ControlService = Depends(get_control)):
    """
    Send a text message through a connected profile.

    Returns:
        200: Message handed to the collaborator
        400: Missing number or message
        409: Profile not connected
        502: Collaborator failed
    """
    return await control.send_message(request.number, request.message, request.profile_id)


# Event Endpoints


@router.get("/events/{profile_id}", response_model=EventHistoryResponse)
async def event_history(
    profile_id: str,
    limit: int = Query(50, ge=1, le=1000),
    journal: EventJournal = Depends(get_journal),
):
    """Recent lifecycle events for a profile, newest first."""
    events = await journal.recent(profile_id, limit=limit)
    return {"profile_id": profile_id, "events": events}


@router.get("/events/{profile_id}/stream")
async def event_stream(
    profile_id: str, request: Request, journal: EventJournal = Depends(get_journal)
):
    """
    Live lifecycle events for a profile as Server-Sent Events.

    Returns:
        SSE stream, one event per lifecycle transition
        503: Event journal not configured
    """
    redis_client = request.app.state.redis_client
    channel = journal.channel(profile_id)

    async def event_generator() -> AsyncGenerator:
        pubsub = redis_client.pubsub()
        try:
            await pubsub.subscribe(channel)
            logger.info(f"Event stream opened for {profile_id}")

            yield {
                "event": "connected",
                "data": json.dumps({"status": "connected", "profileId": profile_id}),
            }

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                event_name = json.loads(data).get("event", "message")
                yield {"event": event_name, "data": data}
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info(f"Event stream closed for {profile_id}")

    return EventSourceResponse(event_generator())


# Health/Monitoring Endpoints


@router.get("/healthz")
async def healthz():
    """Minimal unauthenticated probe endpoint."""
    return {"status": "ok"}


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, control: ControlService = Depends(get_control)):
    """
    Health check with session count.

    Returns:
        200: {"status": "healthy", "activeSessionCount": N, ...}
    """
    health = control.health()
    forwarder = request.app.state.forwarder
    health["pending_events"] = forwarder.pending if forwarder else 0

    redis_client = request.app.state.redis_client
    if redis_client is None:
        health["redis"] = "disabled"
    else:
        try:
            await redis_client.ping()
            health["redis"] = "connected"
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            health["redis"] = "disconnected"
            health["status"] = "degraded"
    return health


# Error handlers


async def sessionhub_error_handler(request: Request, exc: SessionHubError):
    """Render taxonomy errors as {success: false, error}."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return JSONResponse(
        status_code=400, content={"success": False, "error": "; ".join(messages) or "Invalid request"}
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


def create_app(
    settings: Optional[ConfigModule] = None,
    collaborator: Optional[MessagingCollaborator] = None,
    redis_client=None,
    sink_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration, the process-wide config by default
        collaborator: Messaging collaborator, an HTTP bridge client by default
        redis_client: Async Redis client, built from redis_url when omitted
        sink_client: httpx client used for webhook delivery
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle - initialize and cleanup resources.
        """
        logger.info("Starting sessionhub...")

        client = redis_client
        owns_redis = False
        if client is None and settings.get("redis_url"):
            client = redis.from_url(
                settings.get("redis_url"), encoding="utf-8", decode_responses=True
            )
            owns_redis = True

        journal = None
        if client is not None:
            journal = EventJournal(client, history_size=settings.get("event_history_size"))
            logger.info("Event journal enabled")

        forwarder = EventForwarder(
            settings.get("webhook_url"),
            client=sink_client,
            secret=settings.get("webhook_secret"),
            timeout=settings.get("webhook_timeout"),
            max_attempts=settings.get("webhook_max_attempts"),
            backoff=settings.get("webhook_backoff"),
            queue_size=settings.get("event_queue_size"),
            journal=journal,
        )
        forwarder.start()

        bridge = collaborator
        if bridge is None:
            bridge = HttpBridgeCollaborator(settings.get("bridge_url"))
            logger.info(f"Using messaging bridge at {settings.get('bridge_url')}")

        registry = SessionRegistry(
            bridge, forwarder.publish, teardown_timeout=settings.get("teardown_timeout")
        )

        app.state.redis_client = client
        app.state.journal = journal
        app.state.forwarder = forwarder
        app.state.registry = registry
        app.state.control = ControlService(
            registry,
            default_profile_id=settings.get("default_profile_id"),
            recipient_suffix=settings.get("recipient_suffix"),
        )
        logger.info("Sessionhub started successfully")

        yield

        # Shutdown
        logger.info("Shutting down sessionhub...")
        app.state.control = None
        await registry.shutdown()
        await forwarder.stop()
        if collaborator is None:
            await bridge.close()
        if owns_redis:
            await client.aclose()
        logger.info("Sessionhub shutdown complete")

    app = FastAPI(
        title="Sessionhub API",
        description="Multi-tenant messaging sessions with lifecycle webhooks",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    app.add_exception_handler(SessionHubError, sessionhub_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.state.control = None
    app.state.journal = None
    app.state.forwarder = None
    app.state.redis_client = None
    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    uvicorn.run(
        "sessionhub.main:app",
        host=config.get("host"),
        port=config.get("port"),
        log_level=config.get("log_level").lower(),
        reload=config.get("debug"),
        log_config=get_logging_config(config.get("log_level")),
    )


if __name__ == "__main__":
    run()
