"""
API Module - Black Box Interface

Purpose: HTTP request/response shapes
Interface: pydantic models used by main.py
Hidden: camelCase aliasing

The API module only describes data - all logic lives in the control module.
"""

from .models import (
    DisconnectRequest,
    DisconnectResponse,
    ErrorResponse,
    EventHistoryResponse,
    HealthResponse,
    InitRequest,
    InitResponse,
    InitStatus,
    SendMessageRequest,
    SendMessageResponse,
    SessionListResponse,
    SessionSummary,
    StatusResponse,
)

__all__ = [
    "DisconnectRequest",
    "DisconnectResponse",
    "ErrorResponse",
    "EventHistoryResponse",
    "HealthResponse",
    "InitRequest",
    "InitResponse",
    "InitStatus",
    "SendMessageRequest",
    "SendMessageResponse",
    "SessionListResponse",
    "SessionSummary",
    "StatusResponse",
]
