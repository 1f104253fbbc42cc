"""
Sessionhub HTTP data models.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Enums


class InitStatus(str, Enum):
    """Outcome of an init request."""

    EXISTING = "existing"
    INITIALIZING = "initializing"


# Request Models (API Input)
# Required ids are Optional here so that missing fields surface as the
# service's own InvalidArgument instead of a schema error.


class InitRequest(CamelModel):
    """Request to start a session for a profile."""

    profile_id: Optional[str] = Field(None, description="Profile identifier", max_length=200)
    user_id: Optional[str] = Field(None, description="Owning user identifier", max_length=200)
    use_pairing: bool = Field(default=False, description="Link with a pairing code instead of a QR code")
    phone_number: Optional[str] = Field(
        None, description="Phone number to pair, required with usePairing", max_length=32
    )


class DisconnectRequest(CamelModel):
    """Request to end a profile's session."""

    profile_id: Optional[str] = Field(None, description="Profile identifier")


class SendMessageRequest(CamelModel):
    """Request to send a text message."""

    number: Optional[str] = Field(None, description="Phone number or chat id")
    message: Optional[str] = Field(None, description="Message text")
    profile_id: Optional[str] = Field(None, description="Sending profile, default profile if omitted")


# Response Models (API Output)


class InitResponse(CamelModel):
    success: bool = True
    status: InitStatus
    profile_id: str


class DisconnectResponse(CamelModel):
    success: bool = True
    profile_id: str


class StatusResponse(CamelModel):
    profile_id: str
    connected: bool
    state: str


class SendMessageResponse(CamelModel):
    success: bool = True
    profile_id: str
    to: str


class SessionSummary(CamelModel):
    profile_id: str
    user_id: str
    state: str
    connected: bool
    phone_number: Optional[str] = None
    display_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SessionListResponse(CamelModel):
    sessions: List[SessionSummary]
    count: int


class EventHistoryResponse(CamelModel):
    profile_id: str
    events: List[Dict[str, Any]]


class HealthResponse(CamelModel):
    """Health check response."""

    status: str = Field(..., description="Health status", pattern="^(healthy|unhealthy|degraded)$")
    active_session_count: int = Field(..., description="Sessions held in the registry")
    redis: str = Field(default="disabled", description="Event journal connection status")
    pending_events: int = Field(default=0, description="Lifecycle events awaiting delivery")


# Error Models


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str = Field(..., description="Error message")
