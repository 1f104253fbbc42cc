"""Messaging collaborator interfaces following Black Box Design principles."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Protocol


class CollaboratorEventKind(str, Enum):
    """Raw event names reported by the messaging collaborator."""

    QR = "qr"
    PAIRING_CODE = "pairing-code"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"


@dataclass(frozen=True)
class CollaboratorEvent:
    """One event from a session's event stream."""

    kind: str
    data: Dict[str, Any] = field(default_factory=dict)


class MessagingCollaborator(Protocol):
    """Protocol for the external messaging collaborator - allows swappable transports."""

    def connect(
        self,
        profile_id: str,
        *,
        use_pairing: bool = False,
        phone_number: Optional[str] = None,
    ) -> AsyncIterator[CollaboratorEvent]:
        """
        Start a session and stream its events.

        Args:
            profile_id: Profile identifier
            use_pairing: Request a pairing code instead of a QR code
            phone_number: Phone number to pair, required with use_pairing

        Returns:
            Async iterator of CollaboratorEvent, ending when the session ends
        """
        ...

    async def destroy(self, profile_id: str) -> None:
        """Tear the session down and release its resources."""
        ...

    async def send_message(self, profile_id: str, recipient: str, body: str) -> None:
        """Send a text message from the profile's session."""
        ...
