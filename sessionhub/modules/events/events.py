"""Lifecycle event records forwarded to the sink."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict


class EventKind(str, Enum):
    """Fixed vocabulary of forwarded lifecycle events."""

    QR_UPDATED = "qr_updated"
    PAIRING_CODE = "pairing_code"
    CONNECTED = "connected"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class LifecycleEvent:
    """One session state transition, as delivered to the sink."""

    profile_id: str
    user_id: str
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (webhook body and journal entry)."""
        return {
            "profileId": self.profile_id,
            "userId": self.user_id,
            "event": self.kind.value,
            "data": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecycleEvent":
        """Create from the wire representation."""
        return cls(
            profile_id=data["profileId"],
            user_id=data.get("userId", ""),
            kind=EventKind(data["event"]),
            payload=data.get("data") or {},
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
