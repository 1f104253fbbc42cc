"""
Collaborator Module - Black Box Interface

Purpose: Reach the external messaging system (handshake, teardown, send)
Interface: connect(), destroy(), send_message()
Hidden: Bridge transport, event stream framing

Anything implementing MessagingCollaborator can replace the HTTP bridge.
"""

from .bridge import HttpBridgeCollaborator
from .interfaces import CollaboratorEvent, CollaboratorEventKind, MessagingCollaborator

__all__ = [
    "CollaboratorEvent",
    "CollaboratorEventKind",
    "HttpBridgeCollaborator",
    "MessagingCollaborator",
]
