"""
Events Module - Black Box Interface

Purpose: Relay session lifecycle events to the external sink
Interface: EventForwarder.publish(), start(), stop(); EventJournal.recent()
Hidden: Delivery queue, retry/backoff, signing, Redis layout

The sink can be swapped for anything reachable over HTTP.
"""

from .events import EventKind, LifecycleEvent
from .forwarder import SIGNATURE_HEADER, EventForwarder, sign_body
from .journal import EventJournal

__all__ = [
    "EventForwarder",
    "EventJournal",
    "EventKind",
    "LifecycleEvent",
    "SIGNATURE_HEADER",
    "sign_body",
]
