"""
Session Module - Black Box Interface

Purpose: Own the profile -> session handle mapping and drive each handle
Interface: SessionRegistry.create(), get(), remove(), destroy_and_remove()
Hidden: Per-profile locking, state transitions, event stream consumption

Replaceable with any registry that keeps one handle per profile.
"""

from .session import (
    TERMINAL_STATES,
    SessionHandle,
    SessionOptions,
    SessionRegistry,
    SessionState,
)

__all__ = [
    "SessionHandle",
    "SessionOptions",
    "SessionRegistry",
    "SessionState",
    "TERMINAL_STATES",
]
