"""
Control Module - Black Box Interface

Purpose: Transport-agnostic operations behind the HTTP API
Interface: init(), disconnect(), status(), send_message(), health()
Hidden: Validation, recipient normalization, registry interaction

HTTP is one binding; any transport can call ControlService directly.
"""

from .recipients import normalize_recipient
from .service import INIT_EXISTING, INIT_INITIALIZING, ControlService

__all__ = ["ControlService", "INIT_EXISTING", "INIT_INITIALIZING", "normalize_recipient"]
