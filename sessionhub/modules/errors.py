"""
Error taxonomy shared by all modules.

Each error carries the HTTP status the API layer renders it with, so the
modules stay transport-agnostic and main.py only needs one handler.
"""


class SessionHubError(Exception):
    """Base class for all sessionhub errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(SessionHubError):
    """A required field is missing or malformed."""

    status_code = 400


class AlreadyExists(SessionHubError):
    """A live session handle already exists for the profile."""

    status_code = 409


class NotReady(SessionHubError):
    """No connected session handle exists for the profile."""

    status_code = 409


class CollaboratorError(SessionHubError):
    """The messaging collaborator failed (handshake, teardown, send)."""

    status_code = 502


class SinkDeliveryError(SessionHubError):
    """The webhook sink rejected or did not receive an event."""

    status_code = 502
