"""
Recipient normalization.

Bare phone numbers are addressed as ``<digits><suffix>`` (``@c.us`` for
individual chats). Anything that already contains ``@`` (a full chat id,
including group ids ending in ``@g.us``) or already ending in the suffix
is passed through unchanged, which makes normalization idempotent.
"""

import re

from sessionhub.modules.errors import InvalidArgument

DEFAULT_SUFFIX = "@c.us"

_SEPARATORS = re.compile(r"[\s\-().+]")


def normalize_recipient(recipient: str, suffix: str = DEFAULT_SUFFIX) -> str:
    """
    Normalize a recipient into a chat id.

    Examples:
        >>> normalize_recipient("+1 (555) 123-4567")
        '15551234567@c.us'
        >>> normalize_recipient("15551234567@c.us")
        '15551234567@c.us'

    Raises:
        InvalidArgument: If the recipient is empty or not a phone number
    """
    value = (recipient or "").strip()
    if not value:
        raise InvalidArgument("Recipient is required")
    if "@" in value or (suffix and value.endswith(suffix)):
        return value

    digits = _SEPARATORS.sub("", value)
    if not digits.isdigit():
        raise InvalidArgument(f"Invalid recipient: {recipient}")
    return f"{digits}{suffix}"
