"""Utility functions for domain services.

Identifier formatting helpers used by the public session API.
"""

import re

from session_gateway.domain.models import GROUP_JID_SUFFIX, USER_JID_SUFFIX

_NON_DIGITS = re.compile(r"\D")
_NON_GROUP_CHARS = re.compile(r"[^\d-]")


def format_phone(phone: str) -> str:
    """Format a phone number as a direct-message JID.

    Args:
        phone: Phone number in any human format, or an existing JID

    Returns:
        JID with the direct-message suffix

    Example:
        >>> format_phone("+1 (555) 123-4567")
        '15551234567@s.whatsapp.net'
        >>> format_phone("15551234567@s.whatsapp.net")
        '15551234567@s.whatsapp.net'
    """
    if phone.endswith(USER_JID_SUFFIX):
        return phone

    return _NON_DIGITS.sub("", phone) + USER_JID_SUFFIX


def format_group(group: str) -> str:
    """Format a group identifier as a group JID.

    Args:
        group: Group id (digits and hyphens), or an existing group JID

    Returns:
        JID with the group suffix

    Example:
        >>> format_group("123-456")
        '123-456@g.us'
        >>> format_group("123-456@g.us")
        '123-456@g.us'
    """
    if group.endswith(GROUP_JID_SUFFIX):
        return group

    return _NON_GROUP_CHARS.sub("", group) + GROUP_JID_SUFFIX
