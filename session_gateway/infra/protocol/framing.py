"""Outbound message framing applied before transmission."""

from typing import Any

_INTERACTIVE_KEYS = ("buttonsMessage", "listMessage")


def patch_message_before_sending(message: dict[str, Any]) -> dict[str, Any]:
    """Wrap interactive messages in a view-once envelope.

    Messages carrying buttons or a list are only rendered by recipients when
    sent inside ``viewOnceMessage`` with device-list metadata. Other messages
    pass through untouched.

    Args:
        message: Outbound message content

    Returns:
        Message to transmit

    Example:
        >>> patch_message_before_sending({"conversation": "hi"})
        {'conversation': 'hi'}
    """
    if not any(message.get(key) for key in _INTERACTIVE_KEYS):
        return message

    return {
        "viewOnceMessage": {
            "message": {
                "messageContextInfo": {
                    "deviceListMetadataVersion": 2,
                    "deviceListMetadata": {},
                },
                **message,
            }
        }
    }
