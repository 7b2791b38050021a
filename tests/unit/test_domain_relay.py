"""Tests for the webhook relay."""

import logging

import pytest

from session_gateway.domain.services.relay import WebhookRelay, build_notification, message_type
from tests.unit.fakes import ConsumerRecorder


def _message(remote_jid: str, message_id: str = "M1", text: str = "hello") -> dict:
    return {
        "key": {"remoteJid": remote_jid, "fromMe": False, "id": message_id},
        "message": {"conversation": text},
        "messageTimestamp": 1700000000,
    }


def test_message_type_is_first_content_key() -> None:
    assert message_type({"imageMessage": {}, "messageContextInfo": {}}) == "imageMessage"
    assert message_type(None) is None
    assert message_type({}) is None


def test_group_messages_produce_no_notification() -> None:
    assert build_notification("alice", _message("123-456@g.us")) is None
    assert build_notification("alice", {"key": {}}) is None


def test_notification_fields() -> None:
    raw = _message("628123@s.whatsapp.net", "ABC")
    notification = build_notification("alice", raw)

    assert notification is not None
    assert notification.to_payload() == {
        "from": "628123@s.whatsapp.net",
        "from_me": False,
        "message_id": "ABC",
        "message": {"conversation": "hello"},
        "type": "conversation",
        "replay_message_json": raw,
    }


@pytest.mark.asyncio
async def test_relays_each_direct_message_once() -> None:
    recorder = ConsumerRecorder()
    relay = WebhookRelay(recorder.client())

    delivered = await relay.relay(
        "alice",
        {
            "messages": [
                _message("1@s.whatsapp.net", "M1"),
                _message("123-456@g.us", "M2"),
                _message("2@s.whatsapp.net", "M3"),
            ],
            "type": "notify",
        },
    )

    assert delivered == 2
    assert recorder.paths() == ["/api/send-webhook/alice", "/api/send-webhook/alice"]
    assert [body["message_id"] for body in recorder.bodies()] == ["M1", "M3"]


@pytest.mark.asyncio
async def test_failed_delivery_is_logged_not_retried(caplog: pytest.LogCaptureFixture) -> None:
    recorder = ConsumerRecorder(status_code=500)
    relay = WebhookRelay(recorder.client())

    with caplog.at_level(logging.ERROR, logger="session_gateway.domain.services.relay"):
        delivered = await relay.relay("alice", {"messages": [_message("1@s.whatsapp.net")]})

    assert delivered == 0
    assert len(recorder.requests) == 1
    assert any("Webhook delivery failed" in r.getMessage() for r in caplog.records)
