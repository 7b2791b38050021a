"""Tests for the connection supervisor lifecycle."""

import asyncio
import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from session_gateway.domain.exceptions import InvalidSessionIdError, SendFailure
from session_gateway.domain.models import SessionMode
from session_gateway.domain.pending import PendingRequest
from session_gateway.infra.protocol.engine import ConnectionEvent, ConnectionUpdate, DisconnectReason
from tests.unit.fakes import build_service


async def _reconnect(service, session_id: str) -> None:
    task = service.supervisor.pending_reconnect(session_id)
    assert task is not None
    await task


async def _until_connecting(engine, attempts: int = 1) -> None:
    for _ in range(500):
        if len(engine.configs) >= attempts:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("engine.connect was never reached")


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_open_registers_session_and_clears_retries(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        service.registry.set_attempts("alice", 1)

        await service.create_session("alice")
        await engine.last.open()
        await service.runner.drain()

        assert service.is_session_exists("alice")
        assert service.registry.attempts("alice") == 0
        assert "alice" not in service.registry.retries
        assert (tmp_path / "alice_store.json").exists()

    @pytest.mark.asyncio
    async def test_connection_config(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("bob", SessionMode.LEGACY)

        config = engine.configs[0]
        assert config.session_id == "bob"
        assert config.mode is SessionMode.LEGACY
        assert config.auth_state == {"creds": {}, "keys": {}}
        assert config.version == [2, 913, 4]
        assert config.browser[0] == "Mac OS"
        assert config.patch_message_before_sending({"listMessage": {"x": 1}})["viewOnceMessage"]

    @pytest.mark.asyncio
    async def test_invalid_identity_rejected(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        with pytest.raises(InvalidSessionIdError):
            await service.create_session("../escape")

        assert engine.configs == []

    @pytest.mark.asyncio
    async def test_store_hydrated_before_connect(self, tmp_path: Path) -> None:
        (tmp_path / "carol_store.json").write_text(
            json.dumps({"chats": [{"id": "A@s.whatsapp.net"}], "contacts": []})
        )
        service, _, _ = build_service(tmp_path)

        await service.create_session("carol")

        record = service.get_session("carol")
        assert record.store.disk_merged is True
        assert "A@s.whatsapp.net" in record.store.chats

    @pytest.mark.asyncio
    async def test_connect_failure_reconnects(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=1)
        engine.failures_left = 1

        await service.create_session("dave")
        assert not service.is_session_exists("dave")

        await _reconnect(service, "dave")

        assert service.is_session_exists("dave")
        assert len(engine.configs) == 2


class TestQrChallenge:
    @pytest.mark.asyncio
    async def test_first_qr_answers_pending_request(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        pending = PendingRequest()

        await service.create_session("alice", pending=pending)
        await engine.last.emit(ConnectionEvent.CONNECTION_UPDATE, ConnectionUpdate(qr="2@first"))
        await engine.last.emit(ConnectionEvent.CONNECTION_UPDATE, ConnectionUpdate(qr="2@second"))

        response = await pending.wait(timeout=5)
        assert response.status_code == 200
        assert response.success is True
        assert response.message == "QR code received, please scan the QR code."
        assert response.data["qr"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_qr_render_failure_answers_500(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        pending = PendingRequest()

        await service.create_session("alice", pending=pending)
        with patch(
            "session_gateway.domain.services.supervisor.render_qr_data_url",
            side_effect=ValueError("payload too long"),
        ):
            await engine.last.emit(ConnectionEvent.CONNECTION_UPDATE, {"qr": "2@x"})

        response = await pending.wait(timeout=1)
        assert response.status_code == 500
        assert response.message == "Unable to create QR code."

    @pytest.mark.asyncio
    async def test_qr_without_pending_request_is_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("alice")
        with caplog.at_level(logging.WARNING):
            await engine.last.emit(ConnectionEvent.CONNECTION_UPDATE, ConnectionUpdate(qr="2@x"))

        assert any("needs pairing" in r.getMessage() for r in caplog.records)


class TestDisconnect:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [1, 2, 3])
    async def test_disconnect_after_max_retries_is_terminal(
        self, tmp_path: Path, max_retries: int
    ) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=max_retries)

        await service.create_session("alice")
        for _ in range(max_retries):
            await engine.last.drop(DisconnectReason.CONNECTION_LOST)
            await _reconnect(service, "alice")

        final = engine.last
        await final.drop(DisconnectReason.CONNECTION_LOST)

        assert service.supervisor.pending_reconnect("alice") is None
        assert not service.is_session_exists("alice")
        assert "alice" not in service.registry.retries
        assert final.closed
        assert len(engine.connections) == max_retries + 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [1, 2])
    async def test_failed_reconnects_past_budget_finalize_previous_record(
        self, tmp_path: Path, max_retries: int
    ) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=max_retries)

        await service.create_session("alice")
        first = engine.last
        await first.open()
        await first.drop(DisconnectReason.CONNECTION_LOST)
        engine.failures_left = 5

        task = service.supervisor.pending_reconnect("alice")
        while task is not None:
            await task
            task = service.supervisor.pending_reconnect("alice")

        assert not service.is_session_exists("alice")
        assert service.get_session("alice") is None
        assert first.closed
        assert "alice" not in service.registry.retries
        assert len(engine.configs) == max_retries + 1
        assert len(engine.connections) == 1

    @pytest.mark.asyncio
    async def test_logged_out_is_terminal_on_first_occurrence(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=5)
        pending = PendingRequest()

        await service.create_session("alice", pending=pending)
        await engine.last.drop(DisconnectReason.LOGGED_OUT)

        assert service.supervisor.pending_reconnect("alice") is None
        assert not service.is_session_exists("alice")
        assert "alice" not in service.registry.retries
        response = await pending.wait(timeout=1)
        assert response.status_code == 500
        assert response.message == "Unable to create session."

    @pytest.mark.asyncio
    async def test_close_outcome_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        service, engine, _ = build_service(tmp_path, reconnect_interval_ms=60000)

        await service.create_session("alice")
        with caplog.at_level(logging.INFO, logger="session_gateway.domain.services.supervisor"):
            await engine.last.drop(DisconnectReason.CONNECTION_LOST)
            await service.delete_session("alice")
            await service.create_session("alice")
            await engine.last.drop(DisconnectReason.LOGGED_OUT)

        closes = [r for r in caplog.records if r.getMessage().startswith("Connection closed")]
        assert [(r.getMessage(), r.levelno, r.outcome) for r in closes] == [
            ("Connection closed (reconnect)", logging.INFO, "reconnect"),
            ("Connection closed (logged_out)", logging.WARNING, "logged_out"),
        ]
        assert closes[1].status_code == DisconnectReason.LOGGED_OUT
        assert closes[1].session_id == "alice"

    @pytest.mark.asyncio
    async def test_terminal_close_keeps_files(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("alice")
        await engine.last.emit(ConnectionEvent.CREDENTIALS_UPDATED, {"registered": True})
        await engine.last.open()
        await service.runner.drain()
        await engine.last.drop(DisconnectReason.LOGGED_OUT)

        assert (tmp_path / "md_alice" / "creds.json").exists()
        assert (tmp_path / "alice_store.json").exists()

    @pytest.mark.asyncio
    async def test_open_between_drops_resets_budget(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=1)

        await service.create_session("alice")
        for _ in range(3):
            await engine.last.open()
            await engine.last.drop(DisconnectReason.CONNECTION_CLOSED)
            await _reconnect(service, "alice")

        assert service.is_session_exists("alice")
        assert len(engine.connections) == 4

    @pytest.mark.asyncio
    async def test_repeated_close_consumes_one_attempt(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, max_retries=3, reconnect_interval_ms=60000)

        await service.create_session("alice")
        await engine.last.drop(DisconnectReason.CONNECTION_CLOSED)
        await engine.last.drop(DisconnectReason.CONNECTION_CLOSED)

        assert service.registry.attempts("alice") == 1
        await service.delete_session("alice")

    @pytest.mark.asyncio
    async def test_restart_required_reconnects_without_delay(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, reconnect_interval_ms=60000)

        await service.create_session("alice")
        await engine.last.drop(DisconnectReason.RESTART_REQUIRED)

        await asyncio.wait_for(service.supervisor.pending_reconnect("alice"), timeout=1)
        assert len(engine.connections) == 2

    @pytest.mark.asyncio
    async def test_replaced_connection_events_ignored(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("alice")
        old = engine.last
        await service.create_session("alice")
        current = engine.last
        await service.runner.drain()

        await old.drop(DisconnectReason.CONNECTION_LOST)

        assert old.closed
        assert service.supervisor.pending_reconnect("alice") is None
        assert service.get_session("alice").connection is current


class TestEventRouting:
    @pytest.mark.asyncio
    async def test_credentials_persisted(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("alice")
        await engine.last.emit(ConnectionEvent.CREDENTIALS_UPDATED, {"me": {"id": "1@s.whatsapp.net"}})

        creds = json.loads((tmp_path / "md_alice" / "creds.json").read_text())
        assert creds == {"me": {"id": "1@s.whatsapp.net"}}

    @pytest.mark.asyncio
    async def test_snapshots_update_store_and_flush(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)

        await service.create_session("alice")
        await engine.last.emit(
            ConnectionEvent.CHATS_SNAPSHOT, {"chats": [{"id": "1@s.whatsapp.net"}]}
        )
        await engine.last.emit(
            ConnectionEvent.HISTORY_SNAPSHOT,
            {"chats": [{"id": "1-2@g.us"}], "contacts": [{"id": "1@s.whatsapp.net", "name": "Ann"}]},
        )
        await service.runner.drain()

        data = json.loads((tmp_path / "alice_store.json").read_text())
        assert {chat["id"] for chat in data["chats"]} == {"1@s.whatsapp.net", "1-2@g.us"}
        assert data["contacts"] == [{"id": "1@s.whatsapp.net", "name": "Ann"}]

    @pytest.mark.asyncio
    async def test_inbound_direct_messages_relayed(self, tmp_path: Path) -> None:
        service, engine, recorder = build_service(tmp_path)

        await service.create_session("alice")
        await engine.last.emit(
            ConnectionEvent.MESSAGES_UPSERTED,
            {
                "messages": [
                    {"key": {"remoteJid": "1@s.whatsapp.net", "id": "M1"}, "message": {"conversation": "hi"}},
                    {"key": {"remoteJid": "1-2@g.us", "id": "M2"}, "message": {"conversation": "all"}},
                ]
            },
        )
        await service.runner.drain()

        assert recorder.paths() == ["/api/send-webhook/alice"]
        assert recorder.bodies()[0]["message_id"] == "M1"


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_options_passed_separately(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")
        record = service.get_session("alice")

        result = await service.send_message(
            record,
            "1@s.whatsapp.net",
            {"text": "hi", "options": {"quoted": {"id": "Q1"}}},
            delay_ms=0,
        )

        assert result["key"]["id"] == "MSG1"
        assert engine.last.sent == [("1@s.whatsapp.net", {"text": "hi"}, {"quoted": {"id": "Q1"}})]

    @pytest.mark.asyncio
    async def test_engine_failure_is_opaque(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")
        engine.last.send_error = RuntimeError("socket closed")

        with pytest.raises(SendFailure) as exc_info:
            await service.send_message(service.get_session("alice"), "1@s.whatsapp.net", {"text": "x"})

        assert exc_info.value.__cause__ is None
        assert exc_info.value.__suppress_context__ is True

    @pytest.mark.asyncio
    async def test_send_after_delete_fails(self, tmp_path: Path) -> None:
        service, _, _ = build_service(tmp_path)
        await service.create_session("alice")
        record = service.get_session("alice")
        await service.delete_session("alice")

        with pytest.raises(SendFailure):
            await service.send_message(record, "1@s.whatsapp.net", {"text": "x"})

    @pytest.mark.asyncio
    async def test_pacing_delay(self, tmp_path: Path) -> None:
        service, _, _ = build_service(tmp_path, send_delay_ms=250)
        await service.create_session("alice")

        with patch("session_gateway.domain.services.supervisor.asyncio.sleep") as sleep:
            await service.send_message(service.get_session("alice"), "1@s.whatsapp.net", {"text": "x"})

        sleep.assert_awaited_once_with(0.25)


class TestIsExists:
    @pytest.mark.asyncio
    async def test_modern_directory_lookup(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")
        record = service.get_session("alice")

        engine.last.existence = [{"exists": True}]
        assert await service.is_exists(record, "1@s.whatsapp.net") is True

        engine.last.existence = [{"exists": False}]
        assert await service.is_exists(record, "1@s.whatsapp.net") is False

    @pytest.mark.asyncio
    async def test_legacy_directory_lookup(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("bob", SessionMode.LEGACY)

        engine.last.existence = {"exists": True}
        assert await service.is_exists(service.get_session("bob"), "1@s.whatsapp.net") is True

    @pytest.mark.asyncio
    async def test_group_lookup(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")
        record = service.get_session("alice")

        assert await service.is_exists(record, "123-456@g.us", is_group=True) is True

        engine.last.group_metadata = {}
        assert await service.is_exists(record, "123-456@g.us", is_group=True) is False

    @pytest.mark.asyncio
    async def test_query_failure_reads_as_missing(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")
        record = service.get_session("alice")
        engine.last.query_error = TimeoutError("no reply")

        assert await service.is_exists(record, "1@s.whatsapp.net") is False
        assert await service.is_exists(record, "123-456@g.us", is_group=True) is False


class TestDeleteSession:
    @pytest.mark.asyncio
    async def test_delete_removes_everything(self, tmp_path: Path) -> None:
        service, engine, recorder = build_service(tmp_path)
        await service.create_session("alice")
        connection = engine.last
        await connection.emit(ConnectionEvent.CREDENTIALS_UPDATED, {"registered": True})
        await connection.open()
        await service.runner.drain()

        await service.delete_session("alice")
        await service.runner.drain()

        assert not service.is_session_exists("alice")
        assert service.get_session("alice") is None
        assert connection.closed
        assert not connection.logged_out
        assert not (tmp_path / "md_alice").exists()
        assert not (tmp_path / "alice_store.json").exists()
        assert recorder.paths() == ["/api/set-device-status/alice/0"]

    @pytest.mark.asyncio
    async def test_delete_with_logout(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        await service.create_session("alice")

        await service.delete_session("alice", logout=True)

        assert engine.last.logged_out

    @pytest.mark.asyncio
    async def test_delete_cancels_pending_reconnect(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path, reconnect_interval_ms=60000)
        await service.create_session("alice")
        await engine.last.drop(DisconnectReason.CONNECTION_LOST)
        task = service.supervisor.pending_reconnect("alice")

        await service.delete_session("alice")

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(engine.connections) == 1
        assert not service.is_session_exists("alice")

    @pytest.mark.asyncio
    async def test_device_status_failure_is_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        service, _, recorder = build_service(tmp_path)
        recorder.status_code = 502

        with caplog.at_level(logging.ERROR):
            await service.delete_session("ghost")
            await service.runner.drain()

        assert len(recorder.requests) == 1
        assert any("Device status update failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_delete_during_connect_abandons_creation(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        engine.gate = asyncio.Event()
        pending = PendingRequest()

        creating = asyncio.create_task(service.create_session("alice", pending=pending))
        await _until_connecting(engine)
        await service.delete_session("alice")
        engine.gate.set()
        await creating

        assert not service.is_session_exists("alice")
        assert engine.last.closed
        assert not (tmp_path / "alice_store.json").exists()
        response = await pending.wait(timeout=1)
        assert response.status_code == 500
        assert response.message == "Unable to create session."

    @pytest.mark.asyncio
    async def test_connect_failure_after_delete_does_not_retry(self, tmp_path: Path) -> None:
        service, engine, _ = build_service(tmp_path)
        engine.gate = asyncio.Event()
        engine.failures_left = 1

        creating = asyncio.create_task(service.create_session("alice"))
        await _until_connecting(engine)
        await service.delete_session("alice")
        engine.gate.set()
        await creating

        assert service.supervisor.pending_reconnect("alice") is None
        assert "alice" not in service.registry.retries
        assert not service.is_session_exists("alice")

    @pytest.mark.asyncio
    async def test_create_after_delete_registers(self, tmp_path: Path) -> None:
        service, _, _ = build_service(tmp_path)
        await service.create_session("alice")
        await service.delete_session("alice")

        await service.create_session("alice")

        assert service.is_session_exists("alice")
