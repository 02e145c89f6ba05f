"""
Tests for the user data stream.
"""
import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import orjson
import pytest
import websockets

from src.core.errors import ExchangeTransportError
from src.infra.user_stream import UserDataStream, parse_execution_report

EXECUTION_REPORT = {
    "e": "executionReport",
    "E": 1499405658658,
    "s": "BTCUSDT",
    "c": "5f0c8e0e-1111-2222-3333-444455556666",
    "S": "BUY",
    "o": "LIMIT",
    "q": "0.51020000",
    "p": "98.00000000",
    "X": "NEW",
    "i": 4293153,
    "z": "0.00000000",
    "Z": "0.00000000",
    "C": "",
}


class TestParseExecutionReport:
    def test_new_order(self):
        report = parse_execution_report(EXECUTION_REPORT)
        assert report.client_order_id == "5f0c8e0e-1111-2222-3333-444455556666"
        assert report.exchange_order_id == 4293153
        assert report.side == "BUY"
        assert report.status == "NEW"
        assert report.price == Decimal("98")
        assert report.quantity == Decimal("0.5102")

    def test_fill_uses_average_price(self):
        msg = {**EXECUTION_REPORT, "X": "FILLED", "z": "0.51020000", "Z": "49.9792"}
        report = parse_execution_report(msg)
        assert report.status == "FILLED"
        assert report.price == Decimal("49.9792") / Decimal("0.5102")

    def test_cancel_uses_original_client_id(self):
        msg = {**EXECUTION_REPORT, "X": "CANCELED", "c": "web_cancel_123", "C": "orig-id"}
        assert parse_execution_report(msg).client_order_id == "orig-id"

    def test_other_events_ignored(self):
        assert parse_execution_report({"e": "outboundAccountPosition"}) is None


class FakeSocket:
    def __init__(self, messages):
        self.messages = list(messages)
        self.exited = False

    async def recv(self):
        if self.messages:
            return self.messages.pop(0)
        await asyncio.Event().wait()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.exited = True
        return False


class FailingSocket:
    def __init__(self, exc):
        self.exc = exc

    async def __aenter__(self):
        raise self.exc

    async def __aexit__(self, *exc):
        return False


class FakeClient:
    """Hands out the queued sockets in order, then idle ones."""

    def __init__(self, sockets):
        self.sockets = list(sockets)
        self.opened = 0

    def user_socket(self):
        self.opened += 1
        if self.sockets:
            return self.sockets.pop(0)
        return FakeSocket([])


class TestUserDataStream:
    def make_stream(self, client=None, on_report=None):
        events = []
        stream = UserDataStream(
            client or FakeClient([]),
            on_report=on_report or MagicMock(),
            log_event=lambda event, **data: events.append(event),
            reconnect_delay_sec=0.01,
        )
        return stream, events

    def test_handle_message_dispatches_reports(self):
        received = []
        stream, _ = self.make_stream(on_report=received.append)
        assert stream.handle_message(EXECUTION_REPORT)
        assert stream.handle_message(orjson.dumps(EXECUTION_REPORT))
        assert len(received) == 2
        assert stream.reports_received == 2

    def test_handle_message_ignores_garbage(self):
        received = []
        stream, _ = self.make_stream(on_report=received.append)
        assert stream.handle_message("not json")
        assert stream.handle_message(orjson.dumps([1, 2]))
        assert stream.handle_message({"e": "outboundAccountPosition"})
        assert received == []

    def test_listen_key_expiry_forces_reconnect(self):
        stream, _ = self.make_stream()
        assert stream.handle_message({"e": "listenKeyExpired"}) is False

    def test_socket_error_message_forces_reconnect(self):
        stream, events = self.make_stream()
        assert stream.handle_message({"e": "error", "m": "Max reconnect retries reached"}) is False
        assert "user_stream_reconnect" in events

    @pytest.mark.asyncio
    async def test_run_delivers_reports(self):
        socket = FakeSocket([EXECUTION_REPORT])
        received = []

        def on_report(report):
            received.append(report)
            stream.stop()

        stream, _ = self.make_stream(FakeClient([socket]), on_report)
        await asyncio.wait_for(stream.run(), timeout=1.0)

        assert [r.exchange_order_id for r in received] == [4293153]
        assert socket.exited

    @pytest.mark.asyncio
    async def test_stop_while_idle(self):
        stream, _ = self.make_stream()
        task = asyncio.create_task(stream.run())
        await asyncio.sleep(0.02)
        stream.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert task.done() and task.exception() is None

    @pytest.mark.asyncio
    async def test_rejected_handshake_and_timeout_are_retried(self):
        received = []

        def on_report(report):
            received.append(report)
            stream.stop()

        client = FakeClient([
            FailingSocket(websockets.exceptions.InvalidHandshake("HTTP 503")),
            FailingSocket(asyncio.TimeoutError()),
            FailingSocket(ExchangeTransportError("listen key")),
            FakeSocket([{"e": "listenKeyExpired"}]),
            FakeSocket([EXECUTION_REPORT]),
        ])
        stream, events = self.make_stream(client, on_report)
        await asyncio.wait_for(stream.run(), timeout=2.0)

        assert client.opened == 5
        assert len(received) == 1
        assert events.count("user_stream_error") == 3
        assert "user_stream_reconnect" in events

    @pytest.mark.asyncio
    async def test_dropped_connection_reconnects(self):
        class DroppingSocket(FakeSocket):
            async def recv(self):
                raise websockets.exceptions.ConnectionClosedError(None, None)

        received = []

        def on_report(report):
            received.append(report)
            stream.stop()

        client = FakeClient([DroppingSocket([]), FakeSocket([EXECUTION_REPORT])])
        stream, events = self.make_stream(client, on_report)
        await asyncio.wait_for(stream.run(), timeout=1.0)

        assert client.opened == 2
        assert events.count("user_stream_reconnect") == 1
        assert len(received) == 1
