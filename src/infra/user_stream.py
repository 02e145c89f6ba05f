"""
Binance user data stream.

Reads the account's user data socket (python-binance BinanceSocketManager,
which owns the listen key and its keepalive) and reconnects with a delay
whenever the socket drops, the handshake is rejected or the key expires.
Every executionReport is parsed into an ExecutionReport and handed to the
on_report callback (app wiring posts it onto the deal work queue).
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import websockets
from binance.exceptions import BinanceAPIException, BinanceRequestException

from src.core.errors import DcaBotError
from src.core.json_utils import dumps, loads
from src.execution.exchange import ExecutionReport

log = logging.getLogger("dcabot")

# anything that ends one connection attempt without ending the stream
STREAM_ERRORS = (
    websockets.exceptions.WebSocketException,
    asyncio.TimeoutError,
    BinanceAPIException,
    BinanceRequestException,
    DcaBotError,
    OSError,
)


def parse_execution_report(msg: Dict[str, Any]) -> Optional[ExecutionReport]:
    """
    Map a raw user-stream message to an ExecutionReport.

    Returns None for any other event type. Cancel reports carry the id of the
    cancelled order in "C" ("c" is the cancel request's own id), so "C" wins
    when present.
    """
    if msg.get("e") != "executionReport":
        return None

    client_order_id = msg.get("C") or msg.get("c") or ""
    price = Decimal(str(msg.get("p", "0")))
    filled_qty = Decimal(str(msg.get("z", "0")))
    filled_quote = Decimal(str(msg.get("Z", "0")))
    if filled_qty > 0 and filled_quote > 0:
        price = filled_quote / filled_qty

    exchange_order_id = msg.get("i")
    return ExecutionReport(
        client_order_id=str(client_order_id),
        exchange_order_id=int(exchange_order_id) if exchange_order_id is not None else None,
        side=str(msg.get("S", "")),
        status=str(msg.get("X", "")),
        price=price,
        quantity=Decimal(str(msg.get("q", "0"))),
    )


class UserDataStream:
    def __init__(
        self,
        client: Any,
        on_report: Callable[[ExecutionReport], Any],
        log_event: Optional[Callable[..., None]] = None,
        reconnect_delay_sec: float = 5.0,
    ) -> None:
        """
        Args:
            client: Anything with user_socket() returning an async context
                manager whose recv() yields user data messages
            on_report: Called with each parsed ExecutionReport
            log_event: Structured logging callback
            reconnect_delay_sec: Pause between connection attempts
        """
        self.client = client
        self.on_report = on_report
        self.reconnect_delay_sec = reconnect_delay_sec
        self._log_event = log_event or self._default_log
        self._stop_event = asyncio.Event()
        self.reports_received = 0
        self.connects = 0

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._run_once()
            except asyncio.CancelledError:
                raise
            except websockets.exceptions.ConnectionClosed as exc:
                self._log_event("user_stream_reconnect", reason=str(exc))
            except STREAM_ERRORS as exc:
                self._log_event("user_stream_error", error=str(exc), error_type=type(exc).__name__)
            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay_sec)
            except asyncio.TimeoutError:
                pass

    async def _run_once(self) -> None:
        async with self.client.user_socket() as socket:
            self.connects += 1
            self._log_event("user_stream_connected", connects=self.connects)
            stopper = asyncio.create_task(self._stop_event.wait())
            try:
                while not self._stop_event.is_set():
                    recv = asyncio.ensure_future(socket.recv())
                    done, _ = await asyncio.wait({recv, stopper}, return_when=asyncio.FIRST_COMPLETED)
                    if recv not in done:
                        recv.cancel()
                        await asyncio.gather(recv, return_exceptions=True)
                        break
                    if not self.handle_message(recv.result()):
                        break
            finally:
                stopper.cancel()
                await asyncio.gather(stopper, return_exceptions=True)

    def handle_message(self, raw: Any) -> bool:
        """Dispatch one socket message. Returns False when the stream must reconnect."""
        if isinstance(raw, dict):
            msg = raw
        else:
            try:
                msg = loads(raw)
            except ValueError:
                self._log_event("user_stream_error", error="invalid_json")
                return True
        if not isinstance(msg, dict):
            return True

        event = msg.get("e")
        if event == "listenKeyExpired":
            self._log_event("user_stream_reconnect", reason="listen_key_expired")
            return False
        if event == "error":
            # the SDK gave up on its own reconnects
            self._log_event("user_stream_reconnect", reason=str(msg.get("m") or msg.get("type") or "socket_error"))
            return False

        report = parse_execution_report(msg)
        if report is not None:
            self.reports_received += 1
            self.on_report(report)
        return True
