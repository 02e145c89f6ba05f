"""
Binance spot exchange adapter.

Implements the ExchangeClient contract used by DealManager. Account, order and
user data stream calls go through python-binance's AsyncClient (signing,
timestamps and listen keys are handled there); the unsigned price and
exchangeInfo lookups are plain HTTP/2 requests.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Dict, Optional

import aiohttp
import httpx
from binance import AsyncClient, BinanceSocketManager
from binance.enums import ORDER_RESP_TYPE_RESULT, ORDER_TYPE_LIMIT, TIME_IN_FORCE_GTC
from binance.exceptions import BinanceAPIException, BinanceRequestException

from src.core.errors import ExchangeTransportError
from src.core.filters import ExchangeFilters
from src.core.json_utils import loads
from src.execution.exchange import OrderSnapshot, PlacedOrder, SymbolInfo
from src.state.models import OrderSide

LIVE_HTTP_BASE = "https://api.binance.com"
TESTNET_HTTP_BASE = "https://testnet.binance.vision"

# failures of the SDK transport that leave an order retryable
SDK_ERRORS = (BinanceRequestException, aiohttp.ClientError, asyncio.TimeoutError)


def http_base_for(paper_trading: bool) -> str:
    return TESTNET_HTTP_BASE if paper_trading else LIVE_HTTP_BASE


def format_decimal(value: Decimal) -> str:
    """Plain notation without exponent or trailing zeros (0.00010000 -> 0.0001)."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def _snapshot(data: Dict[str, Any]) -> OrderSnapshot:
    price = Decimal(str(data.get("price", "0")))
    executed = Decimal(str(data.get("executedQty", "0")))
    quote = Decimal(str(data.get("cummulativeQuoteQty", "0")))
    if executed > 0 and quote > 0:
        # average execution price; a limit order can fill better than its price
        price = quote / executed
    return OrderSnapshot(exchange_order_id=int(data["orderId"]), status=str(data["status"]), price=price)


class BinanceSpotClient:
    def __init__(
        self,
        sdk: AsyncClient,
        base_url: str = LIVE_HTTP_BASE,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.sdk = sdk
        self.base_url = base_url.rstrip("/")
        # A shared client passed in is not closed by close(); otherwise we own it.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    @classmethod
    async def create(
        cls,
        api_key: Optional[str],
        api_secret: Optional[str],
        paper_trading: bool = True,
        timeout: float = 10.0,
    ) -> "BinanceSpotClient":
        """Open the SDK session (testnet when paper_trading) and the HTTP client."""
        try:
            sdk = await AsyncClient.create(api_key or None, api_secret or None, testnet=paper_trading)
        except BinanceAPIException as exc:
            raise ExchangeTransportError(
                f"Binance session failed: {exc.message}", code=exc.code, status_code=exc.status_code
            ) from exc
        except SDK_ERRORS as exc:
            raise ExchangeTransportError(f"Binance session failed: {exc}") from exc
        return cls(sdk, base_url=http_base_for(paper_trading), timeout=timeout)

    async def close(self) -> None:
        await self.sdk.close_connection()
        if self._owns_client:
            await self.client.aclose()

    # ---- market data ----

    async def get_price(self, pair: str) -> Decimal:
        data = await self._get("/api/v3/ticker/price", {"symbol": pair})
        return Decimal(str(data["price"]))

    async def get_symbol_info(self, pair: str) -> SymbolInfo:
        data = await self._get("/api/v3/exchangeInfo", {"symbol": pair})
        symbols = data.get("symbols") or []
        if not symbols:
            raise ExchangeTransportError(f"Unknown symbol {pair}")
        info = symbols[0]
        by_type = {f.get("filterType"): f for f in info.get("filters", [])}
        price_filter = by_type.get("PRICE_FILTER")
        lot_filter = by_type.get("LOT_SIZE")
        if price_filter is None or lot_filter is None:
            raise ExchangeTransportError(f"Symbol {pair} is missing PRICE_FILTER or LOT_SIZE")
        filters = ExchangeFilters.from_strings(
            min_price=price_filter["minPrice"],
            max_price=price_filter["maxPrice"],
            tick_size=price_filter["tickSize"],
            min_qty=lot_filter["minQty"],
            max_qty=lot_filter["maxQty"],
            step_size=lot_filter["stepSize"],
        )
        return SymbolInfo(
            pair=info.get("symbol", pair),
            base_asset=info["baseAsset"],
            quote_asset=info["quoteAsset"],
            filters=filters,
        )

    # ---- account ----

    async def get_account_balance(self, asset: str) -> Decimal:
        balance = await self._call("get_asset_balance", self.sdk.get_asset_balance(asset=asset))
        if not balance:
            return Decimal(0)
        return Decimal(str(balance.get("free", "0")))

    # ---- orders ----

    async def place_limit_order(
        self,
        client_order_id: str,
        side: OrderSide,
        pair: str,
        price: Decimal,
        quantity: Decimal,
    ) -> PlacedOrder:
        data = await self._call("create_order", self.sdk.create_order(
            symbol=pair,
            side=OrderSide(side).value,
            type=ORDER_TYPE_LIMIT,
            timeInForce=TIME_IN_FORCE_GTC,
            quantity=format_decimal(quantity),
            price=format_decimal(price),
            newClientOrderId=client_order_id,
            newOrderRespType=ORDER_RESP_TYPE_RESULT,
        ))
        snap = _snapshot(data)
        return PlacedOrder(exchange_order_id=snap.exchange_order_id, status=snap.status, price=snap.price)

    async def cancel_order(self, pair: str, exchange_order_id: int) -> OrderSnapshot:
        data = await self._call("cancel_order", self.sdk.cancel_order(symbol=pair, orderId=exchange_order_id))
        return _snapshot(data)

    async def get_order(self, pair: str, exchange_order_id: int) -> OrderSnapshot:
        data = await self._call("get_order", self.sdk.get_order(symbol=pair, orderId=exchange_order_id))
        return _snapshot(data)

    # ---- user data stream ----

    def user_socket(self) -> Any:
        """A fresh user data socket; listen key creation and keepalive live in the SDK."""
        return BinanceSocketManager(self.sdk).user_socket()

    # ---- transport ----

    async def _call(self, name: str, request: Awaitable[Any]) -> Any:
        try:
            return await request
        except BinanceAPIException as exc:
            raise ExchangeTransportError(
                f"{name} -> HTTP {exc.status_code}: {exc.message}",
                code=exc.code,
                status_code=exc.status_code,
            ) from exc
        except SDK_ERRORS as exc:
            raise ExchangeTransportError(f"{name} failed: {exc}") from exc

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            resp = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise ExchangeTransportError(f"GET {path} failed: {exc}") from exc

        try:
            data = loads(resp.content) if resp.content else {}
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            code = data.get("code") if isinstance(data, dict) else None
            msg = data.get("msg") if isinstance(data, dict) else None
            raise ExchangeTransportError(
                f"GET {path} -> HTTP {resp.status_code}: {msg or resp.text}",
                code=code,
                status_code=resp.status_code,
            )
        return data
