"""
Deal persistence.

DealRepository is the storage contract the engine depends on. Two
implementations:

- InMemoryDealRepository: dict-backed, used by tests and the ladder CLI
- JsonDealRepository: same semantics, persisted to one JSON document with
  temp-file + replace writes. File IO runs in the default executor and is
  serialized with an asyncio.Lock.

Repositories hand out copies. A caller that changes a Deal or Order must save
it; a caller that needs fresh state must re-read it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from src.core.errors import DealConflictError, StaleOrMissingReference
from src.core.json_utils import dumps, dumps_pretty, loads
from src.state.models import Deal, DealStatus, Order

log = logging.getLogger("dcabot")


class DealRepository(Protocol):
    async def save_deal(self, deal: Deal) -> Deal: ...

    async def save_order(self, order: Order) -> Order: ...

    async def find_active_deal(self, pair: str) -> Optional[Deal]: ...

    async def find_deal(self, deal_id: int) -> Optional[Deal]: ...

    async def find_order(self, order_id: str) -> Optional[Order]: ...

    async def list_deals(self, pair: Optional[str] = None) -> List[Deal]: ...


class InMemoryDealRepository:
    def __init__(self) -> None:
        self._deals: Dict[int, Dict[str, Any]] = {}
        self._order_index: Dict[str, int] = {}  # order id -> deal id
        self._next_id = 1

    async def save_deal(self, deal: Deal) -> Deal:
        """
        Persist the deal and all its orders.

        Assigns an id on first save and stamps it on the orders.

        Raises:
            DealConflictError: if another deal for the pair is already ACTIVE
        """
        if deal.status == DealStatus.ACTIVE:
            for other in self._deals.values():
                if (
                    other["status"] == DealStatus.ACTIVE.value
                    and other["config"]["pair"] == deal.pair
                    and other["id"] != deal.id
                ):
                    raise DealConflictError(
                        f"Deal {other['id']} is already ACTIVE for {deal.pair}"
                    )
        if deal.id is None:
            deal.id = self._next_id
            self._next_id += 1
        for order in deal.orders:
            order.deal_id = deal.id
            self._order_index[order.id] = deal.id
        self._deals[deal.id] = deal.to_dict()
        await self._persist()
        return deal

    async def save_order(self, order: Order) -> Order:
        """Upsert the order into its owning deal."""
        data = self._deals.get(order.deal_id) if order.deal_id is not None else None
        if data is None:
            raise StaleOrMissingReference(f"Order {order.id} references unknown deal {order.deal_id}")
        orders = data["orders"]
        payload = order.to_dict()
        for i, existing in enumerate(orders):
            if existing["id"] == order.id:
                orders[i] = payload
                break
        else:
            orders.append(payload)
        self._order_index[order.id] = order.deal_id
        await self._persist()
        return order

    async def find_active_deal(self, pair: str) -> Optional[Deal]:
        for data in self._deals.values():
            if data["status"] == DealStatus.ACTIVE.value and data["config"]["pair"] == pair:
                return Deal.from_dict(data)
        return None

    async def find_deal(self, deal_id: int) -> Optional[Deal]:
        data = self._deals.get(deal_id)
        return Deal.from_dict(data) if data is not None else None

    async def find_order(self, order_id: str) -> Optional[Order]:
        deal_id = self._order_index.get(order_id)
        if deal_id is None:
            return None
        for data in self._deals[deal_id]["orders"]:
            if data["id"] == order_id:
                return Order.from_dict(data)
        return None

    async def list_deals(self, pair: Optional[str] = None) -> List[Deal]:
        deals = [
            Deal.from_dict(d) for d in self._deals.values()
            if pair is None or d["config"]["pair"] == pair
        ]
        return sorted(deals, key=lambda d: d.id or 0)

    async def _persist(self) -> None:
        """Hook for durable subclasses."""

    def _snapshot(self) -> Dict[str, Any]:
        return {"next_id": self._next_id, "deals": list(self._deals.values())}

    def _restore(self, data: Dict[str, Any]) -> None:
        self._deals = {int(d["id"]): d for d in data.get("deals", [])}
        self._next_id = int(data.get("next_id", max(self._deals, default=0) + 1))
        self._order_index = {
            o["id"]: deal_id for deal_id, d in self._deals.items() for o in d.get("orders", [])
        }


class JsonDealRepository(InMemoryDealRepository):
    """Deal store persisted to <state_dir>/deals.json."""

    def __init__(self, state_dir: str, filename: str = "deals.json") -> None:
        super().__init__()
        self.path = Path(state_dir) / filename
        self.tmp = self.path.with_suffix(".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._restore(self._load())

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return loads(self.path.read_bytes())
        except Exception as exc:
            # a corrupt store must not be silently replaced by an empty one
            log.error(dumps({"event": "deal_store_load_error", "path": str(self.path), "error": str(exc)}))
            raise

    def _write(self, payload: bytes) -> None:
        self.tmp.write_bytes(payload)
        self.tmp.replace(self.path)

    async def _persist(self) -> None:
        payload = dumps_pretty(self._snapshot())
        async with self._lock:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write, payload)
            except OSError as exc:
                log.critical(dumps({"event": "deal_store_write_error", "path": str(self.path), "error": str(exc)}))
                raise
