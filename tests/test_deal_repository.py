"""
Tests for deal persistence.
"""
from decimal import Decimal

import pytest

from src.core.errors import DealConflictError, StaleOrMissingReference
from src.state.deal_repository import InMemoryDealRepository, JsonDealRepository
from src.state.models import Deal, DealStatus, Order, OrderSide, OrderStatus


def make_deal(strategy, status=DealStatus.CREATED, orders=2):
    deal = Deal(config=strategy, status=status)
    for seq in range(orders):
        deal.add_order(Order(
            deal_id=None,
            sequence=seq,
            side=OrderSide.BUY,
            price=Decimal("100") - seq,
            quantity=Decimal("0.5"),
            exit_price=Decimal("101.5"),
            total_quantity=Decimal("0.5") * (seq + 1),
        ))
    return deal


class TestInMemoryDealRepository:
    @pytest.mark.asyncio
    async def test_save_assigns_ids(self, strategy):
        repo = InMemoryDealRepository()
        deal = await repo.save_deal(make_deal(strategy))
        assert deal.id == 1
        assert all(o.deal_id == 1 for o in deal.orders)
        other = await repo.save_deal(make_deal(strategy))
        assert other.id == 2

    @pytest.mark.asyncio
    async def test_returns_copies(self, strategy):
        repo = InMemoryDealRepository()
        deal = await repo.save_deal(make_deal(strategy))
        deal.orders[0].status = OrderStatus.NEW

        stored = await repo.find_deal(deal.id)
        assert stored.orders[0].status == OrderStatus.CREATED

    @pytest.mark.asyncio
    async def test_save_order_updates_owner(self, strategy):
        repo = InMemoryDealRepository()
        deal = await repo.save_deal(make_deal(strategy))
        order = deal.orders[1]
        order.status = OrderStatus.NEW
        order.exchange_order_id = 55
        await repo.save_order(order)

        found = await repo.find_order(order.id)
        assert found.status == OrderStatus.NEW
        assert found.exchange_order_id == 55
        assert found.deal_id == deal.id

    @pytest.mark.asyncio
    async def test_save_order_appends_new_order(self, strategy):
        repo = InMemoryDealRepository()
        deal = await repo.save_deal(make_deal(strategy))
        sell = deal.add_order(Order(
            deal_id=None, sequence=1000, side=OrderSide.SELL, price=Decimal("101.5"), quantity=Decimal("0.5"),
        ))
        await repo.save_order(sell)

        stored = await repo.find_deal(deal.id)
        assert [o.sequence for o in stored.sell_orders()] == [1000]
        assert (await repo.find_order(sell.id)).side == OrderSide.SELL

    @pytest.mark.asyncio
    async def test_save_order_for_unknown_deal(self):
        repo = InMemoryDealRepository()
        order = Order(deal_id=42, sequence=0, side=OrderSide.BUY, price=Decimal("1"), quantity=Decimal("1"))
        with pytest.raises(StaleOrMissingReference):
            await repo.save_order(order)

    @pytest.mark.asyncio
    async def test_one_active_deal_per_pair(self, strategy):
        repo = InMemoryDealRepository()
        await repo.save_deal(make_deal(strategy, status=DealStatus.ACTIVE))
        with pytest.raises(DealConflictError):
            await repo.save_deal(make_deal(strategy, status=DealStatus.ACTIVE))

    @pytest.mark.asyncio
    async def test_resaving_active_deal_is_not_a_conflict(self, strategy):
        repo = InMemoryDealRepository()
        deal = await repo.save_deal(make_deal(strategy, status=DealStatus.ACTIVE))
        deal.profit = Decimal("0")
        await repo.save_deal(deal)

    @pytest.mark.asyncio
    async def test_find_active_deal(self, strategy):
        repo = InMemoryDealRepository()
        await repo.save_deal(make_deal(strategy, status=DealStatus.CLOSED))
        assert await repo.find_active_deal("BTCUSDT") is None
        active = await repo.save_deal(make_deal(strategy, status=DealStatus.ACTIVE))
        assert (await repo.find_active_deal("BTCUSDT")).id == active.id
        assert await repo.find_active_deal("ETHUSDT") is None

    @pytest.mark.asyncio
    async def test_list_deals(self, strategy):
        repo = InMemoryDealRepository()
        for _ in range(3):
            await repo.save_deal(make_deal(strategy, status=DealStatus.CLOSED))
        assert [d.id for d in await repo.list_deals("BTCUSDT")] == [1, 2, 3]
        assert await repo.list_deals("ETHUSDT") == []


class TestJsonDealRepository:
    @pytest.mark.asyncio
    async def test_survives_restart(self, strategy, tmp_path):
        repo = JsonDealRepository(str(tmp_path))
        deal = await repo.save_deal(make_deal(strategy, status=DealStatus.ACTIVE))
        order = deal.orders[0]
        order.status = OrderStatus.FILLED
        order.filled_price = Decimal("99.99")
        await repo.save_order(order)

        reopened = JsonDealRepository(str(tmp_path))
        stored = await reopened.find_active_deal("BTCUSDT")
        assert stored.id == deal.id
        assert stored.config == strategy
        assert stored.orders[0].status == OrderStatus.FILLED
        assert stored.orders[0].filled_price == Decimal("99.99")
        assert (await reopened.find_order(order.id)).deal_id == deal.id

        next_deal = await reopened.save_deal(make_deal(strategy, status=DealStatus.CLOSED))
        assert next_deal.id == deal.id + 1

    @pytest.mark.asyncio
    async def test_write_is_atomic_replace(self, strategy, tmp_path):
        repo = JsonDealRepository(str(tmp_path))
        await repo.save_deal(make_deal(strategy))
        assert (tmp_path / "deals.json").exists()
        assert not (tmp_path / "deals.tmp").exists()

    def test_corrupt_store_raises(self, tmp_path):
        (tmp_path / "deals.json").write_text("{not json")
        with pytest.raises(ValueError):
            JsonDealRepository(str(tmp_path))
