import asyncio
from decimal import Decimal

from config import StrategyConfig
from exchange.errors import TransportError
from exchange.models import OrderRole
from trading.order_manager import OrderManager


class FakeClient:
    def __init__(self, fail_placement=False, fail_cancel=False, raise_for=()):
        self.placed = []
        self.cancelled = []
        self.single_cancels = []
        self.fail_placement = fail_placement
        self.fail_cancel = fail_cancel
        self.raise_for = set(raise_for)
        self.cancel_all_calls = []

    async def place_order(self, payload):
        self.placed.append(payload)
        if payload.get("stop_order_type") in self.raise_for:
            raise TransportError("POST", "/v2/orders", status=400, body={"error": "rejected"})
        if self.fail_placement:
            return {"success": False, "error": {"code": "rejected"}}
        return {"success": True, "result": {"id": 1000 + len(self.placed), "state": "open"}}

    async def cancel_order(self, product_id, order_id):
        if self.fail_cancel:
            raise TransportError("DELETE", "/v2/orders", status=500)
        self.single_cancels.append((product_id, order_id))
        return {"success": True}

    async def batch_cancel_orders(self, product_id, order_ids):
        if self.fail_cancel:
            raise TransportError("DELETE", "/v2/orders/batch", status=500)
        self.cancelled.append((product_id, list(order_ids)))
        return {"success": True}

    async def cancel_all_orders(self, product_id):
        self.cancel_all_calls.append(product_id)
        if self.fail_cancel:
            raise TransportError("GET", "/v2/orders", status=502)


def make_manager(client=None, **overrides):
    params = dict(
        product_id=27,
        product_symbol="BTCUSD",
        take_profit_offset=Decimal("100"),
        stop_loss_offset=Decimal("50"),
    )
    params.update(overrides)
    return OrderManager(client or FakeClient(), StrategyConfig(**params))


def main_fill(side="buy", price="30000.5"):
    return {"id": 1, "state": "filled", "side": side, "avg_fill_price": price,
            "product_id": 27, "size": 2}


def test_register_order_tracks_role_and_client_id():
    manager = make_manager()

    managed = manager.register_order({"id": 1, "state": "open"}, "main", "cid-1")

    assert managed.role is OrderRole.MAIN
    assert manager.get(1).client_order_id == "cid-1"
    assert manager.get(1).state == "open"


def test_unknown_order_updates_are_ignored():
    client = FakeClient()
    manager = make_manager(client)

    asyncio.run(manager.handle_order_update({"id": 42, "state": "filled"}))

    assert client.placed == []


def test_main_fill_places_reduce_only_children():
    client = FakeClient()
    manager = make_manager(client)
    manager.register_order({"id": 1, "state": "open"}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill()))

    tp, sl = client.placed
    assert tp["side"] == "sell" and sl["side"] == "sell"
    assert tp["limit_price"] == "30100.5"
    assert sl["stop_price"] == "29950.5"
    assert tp["reduce_only"] is True and sl["reduce_only"] is True
    assert tp["size"] == 2

    tp_managed, sl_managed = manager.get(1001), manager.get(1002)
    assert tp_managed.role is OrderRole.TAKE_PROFIT
    assert sl_managed.role is OrderRole.STOP_LOSS
    assert tp_managed.linked_ids == {1002}
    assert manager.get(1).linked_ids == {1001, 1002}


def test_short_main_fill_mirrors_prices():
    client = FakeClient()
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill(side="sell", price="30000")))

    tp, sl = client.placed
    assert tp["side"] == "buy"
    assert tp["limit_price"] == "29900"
    assert sl["stop_price"] == "30050"


def test_repeated_fill_update_does_not_double_place():
    client = FakeClient()
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill()))
    asyncio.run(manager.handle_order_update(main_fill()))

    assert len(client.placed) == 2


def test_children_not_placed_when_disabled():
    client = FakeClient()
    manager = make_manager(client, attach_brackets_on_fill=False)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill()))

    assert client.placed == []


def test_failed_child_placement_is_logged_not_raised():
    client = FakeClient(fail_placement=True)
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill()))

    assert len(manager.managed_orders) == 1


def test_surviving_take_profit_is_cancelled_when_stop_loss_fails():
    client = FakeClient(raise_for={"stop_loss_order"})
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    asyncio.run(manager.handle_order_update(main_fill()))

    tp_id = 1001 if client.placed[0]["stop_order_type"] == "take_profit_order" else 1002
    assert client.single_cancels == [(27, tp_id)]
    assert [m.order_id for m in manager.managed_orders] == [1]
    assert manager.get(1).linked_ids == set()


def test_surviving_stop_loss_is_cancelled_when_take_profit_fails():
    client = FakeClient(raise_for={"take_profit_order"})
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    placed = asyncio.run(manager.place_bracket_orders(main_fill()))

    assert placed is False
    assert len(client.single_cancels) == 1
    assert manager.get(client.single_cancels[0][1]) is None


def test_orphan_cancel_failure_is_logged_not_raised():
    client = FakeClient(raise_for={"stop_loss_order"}, fail_cancel=True)
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    assert asyncio.run(manager.place_bracket_orders(main_fill())) is False
    assert client.single_cancels == []


def test_both_children_rejected_cancels_nothing():
    client = FakeClient(fail_placement=True)
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")

    assert asyncio.run(manager.place_bracket_orders(main_fill())) is False
    assert client.single_cancels == []


def test_child_fill_cancels_sibling_and_forgets_them():
    client = FakeClient()
    manager = make_manager(client)
    manager.register_order({"id": 1}, OrderRole.MAIN, "cid-1")
    asyncio.run(manager.handle_order_update(main_fill()))

    asyncio.run(manager.handle_order_update({"id": 1001, "state": "filled", "product_id": 27}))

    assert client.cancelled == [(27, [1002])]
    assert manager.get(1001) is None
    assert manager.get(1002) is None


def test_safe_cancel_all_swallows_errors():
    client = FakeClient(fail_cancel=True)
    manager = make_manager(client)

    assert asyncio.run(manager.safe_cancel_all(27)) is False
    assert client.cancel_all_calls == [27]


def test_safe_cancel_all_success():
    manager = make_manager()

    assert asyncio.run(manager.safe_cancel_all(27)) is True
