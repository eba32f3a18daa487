"""
Order Manager. Tracks orders handed off by the strategy and runs the
bracket lifecycle around them.

main filled        → place reduce-only TP (limit) and SL (stop) children
TP or SL filled    → cancel the surviving sibling(s)
"""

from __future__ import annotations
import asyncio
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from exchange.models import ManagedOrder, OrderRole, Side, LIMIT_ORDER
import logging

if TYPE_CHECKING:
    from exchange.delta_rest import DeltaRestClient
    from config import StrategyConfig

logger = logging.getLogger(__name__)

FILLED = "filled"


class OrderManager:
    """Registry of managed orders keyed by exchange order id."""

    def __init__(self, client: "DeltaRestClient", config: "StrategyConfig"):
        self.client = client
        self.config = config
        self._orders: Dict[Any, ManagedOrder] = {}

    def register_order(self, order: Dict[str, Any], role: Any, client_order_id: Optional[str]) -> ManagedOrder:
        """Take ownership of an order placed elsewhere."""
        managed = ManagedOrder(
            order_id=order["id"],
            role=OrderRole(role),
            client_order_id=client_order_id,
            state=order.get("state"),
        )
        self._orders[managed.order_id] = managed
        logger.info(f"[ORDERS] Registered {managed.order_id} as '{managed.role.value}'")
        return managed

    def get(self, order_id: Any) -> Optional[ManagedOrder]:
        return self._orders.get(order_id)

    @property
    def managed_orders(self) -> List[ManagedOrder]:
        return list(self._orders.values())

    async def handle_order_update(self, update: Dict[str, Any]):
        """Apply one order update from the private feed."""
        managed = self._orders.get(update.get("id"))
        if managed is None:
            return

        previous = managed.state
        managed.state = update.get("state")
        just_filled = previous != FILLED and managed.state == FILLED
        if not just_filled:
            return

        if managed.role is OrderRole.MAIN:
            logger.info(f"[ORDERS] Main order {managed.order_id} filled")
            if self.config.attach_brackets_on_fill:
                await self.place_bracket_orders(update)
        else:
            logger.info(
                f"[ORDERS] {managed.role.value} {managed.order_id} filled. Position closed."
            )
            await self.cancel_sibling_orders(update)

    async def place_bracket_orders(self, main_order: Dict[str, Any]) -> bool:
        """Place TP/SL children for a filled main order."""
        tp_offset = self.config.take_profit_offset
        sl_offset = self.config.stop_loss_offset
        if tp_offset is None or sl_offset is None:
            logger.warning("[ORDERS] TP/SL offsets not configured. No children placed.")
            return False

        try:
            entry = Decimal(str(main_order.get("avg_fill_price") or main_order.get("limit_price")))
            side = Side(main_order["side"])
            if side is Side.BUY:
                tp_price, sl_price = entry + tp_offset, entry - sl_offset
            else:
                tp_price, sl_price = entry - tp_offset, entry + sl_offset

            exit_side = side.opposite.value
            product_id = main_order.get("product_id", self.config.product_id)
            size = main_order.get("size", self.config.order_size)
            tp_order = {
                "product_id": product_id, "size": size, "side": exit_side,
                "order_type": LIMIT_ORDER, "limit_price": str(tp_price),
                "reduce_only": True, "stop_order_type": "take_profit_order",
            }
            sl_order = {
                "product_id": product_id, "size": size, "side": exit_side,
                "order_type": "market_order", "stop_price": str(sl_price),
                "reduce_only": True, "stop_order_type": "stop_loss_order",
            }

            tp_resp, sl_resp = await asyncio.gather(
                self.client.place_order(tp_order),
                self.client.place_order(sl_order),
                return_exceptions=True,
            )
        except Exception as e:
            logger.error(f"[ORDERS] CRITICAL: Failed to place bracket orders: {e}")
            return False

        tp_result = self._placed_result(tp_resp)
        sl_result = self._placed_result(sl_resp)
        if tp_result is None or sl_result is None:
            logger.error(f"[ORDERS] CRITICAL: One or both bracket orders failed. TP: {tp_resp} | SL: {sl_resp}")
            # A lone child would close the position on one side only
            survivors = [r["id"] for r in (tp_result, sl_result) if r is not None]
            await self._cancel_orphans(product_id, survivors)
            return False

        tp = self.register_order(tp_result, OrderRole.TAKE_PROFIT, str(uuid.uuid4()))
        sl = self.register_order(sl_result, OrderRole.STOP_LOSS, str(uuid.uuid4()))
        tp.linked_ids.add(sl.order_id)
        sl.linked_ids.add(tp.order_id)
        main = self._orders.get(main_order.get("id"))
        if main is not None:
            main.linked_ids.update({tp.order_id, sl.order_id})

        logger.info(f"[ORDERS] Placed TP ({tp.order_id}) @ {tp_price} and SL ({sl.order_id}) @ {sl_price}")
        return True

    @staticmethod
    def _placed_result(resp: Any) -> Optional[Dict[str, Any]]:
        """Order body from a place_order response, or None for an exception or rejection."""
        if not isinstance(resp, dict):
            return None
        result = resp.get("result")
        if not isinstance(result, dict) or "id" not in result:
            return None
        return result

    async def _cancel_orphans(self, product_id: int, order_ids: List[Any]):
        for oid in order_ids:
            try:
                await self.client.cancel_order(product_id, oid)
                logger.warning(f"[ORDERS] Cancelled orphaned bracket order {oid}")
            except Exception as e:
                logger.critical(f"[ORDERS] Could not cancel orphaned bracket order {oid}, manual check advised: {e}")

    async def cancel_sibling_orders(self, filled_order: Dict[str, Any]) -> bool:
        managed = self._orders.get(filled_order.get("id"))
        if managed is None or not managed.linked_ids:
            return False

        ids = sorted(managed.linked_ids, key=str)
        product_id = filled_order.get("product_id", self.config.product_id)
        logger.info(f"[ORDERS] Cancelling sibling order(s): {ids}")
        try:
            await self.client.batch_cancel_orders(product_id, ids)
        except Exception as e:
            logger.error(f"[ORDERS] Failed to cancel sibling orders: {e}")
            return False

        for oid in ids:
            self._orders.pop(oid, None)
        self._orders.pop(managed.order_id, None)
        return True

    async def safe_cancel_all(self, product_id: int) -> bool:
        """Cancel everything for a product. Logs instead of raising."""
        try:
            logger.info(f"[ORDERS] Cancelling all orders for product {product_id}")
            await self.client.cancel_all_orders(product_id)
        except Exception as e:
            logger.error(f"[ORDERS] cancel_all_orders for product {product_id} failed, manual check advised: {e}")
            return False
        logger.info(f"[ORDERS] All open orders for product {product_id} cancelled")
        return True
