"""
BBO Bracket Strategy. Crosses the top of book with one aggressive limit
order on each qualifying price move and hands the fill off to the order manager.

Side:   price up   → BUY against best ask + offset
        price down → SELL against best bid - offset
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, TYPE_CHECKING
from exchange.errors import NoL1DataError, UnexpectedResponseFormatError
from exchange.models import OrderBookTop, OrderIntent, OrderRole, Side
import logging

if TYPE_CHECKING:
    from exchange.delta_rest import DeltaRestClient
    from trading.order_manager import OrderManager
    from trading.cooldown import CooldownTimer
    from config import StrategyConfig

logger = logging.getLogger(__name__)


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class StrategyState:
    """Mutable runtime state. Only the strategy writes it."""
    is_order_in_progress: bool = False
    price_at_last_trade: Optional[Decimal] = None


class BboBracketStrategy:
    """
    At most one placement attempt in flight per instance.

    The in-progress flag is raised before the only await (the REST call)
    and lowered in `finally`, so no exit path leaves it set.
    """

    def __init__(
        self,
        client: "DeltaRestClient",
        config: "StrategyConfig",
        order_book: OrderBookTop,
        registry: "OrderManager",
        cooldown: "CooldownTimer",
        state: Optional[StrategyState] = None,
    ):
        self.client = client
        self.config = config
        self.order_book = order_book
        self.registry = registry
        self.cooldown = cooldown
        self.state = state or StrategyState()

    @property
    def name(self) -> str:
        return "BboBracketStrategy"

    def seed_price(self, price: Any) -> bool:
        """Set the reference price without trading (first tick, or a re-base after a slow move)."""
        price = _to_decimal(price)
        if not price.is_finite():
            logger.warning(f"[{self.name}] Refusing non-finite reference price {price}")
            return False
        self.state.price_at_last_trade = price
        logger.info(f"[{self.name}] Reference price set at {price}")
        return True

    async def on_price_update(self, current_price: Any, price_difference: Any = None) -> bool:
        """
        React to one price tick. Returns True only if an order was placed
        and handed to the order manager. Never raises for trading failures.
        """
        try:
            price = _to_decimal(current_price)
            difference = None if price_difference is None else _to_decimal(price_difference)
        except (InvalidOperation, ValueError, TypeError) as e:
            logger.warning(f"[{self.name}] Unreadable price tick ({current_price}, {price_difference}): {e}")
            return False
        if not price.is_finite() or (difference is not None and not difference.is_finite()):
            logger.warning(f"[{self.name}] Ignoring non-finite price tick ({current_price}, {price_difference})")
            return False
        if difference is not None and difference < self.config.price_threshold:
            return False

        if self.config.reentry_guard and self.state.is_order_in_progress:
            logger.info(f"[{self.name}] Order already in progress. Skipping tick @ {current_price}")
            return False

        self.state.is_order_in_progress = True
        try:
            return await self._execute(price)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to execute trade: {e}")
            return False
        finally:
            self.state.is_order_in_progress = False

    async def _execute(self, current_price: Decimal) -> bool:
        last = self.state.price_at_last_trade
        side = Side.BUY if last is not None and current_price > last else Side.SELL
        logger.info(f"[{self.name}] TRADE TRIGGER: {last} → {current_price}, side={side.value}")

        bbo_price = self._best_price(side)
        limit_price = self.aggressive_limit_price(side, bbo_price)
        logger.info(
            f"[{self.name}] Applying aggression offset: BBO price is {bbo_price}, "
            f"placing limit at {limit_price}"
        )

        intent = self._build_intent(side, limit_price)
        if intent is None:
            return False

        response = await self.client.place_order(intent)

        result = response.get("result") if isinstance(response, dict) else None
        if not isinstance(result, dict) or response.get("success") is False:
            raise UnexpectedResponseFormatError(response)

        logger.info(
            f"[{self.name}] Main order placement successful "
            f"(id={result.get('id')}, client_order_id={intent.client_order_id})"
        )
        self.registry.register_order(result, OrderRole.MAIN, intent.client_order_id)
        self.state.price_at_last_trade = current_price
        self.cooldown.start_cooldown()
        return True

    def _best_price(self, side: Side) -> Decimal:
        """Price of the top level on the side we trade against."""
        levels = self.order_book.levels(side)
        try:
            price = Decimal(str(levels[0][0]))
        except (IndexError, TypeError, KeyError, InvalidOperation):
            raise NoL1DataError(side.value)
        if not price.is_finite() or price <= 0:
            raise NoL1DataError(side.value)
        return price

    def aggressive_limit_price(self, side: Side, bbo_price: Decimal) -> Decimal:
        """BBO crossed by the aggression offset, quantized to the configured precision."""
        offset = _to_decimal(self.config.price_aggression_offset)
        price = bbo_price + offset if side is Side.BUY else bbo_price - offset
        return price.quantize(Decimal(1).scaleb(-self.config.price_precision))

    def _build_intent(self, side: Side, limit_price: Decimal) -> Optional[OrderIntent]:
        tp_price = sl_price = None
        tp_offset = self.config.take_profit_offset
        sl_offset = self.config.stop_loss_offset

        if tp_offset is not None:
            tp_offset = _to_decimal(tp_offset)
            tp_price = limit_price + tp_offset if side is Side.BUY else limit_price - tp_offset
        if sl_offset is not None:
            sl_offset = _to_decimal(sl_offset)
            sl_price = limit_price - sl_offset if side is Side.BUY else limit_price + sl_offset

        if (tp_price is not None and tp_price <= 0) or (sl_price is not None and sl_price <= 0):
            logger.error(
                f"[{self.name}] ABORTING: Invalid bracket price (<= 0). "
                f"limit={limit_price}, tp={tp_price}, sl={sl_price}"
            )
            return None

        return OrderIntent(
            product_id=self.config.product_id,
            size=self.config.order_size,
            side=side,
            limit_price=str(limit_price),
            client_order_id=str(uuid.uuid4()),
            bracket_take_profit_price=str(tp_price) if tp_price is not None else None,
            bracket_stop_loss_price=str(sl_price) if sl_price is not None else None,
        )
