"""
Data models for the Delta BBO Bracket Bot.
Uses Decimal for all monetary/price calculations.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple


class Side(Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class OrderRole(Enum):
    MAIN = "main"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


LIMIT_ORDER = "limit_order"


@dataclass(frozen=True)
class OrderIntent:
    """One order request, serialized as the POST /v2/orders body."""
    product_id: int
    size: int
    side: Side
    limit_price: str
    client_order_id: str
    order_type: str = LIMIT_ORDER
    bracket_take_profit_price: Optional[str] = None
    bracket_stop_loss_price: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "product_id": self.product_id,
            "size": self.size,
            "side": self.side.value,
            "order_type": self.order_type,
            "limit_price": self.limit_price,
            "client_order_id": self.client_order_id,
        }
        if self.bracket_take_profit_price is not None:
            payload["bracket_take_profit_price"] = self.bracket_take_profit_price
        if self.bracket_stop_loss_price is not None:
            payload["bracket_stop_loss_price"] = self.bracket_stop_loss_price
        return payload


@dataclass
class OrderBookTop:
    """
    L1 book as [price, size] pairs, best first.
    Written by the exchange feed, read by the strategy.
    """
    bids: List[Tuple[str, str]] = field(default_factory=list)
    asks: List[Tuple[str, str]] = field(default_factory=list)
    ready: bool = False

    def update_l1(self, best_bid: Any, bid_qty: Any, best_ask: Any, ask_qty: Any):
        self.bids = [(best_bid, bid_qty)]
        self.asks = [(best_ask, ask_qty)]
        self.ready = True

    def reset(self):
        self.bids = []
        self.asks = []
        self.ready = False

    def levels(self, side: Side) -> List[Tuple[str, str]]:
        """Book side a taker on `side` trades against."""
        return self.asks if side is Side.BUY else self.bids


@dataclass
class ManagedOrder:
    """An exchange order handed to the order manager."""
    order_id: Any
    role: OrderRole
    client_order_id: Optional[str]
    state: Optional[str] = None
    linked_ids: Set[Any] = field(default_factory=set)
