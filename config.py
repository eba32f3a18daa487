"""
Delta BBO Bracket Bot: configuration.
All tunable parameters in one place.
"""

import os
from decimal import Decimal
from dataclasses import dataclass, field
from typing import List, Optional

from exchange.errors import ConstructionError


def _env_decimal(name: str) -> Optional[Decimal]:
    raw = os.getenv(name, "")
    if raw == "":
        return None
    return Decimal(raw)


@dataclass
class ExchangeConfig:
    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.india.delta.exchange"
    ws_url: str = "wss://socket.india.delta.exchange"
    http_timeout: float = 10.0          # Seconds, connect + response
    reconnect_interval: float = 5.0     # Seconds between WS reconnects
    ping_interval: int = 30             # Seconds


@dataclass
class StrategyConfig:
    product_id: int = 0
    product_symbol: str = ""
    order_size: int = 1
    price_aggression_offset: Decimal = Decimal("0.5")   # Crosses the BBO by this much
    price_threshold: Decimal = Decimal("2.0")           # Min move that triggers a trade
    price_precision: int = 4                            # Decimal places sent as limit_price
    take_profit_offset: Optional[Decimal] = None        # None = no bracket TP on the main order
    stop_loss_offset: Optional[Decimal] = None          # None = no bracket SL on the main order
    cooldown_seconds: int = 30
    urgency_timeframe_ms: int = 1000    # Max time for a move to reach the threshold, 0 = no limit
    reentry_guard: bool = True          # Skip a price update while an order is in flight
    attach_brackets_on_fill: bool = True


@dataclass
class SignalConfig:
    host: str = "0.0.0.0"
    port: int = 8082


@dataclass
class BotConfig:
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    signal: SignalConfig = field(default_factory=SignalConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.exchange.api_key = os.getenv("DELTA_API_KEY", "")
        config.exchange.api_secret = os.getenv("DELTA_API_SECRET", "")
        config.exchange.base_url = os.getenv("DELTA_BASE_URL", config.exchange.base_url)
        config.exchange.ws_url = os.getenv("DELTA_WEBSOCKET_URL", config.exchange.ws_url)
        config.exchange.http_timeout = float(os.getenv("HTTP_TIMEOUT", "10"))
        config.exchange.reconnect_interval = float(os.getenv("RECONNECT_INTERVAL", "5"))

        config.strategy.product_id = int(os.getenv("DELTA_PRODUCT_ID", "0") or 0)
        config.strategy.product_symbol = os.getenv("DELTA_PRODUCT_SYMBOL", "")
        config.strategy.order_size = int(os.getenv("ORDER_SIZE", "1"))
        config.strategy.price_aggression_offset = Decimal(os.getenv("PRICE_AGGRESSION_OFFSET", "0.5"))
        config.strategy.price_threshold = Decimal(os.getenv("PRICE_THRESHOLD", "2.0"))
        config.strategy.price_precision = int(os.getenv("PRICE_PRECISION", "4"))
        config.strategy.take_profit_offset = _env_decimal("TAKE_PROFIT_OFFSET")
        config.strategy.stop_loss_offset = _env_decimal("STOP_LOSS_OFFSET")
        config.strategy.cooldown_seconds = int(os.getenv("COOLDOWN_SECONDS", "30"))
        config.strategy.urgency_timeframe_ms = int(os.getenv("URGENCY_TIMEFRAME_MS", "1000"))
        config.strategy.reentry_guard = os.getenv("REENTRY_GUARD", "true").lower() == "true"

        config.signal.port = int(os.getenv("INTERNAL_WS_PORT", "8082"))
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        return config

    def missing_fields(self) -> List[str]:
        required = {
            "api_key": self.exchange.api_key,
            "api_secret": self.exchange.api_secret,
            "base_url": self.exchange.base_url,
            "product_id": self.strategy.product_id,
            "product_symbol": self.strategy.product_symbol,
        }
        return [name for name, value in required.items() if not value]

    def validate(self) -> "BotConfig":
        """Raise ConstructionError if anything required to trade is missing."""
        missing = self.missing_fields()
        if missing:
            raise ConstructionError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        return self
