"""
Delta BBO Bracket Bot: main orchestrator.
Ties all components together: exchange stream, signal listener, strategy, shutdown.
"""

from __future__ import annotations
import asyncio
import json
import os
import sys
import signal
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional
import logging

from dotenv import load_dotenv
import websockets

from config import BotConfig
from exchange.errors import ConstructionError
from exchange.models import OrderBookTop
from exchange.delta_rest import DeltaRestClient
from exchange.delta_ws import DeltaWSManager
from trading.bracket_strategy import BboBracketStrategy
from trading.order_manager import OrderManager
from trading.cooldown import CooldownTimer

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_dir: str = "data"):
    """Console + file logging, same format everywhere."""
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(os.path.join(log_dir, "bot.log")),
        ],
    )


class TradingBot:
    """Main bot orchestrator."""

    def __init__(
        self,
        config: BotConfig,
        client: Optional[DeltaRestClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._clock = clock
        self._running = False
        self._signal_server = None

        self.client = client or DeltaRestClient(
            api_key=config.exchange.api_key,
            api_secret=config.exchange.api_secret,
            base_url=config.exchange.base_url,
            timeout=config.exchange.http_timeout,
        )
        self.order_book = OrderBookTop()
        self.cooldown = CooldownTimer(config.strategy.cooldown_seconds)
        self.order_manager = OrderManager(self.client, config.strategy)
        self.strategy = BboBracketStrategy(
            client=self.client,
            config=config.strategy,
            order_book=self.order_book,
            registry=self.order_manager,
            cooldown=self.cooldown,
        )

        self.ws = DeltaWSManager(
            url=config.exchange.ws_url,
            api_key=config.exchange.api_key,
            api_secret=config.exchange.api_secret,
            product_symbol=config.strategy.product_symbol,
            reconnect_interval=config.exchange.reconnect_interval,
            ping_interval=config.exchange.ping_interval,
        )
        self.ws.on("l1_orderbook", self.on_l1_orderbook)
        self.ws.on("orders", self.on_orders)
        self.ws.on("positions", self.on_positions)
        self.ws.on_disconnect(self.on_ws_disconnect)

        self.positions_synced = False
        self.has_open_position = False
        self.price_move_start: Optional[float] = None

    @property
    def is_ready(self) -> bool:
        return self.ws.authenticated and self.order_book.ready and self.positions_synced

    # ==================== Price Signals ====================

    async def handle_signal(self, price: Decimal) -> bool:
        """
        Gate one price tick and pass it to the strategy.

        A move only trades if it reaches the threshold within
        `urgency_timeframe_ms` of leaving the reference price. A slower
        move re-bases the reference to the current price instead.
        """
        if not price.is_finite():
            logger.warning(f"[SIGNAL] Ignoring non-finite price {price}")
            return False

        if not self.is_ready:
            logger.debug("[SIGNAL] Ignoring signal: state not yet synchronized with the exchange.")
            return False

        state = self.strategy.state
        if state.price_at_last_trade is None:
            self.strategy.seed_price(price)
            self.price_move_start = None
            return False

        if self.has_open_position or state.is_order_in_progress or self.cooldown.is_active:
            return False

        price_difference = abs(price - state.price_at_last_trade)
        now = self._clock()
        if price_difference == 0:
            self.price_move_start = None
            return False
        if self.price_move_start is None:
            self.price_move_start = now
        if price_difference < self.config.strategy.price_threshold:
            return False

        elapsed_ms = (now - self.price_move_start) * 1000
        self.price_move_start = None
        window_ms = self.config.strategy.urgency_timeframe_ms
        if window_ms > 0 and elapsed_ms > window_ms:
            logger.info(
                f"[SIGNAL] Move of {price_difference} took {elapsed_ms:.0f}ms (> {window_ms}ms). "
                f"Re-basing reference to {price}"
            )
            self.strategy.seed_price(price)
            return False

        return await self.strategy.on_price_update(price, price_difference)

    async def handle_signal_message(self, raw: Any):
        """Signal listener message: {"type": "S", "p": "<price>"}."""
        try:
            data = json.loads(raw)
            if data.get("type") != "S" or not data.get("p"):
                return
            price = Decimal(str(data["p"]))
        except (ValueError, TypeError, AttributeError, InvalidOperation) as e:
            logger.warning(f"[SIGNAL] Bad signal message {str(raw)[:100]}: {e}")
            return
        if not price.is_finite() or price <= 0:
            logger.warning(f"[SIGNAL] Rejected signal price {data['p']!r}")
            return
        await self.handle_signal(price)

    async def _serve_signals(self, connection):
        logger.info("[SIGNAL] Listener connected")
        try:
            async for message in connection:
                try:
                    await self.handle_signal_message(message)
                except Exception as e:
                    logger.error(f"[SIGNAL] Error handling signal {str(message)[:100]}: {e}", exc_info=True)
        except websockets.ConnectionClosed:
            pass
        logger.warning("[SIGNAL] Listener disconnected")

    # ==================== Exchange Stream Handlers ====================

    async def on_l1_orderbook(self, message: Dict[str, Any]):
        if not self.order_book.ready:
            logger.info("[BOOK] L1 order book synchronized.")
        self.order_book.update_l1(
            message.get("best_bid"), message.get("bid_qty"),
            message.get("best_ask"), message.get("ask_qty"),
        )

    async def on_orders(self, message: Dict[str, Any]):
        for update in message.get("data") or []:
            await self.order_manager.handle_order_update(update)

    async def on_positions(self, message: Dict[str, Any]):
        if not self.positions_synced:
            logger.info("[POSITION] Initial position snapshot received. State is synchronized.")
            self.positions_synced = True

        if message.get("product_symbol") != self.config.strategy.product_symbol:
            return

        was_open = self.has_open_position
        self.has_open_position = Decimal(str(message.get("size") or 0)) != 0

        if not was_open and self.has_open_position:
            logger.warning(f"[POSITION] Position opened. Size={message.get('size')}")
        elif was_open and not self.has_open_position:
            logger.info(f"[POSITION] {self.config.strategy.product_symbol} position closed.")
            self.cooldown.start_cooldown()

    async def on_ws_disconnect(self):
        """Book and positions are stale until the new connection re-sends both."""
        logger.warning("[WS] Exchange stream lost. Waiting for fresh book and position snapshots.")
        self.order_book.reset()
        self.positions_synced = False
        self.price_move_start = None

    # ==================== Lifecycle ====================

    async def start(self):
        logger.info("=" * 60)
        logger.info("   DELTA BBO BRACKET BOT: STARTING")
        logger.info("=" * 60)
        logger.info(
            f"[BOOT] Strategy: {self.strategy.name}, "
            f"Product: {self.config.strategy.product_symbol} ({self.config.strategy.product_id})"
        )

        self._running = True
        self._signal_server = await websockets.serve(
            self._serve_signals, self.config.signal.host, self.config.signal.port,
        )
        logger.info(f"[BOOT] Signal server started on port {self.config.signal.port}")

        await self.ws.start()

    async def stop(self):
        """Graceful shutdown: cancel resting orders, close connections."""
        logger.info("[SHUTDOWN] Stopping bot...")
        self._running = False

        await self.ws.stop()
        if self._signal_server is not None:
            self._signal_server.close()
            await self._signal_server.wait_closed()
        await self.order_manager.safe_cancel_all(self.config.strategy.product_id)
        await self.client.close()

        logger.info("[SHUTDOWN] Complete.")


async def main():
    """Entry point."""
    load_dotenv()
    config = BotConfig.from_env()
    setup_logging(config.log_level)

    try:
        config.validate()
        bot = TradingBot(config)
    except ConstructionError as e:
        logger.critical(f"FATAL: {e}")
        sys.exit(1)

    # Graceful shutdown handler
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(bot.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await bot.start()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received in main loop.")
        await bot.stop()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await bot.stop()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
