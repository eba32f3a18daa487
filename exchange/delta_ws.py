"""
Delta Exchange WebSocket Manager.
Authenticated stream for orders, positions and the L1 order book.
Auto-reconnects on disconnect.
"""

from __future__ import annotations
import asyncio
import json
import time
from typing import Any, Callable, Coroutine, Dict, List, Optional
import websockets
import logging

from exchange.delta_rest import build_signature

logger = logging.getLogger(__name__)

# Type for async callback: receives the decoded message
WSCallback = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class DeltaWSManager:
    """Manages the private Delta WebSocket connection."""

    def __init__(
        self,
        url: str,
        api_key: str,
        api_secret: str,
        product_symbol: str,
        reconnect_interval: float = 5.0,
        ping_interval: int = 30,
    ):
        self.url = url
        self._api_key = api_key
        self._api_secret = api_secret
        self.product_symbol = product_symbol
        self.reconnect_interval = reconnect_interval
        self._ping_interval = ping_interval

        self._ws = None
        self._callbacks: Dict[str, List[WSCallback]] = {}
        self._disconnect_callbacks: List[Callable[[], Coroutine[Any, Any, None]]] = []
        self._running = False
        self.authenticated = False

    def on(self, message_type: str, callback: WSCallback):
        """Register a callback for a message type, e.g. "l1_orderbook"."""
        self._callbacks.setdefault(message_type, []).append(callback)

    def on_disconnect(self, callback: Callable[[], Coroutine[Any, Any, None]]):
        """Register a callback run every time the connection drops."""
        self._disconnect_callbacks.append(callback)

    def auth_message(self, timestamp: Optional[str] = None) -> Dict[str, Any]:
        timestamp = timestamp or str(int(time.time()))
        signature = build_signature(self._api_secret, "GET", timestamp, "/live")
        return {
            "type": "auth",
            "payload": {
                "api-key": self._api_key,
                "timestamp": timestamp,
                "signature": signature,
            },
        }

    def subscribe_message(self) -> Dict[str, Any]:
        return {
            "type": "subscribe",
            "payload": {
                "channels": [
                    {"name": "orders", "symbols": ["all"]},
                    {"name": "positions", "symbols": ["all"]},
                    {"name": "l1_orderbook", "symbols": [self.product_symbol]},
                ]
            },
        }

    async def start(self):
        """Run the connection with auto-reconnect until stop()."""
        self._running = True
        while self._running:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=self._ping_interval,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    logger.info(f"[WS] Connected to {self.url}")

                    await self._authenticate(ws)
                    await ws.send(json.dumps(self.subscribe_message()))
                    logger.info(f"[WS] Subscribed to orders, positions, l1_orderbook:{self.product_symbol}")

                    async for raw in ws:
                        await self.handle_message(raw)

            except websockets.ConnectionClosed as e:
                logger.warning(f"[WS] Connection closed: {e}. Reconnecting in {self.reconnect_interval}s...")
            except Exception as e:
                logger.error(f"[WS] Error: {e}. Reconnecting in {self.reconnect_interval}s...")

            await self.handle_disconnect()
            if self._running:
                await asyncio.sleep(self.reconnect_interval)

    async def stop(self):
        """Gracefully stop the connection."""
        self._running = False
        if self._ws:
            await self._ws.close()

    async def _authenticate(self, ws):
        await ws.send(json.dumps(self.auth_message()))

        resp = await asyncio.wait_for(ws.recv(), timeout=10)
        data = json.loads(resp)
        if data.get("type") == "success" and data.get("message") == "Authenticated":
            self.authenticated = True
            logger.info("[WS] Authenticated successfully")
        else:
            logger.error(f"[WS] Authentication failed: {data}")
            raise ConnectionError("WebSocket authentication failed")

    async def handle_disconnect(self):
        """Drop auth state and tell listeners that stream-derived state is stale."""
        self._ws = None
        self.authenticated = False
        for cb in self._disconnect_callbacks:
            try:
                await cb()
            except Exception as e:
                logger.error(f"[WS] Disconnect callback error: {e}", exc_info=True)

    async def handle_message(self, raw: str):
        """Route one raw message to callbacks registered for its type."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[WS] Invalid JSON: {raw[:100]}")
            return

        message_type = data.get("type", "")
        for cb in self._callbacks.get(message_type, []):
            try:
                await cb(data)
            except Exception as e:
                logger.error(f"[WS] Callback error for {message_type}: {e}", exc_info=True)
