"""
Delta Exchange v2 REST API Client.
Handles request signing, dispatch and the order endpoints the bot needs.
"""

from __future__ import annotations
import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Iterable, Mapping, Optional, Union
from urllib.parse import urlencode
import aiohttp
from yarl import URL
import logging

from exchange.errors import ConstructionError, TransportError
from exchange.models import OrderIntent

logger = logging.getLogger(__name__)

JSON = Dict[str, Any]


def encode_query(query: Optional[Mapping[str, Any]]) -> str:
    """URL-encode query params in insertion order. Commas stay literal."""
    if not query:
        return ""
    return urlencode(list(query.items())).replace("%2C", ",")


def encode_body(data: Optional[Any]) -> str:
    """Exact JSON text that is both signed and sent."""
    if data is None:
        return ""
    return json.dumps(data, separators=(",", ":"))


def build_signature(
    secret: str,
    method: str,
    timestamp: str,
    path: str,
    query_string: str = "",
    body: str = "",
) -> str:
    """Hex HMAC-SHA256 over METHOD + timestamp + path [+ ?query] [+ body]."""
    payload = method.upper() + timestamp + path
    if query_string:
        payload += f"?{query_string}"
    payload += body
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class DeltaRestClient:
    """Async Delta Exchange REST wrapper. No retries: fail fast, caller decides."""

    def __init__(self, api_key: str, api_secret: str, base_url: str, timeout: float = 10.0):
        if not api_key or not api_secret or not base_url:
            raise ConstructionError("DeltaRestClient requires api_key, api_secret and base_url")
        self._api_key = api_key
        self._api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def __repr__(self) -> str:
        return f"DeltaRestClient(base_url={self.base_url!r})"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    "User-Agent": "python-delta-bot",
                    "Accept": "application/json",
                },
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def _auth_headers(self, timestamp: str, signature: str, has_body: bool) -> Dict[str, str]:
        headers = {
            "api-key": self._api_key,
            "timestamp": timestamp,
            "signature": signature,
        }
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Any] = None,
        query: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Sign and send one request. Returns the decoded JSON body."""
        session = await self._get_session()
        timestamp = str(int(time.time()))
        query_string = encode_query(query)
        body = encode_body(data)
        signature = build_signature(self._api_secret, method, timestamp, path, query_string, body)
        headers = self._auth_headers(timestamp, signature, has_body=bool(body))

        url = f"{self.base_url}{path}"
        if query_string:
            url = f"{url}?{query_string}"

        try:
            async with session.request(
                method.upper(),
                URL(url, encoded=True),
                headers=headers,
                data=body or None,
            ) as resp:
                text = await resp.text()
                try:
                    payload = json.loads(text) if text else None
                except ValueError:
                    payload = text

                if not 200 <= resp.status < 300:
                    logger.error(
                        f"[REST] {method} {path} FAILED (status={resp.status}): {payload}"
                    )
                    raise TransportError(method, path, status=resp.status, body=payload)
                return payload

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[REST] {method} {path} FAILED (status=None): {e!r}")
            raise TransportError(method, path, reason=repr(e)) from e

    # ==================== Order Endpoints ====================

    async def place_order(self, intent: Union[OrderIntent, JSON]) -> JSON:
        """Place an order. The exchange validates the fields."""
        if intent is None:
            raise ValueError("place_order requires an order")
        payload = intent.to_payload() if isinstance(intent, OrderIntent) else intent
        logger.info(
            f"[ORDER] Placing: {payload.get('side')} {payload.get('size')} "
            f"@ {payload.get('limit_price', 'Market')} ({payload.get('order_type')})"
        )
        return await self._request("POST", "/v2/orders", payload)

    async def cancel_order(self, product_id: int, order_id: Any) -> JSON:
        """Cancel a single order."""
        payload = {"product_id": product_id, "id": order_id}
        logger.info(f"[ORDER] Cancelling: {order_id} on product {product_id}")
        return await self._request("DELETE", "/v2/orders", payload)

    async def batch_cancel_orders(self, product_id: int, order_ids: Optional[Iterable[Any]]) -> JSON:
        """Cancel several orders in one call. Nothing to cancel is not an error."""
        ids = list(order_ids or [])
        if not ids:
            logger.info(f"[ORDER] Batch cancel on product {product_id}: nothing to do")
            return {"success": True, "result": "nothing-to-do"}

        payload = {"product_id": product_id, "orders": [{"id": oid} for oid in ids]}
        logger.info(f"[ORDER] Batch cancelling {len(ids)} orders on product {product_id}")
        return await self._request("DELETE", "/v2/orders/batch", payload)

    async def cancel_all_orders(self, product_id: int) -> Optional[JSON]:
        """Cancel every open/pending order for a product."""
        response = await self.get_live_orders(product_id)
        if not isinstance(response, dict) or not isinstance(response.get("result"), list):
            logger.warning(f"[ORDER] Unexpected live orders response: {response}")
            return None

        ids = [o["id"] for o in response["result"] if "id" in o]
        if not ids:
            return None
        if len(ids) == 1:
            return await self.cancel_order(product_id, ids[0])
        return await self.batch_cancel_orders(product_id, ids)

    # ==================== Account Endpoints ====================

    async def get_live_orders(self, product_id: int, states: str = "open,pending") -> JSON:
        """Get open/pending orders for a product."""
        query = {"product_id": product_id, "states": states}
        return await self._request("GET", "/v2/orders", query=query)

    async def get_positions(self) -> JSON:
        """Get margined positions."""
        return await self._request("GET", "/v2/positions/margined")

    async def get_wallet_balance(self) -> JSON:
        """Get wallet balances. Also used as a keep-alive."""
        return await self._request("GET", "/v2/wallet/balances")
