"""
Error taxonomy shared by the exchange client and the trading components.
"""

from __future__ import annotations
from typing import Any, Optional


class DeltaBotError(Exception):
    """Base class for every error raised by this bot."""


class ConstructionError(DeltaBotError):
    """Missing credentials or configuration; the component cannot be built."""


class TransportError(DeltaBotError):
    """A signed call failed on the network or came back non-2xx."""

    def __init__(
        self,
        method: str,
        path: str,
        status: Optional[int] = None,
        body: Any = None,
        reason: str = "",
    ):
        self.method = method
        self.path = path
        self.status = status
        self.body = body
        self.reason = reason
        detail = body if body is not None else reason
        super().__init__(f"{method} {path} failed (status={status}): {detail}")


class NoL1DataError(DeltaBotError):
    """The order book side needed for pricing has no usable top level."""

    def __init__(self, side: str):
        self.side = side
        super().__init__(f"No L1 data for side '{side}'.")


class UnexpectedResponseFormatError(DeltaBotError):
    """A 2xx response without the expected `result` payload."""

    def __init__(self, response: Any):
        self.response = response
        super().__init__(f"API call returned unexpected format: {response!r}")
