"""
Cooldown Timer. Suppresses new entries for a fixed window after a trade.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CooldownTimer:
    """Time-based trade suppression. Checked by the caller, armed by the strategy."""

    def __init__(self, seconds: int, clock: Callable[[], datetime] = utc_now):
        self.seconds = seconds
        self._clock = clock
        self.cooldown_until: Optional[datetime] = None

    def start_cooldown(self):
        self.cooldown_until = self._clock() + timedelta(seconds=self.seconds)
        logger.info(f"[COOLDOWN] {self.seconds}s started")

    @property
    def is_active(self) -> bool:
        return self.cooldown_until is not None and self._clock() < self.cooldown_until

    def remaining_seconds(self) -> float:
        if not self.is_active:
            return 0.0
        return (self.cooldown_until - self._clock()).total_seconds()

    def reset(self):
        self.cooldown_until = None
