from decimal import Decimal

import pytest

from config import BotConfig
from exchange.errors import ConstructionError


ENV = {
    "DELTA_API_KEY": "key",
    "DELTA_API_SECRET": "secret",
    "DELTA_PRODUCT_ID": "27",
    "DELTA_PRODUCT_SYMBOL": "BTCUSD",
    "PRICE_AGGRESSION_OFFSET": "0.1",
    "TAKE_PROFIT_OFFSET": "100",
    "COOLDOWN_SECONDS": "45",
    "REENTRY_GUARD": "false",
    "URGENCY_TIMEFRAME_MS": "250",
}


def test_from_env_reads_overrides(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("STOP_LOSS_OFFSET", raising=False)

    config = BotConfig.from_env()

    assert config.exchange.api_key == "key"
    assert config.strategy.product_id == 27
    assert config.strategy.price_aggression_offset == Decimal("0.1")
    assert config.strategy.take_profit_offset == Decimal("100")
    assert config.strategy.stop_loss_offset is None
    assert config.strategy.cooldown_seconds == 45
    assert config.strategy.reentry_guard is False
    assert config.strategy.urgency_timeframe_ms == 250
    assert config.exchange.http_timeout == 10.0
    assert config.validate() is config


def test_validate_lists_missing_fields():
    config = BotConfig()

    with pytest.raises(ConstructionError) as exc_info:
        config.validate()

    message = str(exc_info.value)
    for name in ("api_key", "api_secret", "product_id", "product_symbol"):
        assert name in message
    assert "base_url" not in message
