"""Shared fixtures: market records, readings and mocked chain clients."""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from localoracle.config import Config
from localoracle.models import (
    AgentPortfolioSnapshot,
    ForecastReading,
    Market,
    TxStatus,
    WeatherReading,
    WriteResult,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
NOW_TS = int(NOW.timestamp())

MARKET_ADDRESS = "0x1111111111111111111111111111111111111111"
AGENT_ADDRESS = "0x2222222222222222222222222222222222222222"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset the module-level scheduler before and after each test."""
    _do_reset()
    yield
    _do_reset()


def _do_reset():
    import localoracle.scheduler as scheduler_mod
    if scheduler_mod._scheduler_instance is not None and scheduler_mod._scheduler_instance.is_running:
        scheduler_mod._scheduler_instance.stop(wait=False)
    scheduler_mod._scheduler_instance = None


def make_market(
    market_id: int = 0,
    end_time: int = NOW_TS - 60,
    resolved: bool = False,
    yes: int = 0,
    no: int = 0,
    question: str = "Will it rain in Lisbon today?",
) -> Market:
    return Market(
        id=market_id,
        creator="0x3333333333333333333333333333333333333333",
        question=question,
        lat=38_722_252,
        lng=-9_139_337,
        end_time=end_time,
        resolved=resolved,
        outcome=False,
        total_yes_stake=yes,
        total_no_stake=no,
    )


def owm_reading(code: int, description: str = "light rain") -> WeatherReading:
    return WeatherReading("OpenWeatherMap", code, description, 200 <= code < 700)


def weatherapi_reading(code: int, rain: bool, description: str = "Sunny") -> WeatherReading:
    return WeatherReading("WeatherAPI", code, description, rain)


def forecast(source: str, probability: int) -> ForecastReading:
    return ForecastReading(source=source, rain_probability=probability, description="scattered clouds")


@pytest.fixture
def config():
    return Config(
        private_key="0x" + "11" * 32,
        prediction_market_address=MARKET_ADDRESS,
        market_agent_address=AGENT_ADDRESS,
        openweather_api_key="owm-key",
        weatherapi_key="wa-key",
        anthropic_api_key="anthropic-key",
        redundancy=1,
    )


@pytest.fixture
def reader():
    """ChainReader stand-in with no markets and an empty portfolio."""
    mock = MagicMock()
    mock.market_count.return_value = 0
    mock.get_market.return_value = None
    mock.get_agent_stats.return_value = AgentPortfolioSnapshot()
    mock.has_position.return_value = False
    return mock


@pytest.fixture
def writer():
    """ChainWriter stand-in whose writes always succeed."""
    mock = MagicMock()
    mock.resolve_market.return_value = WriteResult(status=TxStatus.SUCCESS, tx_hash="0xabc")
    mock.place_bet.return_value = WriteResult(status=TxStatus.SUCCESS, tx_hash="0xdef")
    return mock


def load_markets(reader, markets):
    """Point a mocked reader at a list of markets indexed by id."""
    by_id = {m.id: m for m in markets}
    reader.market_count.return_value = max(by_id) + 1 if by_id else 0
    reader.get_market.side_effect = lambda market_id: by_id.get(market_id)
