"""Tests for environment-driven configuration."""
from pathlib import Path

import pytest

from localoracle.config import Config, WORKFLOW_SETTLEMENT, WORKFLOW_TRADING


KEY = "0x" + "ab" * 32
MARKET = "0x1111111111111111111111111111111111111111"
AGENT = "0x2222222222222222222222222222222222222222"


class TestFromEnv:

    def test_defaults(self, monkeypatch):
        for name in ("RPC_URL", "CHAIN_ID", "GAS_LIMIT", "REDUNDANCY", "DB_PATH", "LOG_FILE",
                     "SETTLEMENT_SCHEDULE", "TRADING_SCHEDULE", "CLAUDE_MODEL"):
            monkeypatch.delenv(name, raising=False)

        config = Config.from_env()

        assert config.chain_id == 11155111
        assert config.gas_limit == 500_000
        assert config.redundancy == 3
        assert config.claude_max_tokens == 10
        assert config.settlement_schedule == "*/30 * * * *"
        assert config.trading_schedule == "0 * * * *"
        assert config.db_path == Path("data/localoracle.db")
        assert config.log_file is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("ORACLE_PRIVATE_KEY", KEY)
        monkeypatch.setenv("PREDICTION_MARKET_ADDRESS", MARKET)
        monkeypatch.setenv("GAS_LIMIT", "750000")
        monkeypatch.setenv("REDUNDANCY", "5")
        monkeypatch.setenv("LOG_FILE", "logs/oracle.log")

        config = Config.from_env()

        assert config.private_key == KEY
        assert config.prediction_market_address == MARKET
        assert config.gas_limit == 750_000
        assert config.redundancy == 5
        assert config.log_file == Path("logs/oracle.log")


class TestValidate:

    def test_settlement_does_not_need_agent(self):
        config = Config(private_key=KEY, prediction_market_address=MARKET)

        is_valid, errors = config.validate(WORKFLOW_SETTLEMENT)

        assert is_valid
        assert errors == []

    def test_trading_needs_agent(self):
        config = Config(private_key=KEY, prediction_market_address=MARKET)

        is_valid, errors = config.validate(WORKFLOW_TRADING)

        assert not is_valid
        assert any("MARKET_AGENT_ADDRESS" in e for e in errors)

    def test_key_without_prefix_is_accepted(self):
        config = Config(private_key="ab" * 32, prediction_market_address=MARKET,
                        market_agent_address=AGENT)

        assert config.validate(WORKFLOW_TRADING) == (True, [])

    @pytest.mark.parametrize("field,value,env_name", [
        ("private_key", "0xkey", "ORACLE_PRIVATE_KEY"),
        ("private_key", "0x" + "ab" * 31, "ORACLE_PRIVATE_KEY"),
        ("prediction_market_address", "0xmarket", "PREDICTION_MARKET_ADDRESS"),
        ("prediction_market_address", "0x1234", "PREDICTION_MARKET_ADDRESS"),
        ("market_agent_address", "not-an-address", "MARKET_AGENT_ADDRESS"),
    ])
    def test_malformed_values_are_rejected(self, field, value, env_name):
        values = {"private_key": KEY, "prediction_market_address": MARKET, "market_agent_address": AGENT}
        values[field] = value
        config = Config(**values)

        is_valid, errors = config.validate(WORKFLOW_TRADING)

        assert not is_valid
        assert len(errors) == 1
        assert env_name in errors[0]

    def test_missing_key_and_bad_values(self):
        config = Config(prediction_market_address=MARKET, gas_limit=0, redundancy=0,
                        settlement_schedule="*/10 * *")

        is_valid, errors = config.validate()

        assert not is_valid
        assert len(errors) == 4

    def test_ensure_directories(self, tmp_path):
        config = Config(db_path=tmp_path / "db" / "x.db", log_file=tmp_path / "logs" / "x.log")

        config.ensure_directories()

        assert (tmp_path / "db").is_dir()
        assert (tmp_path / "logs").is_dir()
