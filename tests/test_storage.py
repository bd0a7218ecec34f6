"""Tests for the SQLite decision journal."""
import json

import pytest

from conftest import NOW, forecast, owm_reading, weatherapi_reading
from localoracle.models import (
    ConsensusMethod,
    CycleSummary,
    ForecastReading,
    SettlementDecision,
    TradeDecision,
    TxStatus,
    WriteResult,
)
from localoracle.storage import Storage


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path / "journal" / "localoracle.db")


class TestStorage:

    def test_creates_database(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "journal.db"

        Storage(db_path)

        assert db_path.exists()

    def test_settlement_roundtrip(self, storage):
        decision = SettlementDecision(
            market_id=3, outcome=True, method=ConsensusMethod.AI_ADJUDICATED, detail="ai verdict"
        )
        result = WriteResult(status=TxStatus.SUCCESS, tx_hash="0xabc")

        assert storage.save_settlement(decision, owm_reading(500), weatherapi_reading(1000, False), result)

        rows = storage.recent_settlements()
        assert len(rows) == 1
        assert rows[0]["market_id"] == 3
        assert rows[0]["outcome"] == 1
        assert rows[0]["method"] == "ai-adjudicated"
        assert rows[0]["tx_status"] == "SUCCESS"
        assert json.loads(rows[0]["reading_a"])["condition_code"] == 500

    def test_trade_roundtrip(self, storage):
        decision = TradeDecision(
            market_id=1,
            side=True,
            amount=15_000_000,
            justification="OWM: 60% | WeatherAPI: N/A | Combined: 60% vs market 30% -> +30 pp edge",
            edge=30,
            combined_forecast=60,
            market_yes_pct=30,
        )
        result = WriteResult(status=TxStatus.REVERTED, tx_hash="0xdef", error_message="Bet too large")

        storage.save_trade(
            decision, forecast("OWM-Forecast", 60), ForecastReading.unavailable("WeatherAPI-Forecast", "x"), result
        )

        row = storage.recent_trades()[0]
        assert row["amount"] == 15_000_000
        assert row["edge"] == 30
        assert row["tx_status"] == "REVERTED"
        assert row["error_message"] == "Bet too large"

    def test_cycles_newest_first_and_filtered(self, storage):
        storage.save_cycle(CycleSummary(workflow="settlement", scheduled_time=NOW, status="no-markets"))
        storage.save_cycle(CycleSummary(workflow="trading", scheduled_time=NOW, scanned=2, status="analysed:2"))
        storage.save_cycle(CycleSummary(workflow="settlement", scheduled_time=NOW, scanned=1, decided=1,
                                        status="settled:1/1"))

        assert [r["status"] for r in storage.recent_cycles()] == ["settled:1/1", "analysed:2", "no-markets"]
        assert [r["status"] for r in storage.recent_cycles(workflow="trading")] == ["analysed:2"]
        assert len(storage.recent_cycles(limit=1)) == 1
        assert storage.recent_cycles()[0]["scheduled_time"] == NOW.isoformat()
