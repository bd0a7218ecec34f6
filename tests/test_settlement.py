"""Tests for the settlement decision table and workflow."""
from unittest.mock import MagicMock

import pytest

from conftest import NOW, NOW_TS, MARKET_ADDRESS, load_markets, make_market, owm_reading, weatherapi_reading
from localoracle.arbiter import ArbitrationResult
from localoracle.consensus import RedundantExecutor
from localoracle.models import ConsensusMethod, TxStatus, WeatherReading, WriteResult
from localoracle.settlement import (
    ConsensusKind,
    SettlementWorkflow,
    decide_settlement,
    evaluate_readings,
)

UNAVAILABLE_A = WeatherReading.unavailable("OpenWeatherMap", "timeout")
UNAVAILABLE_B = WeatherReading.unavailable("WeatherAPI", "timeout")


class TestEvaluateReadings:
    """The four rows of the decision table."""

    def test_both_unavailable_defers(self):
        assert evaluate_readings(UNAVAILABLE_A, UNAVAILABLE_B).kind == ConsensusKind.DEFERRED

    def test_only_a_available(self):
        consensus = evaluate_readings(owm_reading(500), UNAVAILABLE_B)

        assert consensus.kind == ConsensusKind.SINGLE_SOURCE
        assert consensus.outcome is True
        assert consensus.source == "OpenWeatherMap"

    def test_only_b_available(self):
        consensus = evaluate_readings(UNAVAILABLE_A, weatherapi_reading(1000, False))

        assert consensus.kind == ConsensusKind.SINGLE_SOURCE
        assert consensus.outcome is False
        assert consensus.source == "WeatherAPI"

    @pytest.mark.parametrize("a,b,outcome", [
        (owm_reading(500), weatherapi_reading(1183, True), True),
        (owm_reading(800), weatherapi_reading(1000, False), False),
    ])
    def test_agreement_is_unanimous(self, a, b, outcome):
        consensus = evaluate_readings(a, b)

        assert consensus.kind == ConsensusKind.UNANIMOUS
        assert consensus.outcome is outcome

    def test_conflict_needs_arbitration(self):
        consensus = evaluate_readings(owm_reading(500), weatherapi_reading(1000, False))

        assert consensus.kind == ConsensusKind.NEEDS_ARBITRATION
        assert consensus.outcome is None


class TestDecideSettlement:

    def test_unanimous_never_calls_arbiter(self):
        arbiter = MagicMock()

        decision = decide_settlement(make_market(3), owm_reading(800), weatherapi_reading(1000, False), arbiter)

        assert decision.market_id == 3
        assert decision.outcome is False
        assert decision.method == ConsensusMethod.UNANIMOUS
        arbiter.arbitrate.assert_not_called()

    def test_single_source(self):
        arbiter = MagicMock()

        decision = decide_settlement(make_market(), UNAVAILABLE_A, weatherapi_reading(1183, True), arbiter)

        assert decision.outcome is True
        assert decision.method == ConsensusMethod.SINGLE_SOURCE
        assert decision.detail == "WeatherAPI only"
        arbiter.arbitrate.assert_not_called()

    def test_conflict_calls_arbiter_once(self):
        arbiter = MagicMock()
        arbiter.arbitrate.return_value = ArbitrationResult(outcome=False)
        market = make_market(1)
        a, b = owm_reading(500), weatherapi_reading(1000, False)

        decision = decide_settlement(market, a, b, arbiter)

        arbiter.arbitrate.assert_called_once_with(market, a, b)
        assert decision.method == ConsensusMethod.AI_ADJUDICATED
        assert decision.outcome is False
        assert decision.detail == "ai verdict"

    def test_arbiter_fallback_recorded(self):
        arbiter = MagicMock()
        arbiter.arbitrate.return_value = ArbitrationResult(outcome=True, fallback_used=True, reason="timeout")

        decision = decide_settlement(make_market(), owm_reading(500), weatherapi_reading(1000, False), arbiter)

        assert decision.outcome is True
        assert decision.method == ConsensusMethod.AI_ADJUDICATED
        assert decision.detail == "fallback=OpenWeatherMap (timeout)"

    def test_both_unavailable_returns_none(self):
        arbiter = MagicMock()

        assert decide_settlement(make_market(), UNAVAILABLE_A, UNAVAILABLE_B, arbiter) is None
        arbiter.arbitrate.assert_not_called()


def build_workflow(config, reader, writer, reading_a, reading_b, arbiter=None, storage=None):
    weather_a = MagicMock()
    weather_a.fetch_current.return_value = reading_a
    weather_b = MagicMock()
    weather_b.fetch_current.return_value = reading_b
    return SettlementWorkflow(
        config=config,
        reader=reader,
        writer=writer,
        weather_a=weather_a,
        weather_b=weather_b,
        arbiter=arbiter or MagicMock(),
        executor=RedundantExecutor(1),
        storage=storage,
    )


class TestSettlementWorkflow:

    def test_no_markets(self, config, reader, writer):
        workflow = build_workflow(config, reader, writer, owm_reading(500), weatherapi_reading(1183, True))

        summary = workflow.run(NOW)

        assert summary.status == "no-markets"
        writer.resolve_market.assert_not_called()

    def test_settles_expired_markets_in_order(self, config, reader, writer):
        load_markets(reader, [
            make_market(0, end_time=NOW_TS - 600),
            make_market(1, end_time=NOW_TS + 600),
            make_market(2, end_time=NOW_TS - 60),
        ])
        workflow = build_workflow(config, reader, writer, owm_reading(500), weatherapi_reading(1183, True))

        summary = workflow.run(NOW)

        assert summary.status == "settled:2/2"
        assert [c.args[1] for c in writer.resolve_market.call_args_list] == [0, 2]
        writer.resolve_market.assert_called_with(MARKET_ADDRESS, 2, True, config.gas_limit)
        assert summary.succeeded == 2

    def test_resolved_market_never_resubmitted(self, config, reader, writer):
        load_markets(reader, [make_market(0, resolved=True)])
        workflow = build_workflow(config, reader, writer, owm_reading(500), weatherapi_reading(1183, True))

        summary = workflow.run(NOW)

        assert summary.status == "no-markets"
        writer.resolve_market.assert_not_called()

    def test_both_unavailable_defers_without_write(self, config, reader, writer):
        load_markets(reader, [make_market(0)])
        workflow = build_workflow(config, reader, writer, UNAVAILABLE_A, UNAVAILABLE_B)

        summary = workflow.run(NOW)

        assert summary.status == "settled:0/1"
        assert summary.skipped == 1
        writer.resolve_market.assert_not_called()

    def test_disagreement_is_ai_adjudicated(self, config, reader, writer):
        load_markets(reader, [make_market(0)])
        arbiter = MagicMock()
        arbiter.arbitrate.return_value = ArbitrationResult(outcome=True)
        workflow = build_workflow(
            config, reader, writer, owm_reading(500), weatherapi_reading(1000, False), arbiter=arbiter
        )

        summary = workflow.run(NOW)

        arbiter.arbitrate.assert_called_once()
        assert summary.decisions[0].method == ConsensusMethod.AI_ADJUDICATED
        writer.resolve_market.assert_called_once_with(MARKET_ADDRESS, 0, True, config.gas_limit)

    def test_failed_write_does_not_stop_cycle(self, config, reader, writer):
        load_markets(reader, [make_market(0), make_market(1)])
        writer.resolve_market.side_effect = [
            WriteResult(status=TxStatus.REVERTED, tx_hash="0x1", error_message="already resolved"),
            WriteResult(status=TxStatus.SUCCESS, tx_hash="0x2"),
        ]
        workflow = build_workflow(config, reader, writer, owm_reading(800), weatherapi_reading(1000, False))

        summary = workflow.run(NOW)

        assert writer.resolve_market.call_count == 2
        assert summary.failed == 1
        assert summary.succeeded == 1
        assert summary.status == "settled:2/2"

    def test_journals_decisions_and_cycle(self, config, reader, writer):
        load_markets(reader, [make_market(0)])
        storage = MagicMock()
        workflow = build_workflow(
            config, reader, writer, owm_reading(500), weatherapi_reading(1183, True), storage=storage
        )

        workflow.run(NOW)

        storage.save_settlement.assert_called_once()
        storage.save_cycle.assert_called_once()

    def test_scheduled_time_is_now(self, config, reader, writer):
        # Ends one second after the scheduled time: not yet expired
        load_markets(reader, [make_market(0, end_time=NOW_TS + 1)])
        workflow = build_workflow(config, reader, writer, owm_reading(500), weatherapi_reading(1183, True))

        assert workflow.run(NOW).status == "no-markets"


class TestRedundantFetchDisagreement:
    """Three runs per fetch; a provider whose runs disagree counts as unavailable."""

    @staticmethod
    def workflow(config, reader, writer, weather_a, weather_b, arbiter):
        return SettlementWorkflow(
            config=config,
            reader=reader,
            writer=writer,
            weather_a=weather_a,
            weather_b=weather_b,
            arbiter=arbiter,
            executor=RedundantExecutor(3),
        )

    def test_disagreeing_source_falls_back_to_single_source(self, config, reader, writer):
        load_markets(reader, [make_market(0)])
        weather_a = MagicMock()
        weather_a.fetch_current.side_effect = [owm_reading(500), owm_reading(501), owm_reading(502)]
        weather_b = MagicMock()
        weather_b.fetch_current.return_value = weatherapi_reading(1000, False)
        arbiter = MagicMock()

        summary = self.workflow(config, reader, writer, weather_a, weather_b, arbiter).run(NOW)

        assert weather_a.fetch_current.call_count == 3
        arbiter.arbitrate.assert_not_called()
        decision = summary.decisions[0]
        assert decision.method == ConsensusMethod.SINGLE_SOURCE
        assert decision.outcome is False
        writer.resolve_market.assert_called_once_with(MARKET_ADDRESS, 0, False, config.gas_limit)

    def test_both_sources_disagreeing_defers(self, config, reader, writer):
        load_markets(reader, [make_market(0)])
        weather_a = MagicMock()
        weather_a.fetch_current.side_effect = [owm_reading(500), owm_reading(800), owm_reading(500)]
        weather_b = MagicMock()
        weather_b.fetch_current.side_effect = [
            weatherapi_reading(1000, False),
            weatherapi_reading(1183, True),
            weatherapi_reading(1000, False),
        ]
        arbiter = MagicMock()

        summary = self.workflow(config, reader, writer, weather_a, weather_b, arbiter).run(NOW)

        assert summary.skipped == 1
        assert summary.decisions == []
        arbiter.arbitrate.assert_not_called()
        writer.resolve_market.assert_not_called()
