"""
Market settlement workflow.

For every expired, unresolved market:
1. Fetch current weather from OpenWeatherMap and WeatherAPI, each through
   the redundant-execution consensus layer
2. Reduce the two readings to an outcome: unanimous agreement, single-source
   fallback, or AI arbitration when two available readings conflict
3. Commit the outcome on-chain with resolveMarket()

Markets where both sources are unavailable are deferred to the next cycle.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from localoracle.arbiter import AIArbiter
from localoracle.chain import ChainReader, ChainWriter, build_chain_clients
from localoracle.config import Config, WORKFLOW_SETTLEMENT
from localoracle.consensus import FieldwiseAggregation, RedundantExecutor
from localoracle.models import (
    ConsensusMethod,
    CycleSummary,
    Market,
    SettlementDecision,
    WeatherReading,
)
from localoracle.scanner import scan_for_settlement
from localoracle.storage import Storage
from localoracle.weather_clients import (
    OWM_SOURCE,
    WEATHERAPI_SOURCE,
    OpenWeatherMapClient,
    WeatherAPIClient,
)

# Configure module logger
logger = logging.getLogger(__name__)


READING_AGGREGATION = FieldwiseAggregation.for_dataclass(WeatherReading)


class ConsensusKind(str, Enum):
    DEFERRED = "deferred"
    UNANIMOUS = "unanimous"
    SINGLE_SOURCE = "single-source"
    NEEDS_ARBITRATION = "needs-arbitration"


@dataclass(frozen=True)
class ReadingConsensus:
    """
    Result of comparing two weather readings.

    Attributes:
        kind: Which row of the decision table applied
        outcome: Agreed or surviving outcome (None when deferred or arbitration is needed)
        source: Surviving source for SINGLE_SOURCE
    """
    kind: ConsensusKind
    outcome: Optional[bool] = None
    source: Optional[str] = None


def evaluate_readings(reading_a: WeatherReading, reading_b: WeatherReading) -> ReadingConsensus:
    """
    Apply the settlement decision table to two readings.

    Priority: both unavailable defers; exactly one available wins outright;
    two equal readings are unanimous; two conflicting readings need arbitration.

    Args:
        reading_a: Reading from provider A
        reading_b: Reading from provider B

    Returns:
        ReadingConsensus
    """
    if not reading_a.available and not reading_b.available:
        return ReadingConsensus(ConsensusKind.DEFERRED)

    if not reading_a.available:
        return ReadingConsensus(ConsensusKind.SINGLE_SOURCE, reading_b.is_raining, reading_b.source)

    if not reading_b.available:
        return ReadingConsensus(ConsensusKind.SINGLE_SOURCE, reading_a.is_raining, reading_a.source)

    if reading_a.is_raining == reading_b.is_raining:
        return ReadingConsensus(ConsensusKind.UNANIMOUS, reading_a.is_raining)

    return ReadingConsensus(ConsensusKind.NEEDS_ARBITRATION)


def decide_settlement(
    market: Market,
    reading_a: WeatherReading,
    reading_b: WeatherReading,
    arbiter: AIArbiter,
) -> Optional[SettlementDecision]:
    """
    Turn two readings into a settlement decision.

    The arbiter is called at most once, and only for two available readings
    that disagree.

    Args:
        market: Market being settled
        reading_a: Reading from provider A
        reading_b: Reading from provider B
        arbiter: Tie-breaker for conflicting readings

    Returns:
        SettlementDecision, or None if the market must wait for the next cycle
    """
    consensus = evaluate_readings(reading_a, reading_b)

    if consensus.kind == ConsensusKind.DEFERRED:
        logger.warning(f"Market #{market.id}: BOTH weather sources unavailable, will retry next cycle")
        return None

    if consensus.kind == ConsensusKind.SINGLE_SOURCE:
        logger.info(f"Market #{market.id}: only {consensus.source} available, using it")
        return SettlementDecision(
            market_id=market.id,
            outcome=consensus.outcome,
            method=ConsensusMethod.SINGLE_SOURCE,
            detail=f"{consensus.source} only",
        )

    if consensus.kind == ConsensusKind.UNANIMOUS:
        logger.info(f"Market #{market.id}: CONSENSUS, both sources agree")
        return SettlementDecision(
            market_id=market.id,
            outcome=consensus.outcome,
            method=ConsensusMethod.UNANIMOUS,
            detail="both sources agree",
        )

    result = arbiter.arbitrate(market, reading_a, reading_b)
    detail = f"fallback={reading_a.source} ({result.reason})" if result.fallback_used else "ai verdict"
    return SettlementDecision(
        market_id=market.id,
        outcome=result.outcome,
        method=ConsensusMethod.AI_ADJUDICATED,
        detail=detail,
    )


class SettlementWorkflow:
    """
    Settles every expired market, one at a time.

    Each market is fully processed, including its write, before the next
    one starts. A failed write is logged and the market is simply picked up
    again on a later cycle, since its resolved flag is still unset.
    """

    def __init__(
        self,
        config: Config,
        reader: ChainReader,
        writer: ChainWriter,
        weather_a: OpenWeatherMapClient,
        weather_b: WeatherAPIClient,
        arbiter: AIArbiter,
        executor: RedundantExecutor,
        storage: Optional[Storage] = None,
    ):
        self.config = config
        self.reader = reader
        self.writer = writer
        self.weather_a = weather_a
        self.weather_b = weather_b
        self.arbiter = arbiter
        self.executor = executor
        self.storage = storage

    def run(self, scheduled_time: datetime) -> CycleSummary:
        """
        Execute one settlement cycle.

        Args:
            scheduled_time: Scheduled execution time of the firing; used as "now"

        Returns:
            CycleSummary for the cycle
        """
        logger.info("=" * 64)
        logger.info("  LocalOracle - Multi-Source Weather Oracle Settlement")
        logger.info("=" * 64)

        summary = CycleSummary(workflow=WORKFLOW_SETTLEMENT, scheduled_time=scheduled_time)
        now = int(scheduled_time.timestamp())

        pending = scan_for_settlement(self.reader, now)
        summary.scanned = len(pending)

        if not pending:
            logger.info("No markets to settle. Workflow complete.")
            summary.status = "no-markets"
            self._journal_cycle(summary)
            return summary

        for market in pending:
            self._process_market(market, summary)

        summary.status = f"settled:{summary.decided}/{summary.scanned}"

        logger.info("=" * 64)
        logger.info("  SETTLEMENT COMPLETE")
        logger.info(f"  Markets scanned:  {summary.scanned}")
        logger.info(f"  Markets settled:  {summary.decided}")
        logger.info(f"  Markets skipped:  {summary.skipped}")
        logger.info("=" * 64)

        self._journal_cycle(summary)
        return summary

    def fetch_readings(self, market: Market) -> tuple[WeatherReading, WeatherReading]:
        """
        Fetch both providers' current readings through the consensus layer.

        Returns:
            (reading_a, reading_b); a provider whose runs disagreed is unavailable
        """
        lat, lng = market.latitude, market.longitude

        reading_a = self.executor.run(self.weather_a.fetch_current, READING_AGGREGATION, lat, lng)
        if reading_a is None:
            reading_a = WeatherReading.unavailable(OWM_SOURCE, "no consensus")

        reading_b = self.executor.run(self.weather_b.fetch_current, READING_AGGREGATION, lat, lng)
        if reading_b is None:
            reading_b = WeatherReading.unavailable(WEATHERAPI_SOURCE, "no consensus")

        return reading_a, reading_b

    def _process_market(self, market: Market, summary: CycleSummary) -> None:
        logger.info(f"--- Processing Market #{market.id} ---")
        logger.info(f"  Question: \"{market.question}\"")
        logger.info(f"  Location: {market.latitude:.4f}, {market.longitude:.4f}")

        reading_a, reading_b = self.fetch_readings(market)
        for reading in (reading_a, reading_b):
            logger.info(
                f"  {reading.source}: \"{reading.description}\" "
                f"(code {reading.condition_code}) -> rain={reading.is_raining}"
            )

        decision = decide_settlement(market, reading_a, reading_b, self.arbiter)
        if decision is None:
            return

        summary.decided += 1
        summary.decisions.append(decision)

        logger.info(
            f"Settling market #{market.id} on-chain - outcome: {'YES' if decision.outcome else 'NO'} "
            f"(method: {decision.method.value})"
        )
        result = self.writer.resolve_market(
            self.config.prediction_market_address,
            market.id,
            decision.outcome,
            self.config.gas_limit,
        )

        if result.succeeded:
            summary.succeeded += 1
        else:
            summary.failed += 1

        if self.storage is not None:
            self.storage.save_settlement(decision, reading_a, reading_b, result)

    def _journal_cycle(self, summary: CycleSummary) -> None:
        if self.storage is not None:
            self.storage.save_cycle(summary)


def build_settlement_workflow(config: Config, storage: Optional[Storage] = None) -> SettlementWorkflow:
    """
    Wire a settlement workflow with real clients.

    Args:
        config: Validated configuration
        storage: Optional decision journal

    Returns:
        SettlementWorkflow ready to run
    """
    reader, writer = build_chain_clients(config)
    executor = RedundantExecutor(config.redundancy)
    return SettlementWorkflow(
        config=config,
        reader=reader,
        writer=writer,
        weather_a=OpenWeatherMapClient(config.openweather_api_key, timeout=config.api_timeout),
        weather_b=WeatherAPIClient(config.weatherapi_key, timeout=config.api_timeout),
        arbiter=AIArbiter(
            api_key=config.anthropic_api_key,
            model=config.claude_model,
            executor=executor,
            timeout=config.api_timeout,
            max_tokens=config.claude_max_tokens,
        ),
        executor=executor,
        storage=storage,
    )
