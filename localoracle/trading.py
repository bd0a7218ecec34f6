"""
Autonomous trading workflow.

1. Read the agent's bankroll and open-position count (once per cycle)
2. Scan for active markets closing within 24 h that the agent has not bet on
3. Fetch ~12 h rain-probability forecasts from OpenWeatherMap and WeatherAPI
4. Compare the combined forecast with the market-implied probability
5. Place a 1.5%-of-bankroll bet via placeBet() when |edge| > 20 pp
"""

import logging
from datetime import datetime
from typing import Optional

from localoracle.chain import ChainReader, ChainWriter, build_chain_clients
from localoracle.config import Config, WORKFLOW_TRADING
from localoracle.consensus import FieldwiseAggregation, RedundantExecutor
from localoracle.models import (
    AgentPortfolioSnapshot,
    CycleSummary,
    ForecastReading,
    Market,
    TradeDecision,
)
from localoracle.scanner import scan_for_trading
from localoracle.storage import Storage
from localoracle.utils import (
    format_percentage,
    format_signed_pp,
    format_usdc,
    round_half_up,
)
from localoracle.weather_clients import (
    OWM_FORECAST_SOURCE,
    WEATHERAPI_FORECAST_SOURCE,
    OpenWeatherMapClient,
    WeatherAPIClient,
)

# Configure module logger
logger = logging.getLogger(__name__)


# Minimum |forecast - market| in percentage points before trading
EDGE_THRESHOLD_PP = 20

# Bet size in basis points of bankroll, below the agent contract's 200 bps cap
BET_SIZE_BPS = 150
BPS_DENOMINATOR = 10_000

MAX_ACTIVE_BETS = 5

FORECAST_AGGREGATION = FieldwiseAggregation.for_dataclass(ForecastReading)


def market_implied_yes_pct(market: Market) -> Optional[int]:
    """
    Market-implied YES probability as an integer percentage.

    Computed in basis points first, then rounded half up to a percentage.

    Returns:
        Percentage in [0, 100], or None if nothing has been staked yet
    """
    total = market.total_stake
    if total <= 0:
        return None

    basis_points = market.total_yes_stake * BPS_DENOMINATOR // total
    return round_half_up(basis_points, 100)


def combine_forecasts(forecast_a: ForecastReading, forecast_b: ForecastReading) -> Optional[int]:
    """
    Combine two forecasts into one rain probability.

    Both available: mean rounded half up. One available: that one.
    Neither: None.
    """
    if forecast_a.available and forecast_b.available:
        return round_half_up(forecast_a.rain_probability + forecast_b.rain_probability, 2)
    if forecast_a.available:
        return forecast_a.rain_probability
    if forecast_b.available:
        return forecast_b.rain_probability
    return None


def size_bet(bankroll: int) -> int:
    """Bet size: floor(bankroll * 150 / 10000)."""
    return bankroll * BET_SIZE_BPS // BPS_DENOMINATOR


def build_justification(
    forecast_a: ForecastReading,
    forecast_b: ForecastReading,
    combined: int,
    market_yes_pct: int,
    edge: int,
) -> str:
    """
    Build the on-chain rationale for a bet.

    Example: "OWM: 60% | WeatherAPI: N/A | Combined: 60% vs market 30% -> +30 pp edge"
    """
    owm = format_percentage(forecast_a.rain_probability if forecast_a.available else None)
    weatherapi = format_percentage(forecast_b.rain_probability if forecast_b.available else None)
    return (
        f"OWM: {owm} | WeatherAPI: {weatherapi} | "
        f"Combined: {combined}% vs market {market_yes_pct}% -> {format_signed_pp(edge)} edge"
    )


def decide_trade(
    market: Market,
    portfolio: AgentPortfolioSnapshot,
    forecast_a: ForecastReading,
    forecast_b: ForecastReading,
    has_position: bool = False,
    open_positions: Optional[int] = None,
) -> Optional[TradeDecision]:
    """
    Decide whether and how much to bet on a market.

    Args:
        market: Candidate market
        portfolio: Portfolio snapshot read at the start of the cycle
        forecast_a: Forecast from provider A
        forecast_b: Forecast from provider B
        has_position: Whether the agent already holds a position on this market
        open_positions: Open positions including bets placed earlier this cycle;
            defaults to portfolio.active_bets

    Returns:
        TradeDecision, or None when no bet should be placed
    """
    active = portfolio.active_bets if open_positions is None else open_positions

    if portfolio.bankroll <= 0:
        logger.info(f"Market #{market.id}: no bankroll, no trade")
        return None

    if active >= MAX_ACTIVE_BETS:
        logger.info(f"Market #{market.id}: portfolio full ({active} active bets), no trade")
        return None

    if has_position:
        logger.info(f"Market #{market.id}: already have an active bet, no trade")
        return None

    market_pct = market_implied_yes_pct(market)
    if market_pct is None:
        logger.info(f"Market #{market.id}: no bets placed yet, cannot compute market odds")
        return None

    combined = combine_forecasts(forecast_a, forecast_b)
    if combined is None:
        logger.info(f"Market #{market.id}: both forecasts unavailable, no trade")
        return None

    edge = combined - market_pct
    logger.info(
        f"Market #{market.id}: edge {format_signed_pp(edge)} "
        f"(forecast {combined}% - market {market_pct}%)"
    )

    if abs(edge) <= EDGE_THRESHOLD_PP:
        logger.info(f"Market #{market.id}: edge <= {EDGE_THRESHOLD_PP} pp threshold, no trade")
        return None

    amount = size_bet(portfolio.bankroll)
    if amount <= 0:
        logger.info(f"Market #{market.id}: bankroll too small for a non-zero bet")
        return None

    return TradeDecision(
        market_id=market.id,
        side=edge > 0,
        amount=amount,
        justification=build_justification(forecast_a, forecast_b, combined, market_pct, edge),
        edge=edge,
        combined_forecast=combined,
        market_yes_pct=market_pct,
    )


class TradingWorkflow:
    """
    Scans and trades eligible markets, one at a time.

    The portfolio snapshot is read once per cycle. Bets that succeed during
    the cycle count toward the open-position cap, so a cycle never opens more
    positions than the cap allows.
    """

    def __init__(
        self,
        config: Config,
        reader: ChainReader,
        writer: ChainWriter,
        forecaster_a: OpenWeatherMapClient,
        forecaster_b: WeatherAPIClient,
        executor: RedundantExecutor,
        storage: Optional[Storage] = None,
    ):
        self.config = config
        self.reader = reader
        self.writer = writer
        self.forecaster_a = forecaster_a
        self.forecaster_b = forecaster_b
        self.executor = executor
        self.storage = storage

    def run(self, scheduled_time: datetime) -> CycleSummary:
        """
        Execute one trading cycle.

        Args:
            scheduled_time: Scheduled execution time of the firing; used as "now"

        Returns:
            CycleSummary for the cycle
        """
        logger.info("=" * 64)
        logger.info("  LocalOracle Agent - Autonomous Market Trader")
        logger.info("=" * 64)

        summary = CycleSummary(workflow=WORKFLOW_TRADING, scheduled_time=scheduled_time)
        now = int(scheduled_time.timestamp())

        portfolio = self.reader.get_agent_stats()
        logger.info(f"  Bankroll    : {format_usdc(portfolio.bankroll)}")
        logger.info(f"  Active bets : {portfolio.active_bets} / {MAX_ACTIVE_BETS}")

        if portfolio.bankroll <= 0:
            logger.info("No bankroll, skipping run.")
            return self._finish(summary, "no-bankroll")

        if portfolio.active_bets >= MAX_ACTIVE_BETS:
            logger.info(f"Portfolio full ({MAX_ACTIVE_BETS} active bets), skipping run.")
            return self._finish(summary, "max-bets")

        markets = scan_for_trading(self.reader, now)
        summary.scanned = len(markets)

        if not markets:
            logger.info("No tradeable markets in the 24 h window. Run complete.")
            return self._finish(summary, "no-markets")

        open_positions = portfolio.active_bets
        for market in markets:
            if open_positions >= MAX_ACTIVE_BETS:
                logger.info(f"Position cap of {MAX_ACTIVE_BETS} reached this cycle, stopping.")
                break
            if self._process_market(market, portfolio, open_positions, summary):
                open_positions += 1

        logger.info("=" * 64)
        logger.info("  AGENT RUN COMPLETE")
        logger.info(f"  Markets analysed: {summary.scanned}")
        logger.info(f"  Bets placed:      {summary.succeeded}")
        logger.info("=" * 64)

        return self._finish(summary, f"analysed:{summary.scanned}")

    def fetch_forecasts(self, market: Market) -> tuple[ForecastReading, ForecastReading]:
        """
        Fetch both providers' forecasts through the consensus layer.

        Returns:
            (forecast_a, forecast_b); a provider whose runs disagreed is unavailable
        """
        lat, lng = market.latitude, market.longitude

        forecast_a = self.executor.run(self.forecaster_a.fetch_forecast, FORECAST_AGGREGATION, lat, lng)
        if forecast_a is None:
            forecast_a = ForecastReading.unavailable(OWM_FORECAST_SOURCE, "no consensus")

        forecast_b = self.executor.run(self.forecaster_b.fetch_forecast, FORECAST_AGGREGATION, lat, lng)
        if forecast_b is None:
            forecast_b = ForecastReading.unavailable(WEATHERAPI_FORECAST_SOURCE, "no consensus")

        return forecast_a, forecast_b

    def _process_market(
        self,
        market: Market,
        portfolio: AgentPortfolioSnapshot,
        open_positions: int,
        summary: CycleSummary,
    ) -> bool:
        """Analyse one market and bet if warranted. Returns True if a bet was placed."""
        logger.info(f"-- Market #{market.id}: \"{market.question}\" --")
        logger.info(f"   Location: {market.latitude:.4f}, {market.longitude:.4f}")

        if market_implied_yes_pct(market) is None:
            logger.info("   No bets placed yet, cannot compute market odds. Skipping.")
            return False

        forecast_a, forecast_b = self.fetch_forecasts(market)
        for forecast in (forecast_a, forecast_b):
            value = f"{forecast.rain_probability}%" if forecast.available else "unavailable"
            logger.info(f"   {forecast.source}: \"{forecast.description}\" -> {value}")

        decision = decide_trade(
            market,
            portfolio,
            forecast_a,
            forecast_b,
            open_positions=open_positions,
        )
        if decision is None:
            return False

        summary.decided += 1
        summary.decisions.append(decision)

        logger.info(
            f"PLACING BET: {'YES (rain)' if decision.side else 'NO (no rain)'} - "
            f"{format_usdc(decision.amount)}"
        )
        logger.info(f"   Reasoning: {decision.justification}")

        result = self.writer.place_bet(self.config.market_agent_address, decision, self.config.gas_limit)

        if self.storage is not None:
            self.storage.save_trade(decision, forecast_a, forecast_b, result)

        if result.succeeded:
            summary.succeeded += 1
            return True

        summary.failed += 1
        return False

    def _finish(self, summary: CycleSummary, status: str) -> CycleSummary:
        summary.status = status
        if self.storage is not None:
            self.storage.save_cycle(summary)
        return summary


def build_trading_workflow(config: Config, storage: Optional[Storage] = None) -> TradingWorkflow:
    """
    Wire a trading workflow with real clients.

    Args:
        config: Validated configuration
        storage: Optional decision journal

    Returns:
        TradingWorkflow ready to run
    """
    reader, writer = build_chain_clients(config)
    return TradingWorkflow(
        config=config,
        reader=reader,
        writer=writer,
        forecaster_a=OpenWeatherMapClient(config.openweather_api_key, timeout=config.api_timeout),
        forecaster_b=WeatherAPIClient(config.weatherapi_key, timeout=config.api_timeout),
        executor=RedundantExecutor(config.redundancy),
        storage=storage,
    )
