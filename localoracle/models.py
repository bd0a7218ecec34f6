"""
Data models for the LocalOracle settlement and trading workflows.

This module defines the dataclasses shared across the package: on-chain
market records, normalized weather and forecast readings, the agent's
portfolio snapshot, and the decisions the two workflows produce.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence


# Fixed-point scale used on-chain for coordinates and currency amounts
FIXED_POINT_SCALE = 1_000_000

# Sentinels for "provider could not be reached or returned unusable data"
UNAVAILABLE_CONDITION_CODE = -1
UNAVAILABLE_PROBABILITY = -1


@dataclass(frozen=True)
class Market:
    """
    A prediction market record as stored on-chain.

    Attributes:
        id: Market identifier
        creator: Address of the market creator
        question: Free-text market question
        lat: Latitude, fixed-point at 1e6 scale
        lng: Longitude, fixed-point at 1e6 scale
        end_time: Unix seconds at which the market closes (0 = not set)
        resolved: Whether an outcome has been committed
        outcome: Committed outcome, meaningful only when resolved
        total_yes_stake: Cumulative YES stake, 1e6 fixed-point
        total_no_stake: Cumulative NO stake, 1e6 fixed-point
    """
    id: int
    creator: str
    question: str
    lat: int
    lng: int
    end_time: int
    resolved: bool
    outcome: bool
    total_yes_stake: int
    total_no_stake: int

    @property
    def latitude(self) -> float:
        return self.lat / FIXED_POINT_SCALE

    @property
    def longitude(self) -> float:
        return self.lng / FIXED_POINT_SCALE

    @property
    def total_stake(self) -> int:
        return self.total_yes_stake + self.total_no_stake

    @classmethod
    def from_contract_tuple(cls, raw: Sequence) -> "Market":
        """
        Build a Market from the tuple returned by getMarket(id).

        Args:
            raw: (id, creator, question, lat, lng, endTime, resolved,
                  outcome, totalYesStake, totalNoStake)

        Returns:
            Market object
        """
        return cls(
            id=int(raw[0]),
            creator=str(raw[1]),
            question=str(raw[2]),
            lat=int(raw[3]),
            lng=int(raw[4]),
            end_time=int(raw[5]),
            resolved=bool(raw[6]),
            outcome=bool(raw[7]),
            total_yes_stake=int(raw[8]),
            total_no_stake=int(raw[9]),
        )


@dataclass(frozen=True)
class WeatherReading:
    """
    Current conditions reported by one weather provider.

    A reading whose condition_code is UNAVAILABLE_CONDITION_CODE means the
    provider could not be reached or returned unparsable data; its is_raining
    flag carries no information.
    """
    source: str
    condition_code: int
    description: str
    is_raining: bool

    @property
    def available(self) -> bool:
        return self.condition_code != UNAVAILABLE_CONDITION_CODE

    @classmethod
    def unavailable(cls, source: str, reason: str) -> "WeatherReading":
        return cls(
            source=source,
            condition_code=UNAVAILABLE_CONDITION_CODE,
            description=reason,
            is_raining=False,
        )


@dataclass(frozen=True)
class ForecastReading:
    """Short-horizon rain probability (0-100) reported by one provider."""
    source: str
    rain_probability: int
    description: str

    @property
    def available(self) -> bool:
        return 0 <= self.rain_probability <= 100

    @classmethod
    def unavailable(cls, source: str, reason: str) -> "ForecastReading":
        return cls(
            source=source,
            rain_probability=UNAVAILABLE_PROBABILITY,
            description=reason,
        )


@dataclass(frozen=True)
class AgentPortfolioSnapshot:
    """
    The trading agent's statistics as read from the agent contract.

    Attributes:
        bankroll: Available capital, 1e6 fixed-point
        total_bets: Bets placed over the agent's lifetime
        wins: Settled bets won
        losses: Settled bets lost
        total_pnl: Cumulative profit and loss (signed), 1e6 fixed-point
        active_bets: Currently open positions
    """
    bankroll: int = 0
    total_bets: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: int = 0
    active_bets: int = 0

    @classmethod
    def from_contract_tuple(cls, raw: Sequence) -> "AgentPortfolioSnapshot":
        return cls(
            bankroll=int(raw[0]),
            total_bets=int(raw[1]),
            wins=int(raw[2]),
            losses=int(raw[3]),
            total_pnl=int(raw[4]),
            active_bets=int(raw[5]),
        )


class ConsensusMethod(str, Enum):
    """How a settlement outcome was reached."""
    UNANIMOUS = "unanimous"
    SINGLE_SOURCE = "single-source"
    AI_ADJUDICATED = "ai-adjudicated"


@dataclass(frozen=True)
class SettlementDecision:
    """
    The outcome to commit for an expired market.

    Attributes:
        market_id: Market being settled
        outcome: True if it rained
        method: Consensus method used, kept for audit
        detail: Which source survived, or which arbitration path was taken
    """
    market_id: int
    outcome: bool
    method: ConsensusMethod
    detail: str = ""


@dataclass(frozen=True)
class TradeDecision:
    """
    A sized bet on an active market.

    Attributes:
        market_id: Market to bet on
        side: True for YES (rain), False for NO
        amount: Stake, 1e6 fixed-point
        justification: Rationale stored on-chain with the bet
        edge: Signed edge in percentage points
        combined_forecast: Combined rain probability used for the edge
        market_yes_pct: Market-implied YES percentage
    """
    market_id: int
    side: bool
    amount: int
    justification: str
    edge: int
    combined_forecast: int
    market_yes_pct: int


class TxStatus(str, Enum):
    SUCCESS = "SUCCESS"
    REVERTED = "REVERTED"
    FATAL = "FATAL"


@dataclass(frozen=True)
class WriteResult:
    """Result of submitting a report on-chain."""
    status: TxStatus
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TxStatus.SUCCESS


@dataclass
class CycleSummary:
    """
    Outcome of one workflow invocation.

    Attributes:
        workflow: "settlement" or "trading"
        scheduled_time: Scheduled execution time of the firing
        scanned: Markets that passed the scan filter
        decided: Markets for which a decision was produced
        succeeded: Writes that completed with SUCCESS
        failed: Writes that reverted or failed
        status: Short status string, e.g. "settled:2/3"
        decisions: Decisions produced this cycle, in processing order
    """
    workflow: str
    scheduled_time: datetime
    scanned: int = 0
    decided: int = 0
    succeeded: int = 0
    failed: int = 0
    status: str = ""
    decisions: list = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.scanned - self.decided
