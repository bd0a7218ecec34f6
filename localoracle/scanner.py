"""
Market scanner for enumerating on-chain markets.

This module reads the market count, then every market record in ascending
id order, and applies the temporal/resolution predicates of each workflow.
It performs no decision logic - only enumeration and filtering.
"""

import logging
from typing import Callable, Optional

from localoracle.chain import ChainReader
from localoracle.models import Market

# Configure module logger
logger = logging.getLogger(__name__)


TRADING_WINDOW_SECONDS = 24 * 3600


def is_settleable(market: Market, now: int) -> bool:
    """
    Whether a market is expired and awaiting settlement.

    end_time == 0 means no end time has been set; such markets are never
    settled.
    """
    return not market.resolved and 0 < market.end_time <= now


def is_tradeable(market: Market, now: int, window_seconds: int = TRADING_WINDOW_SECONDS) -> bool:
    """Whether a market is open and closes within the trading window."""
    return not market.resolved and now < market.end_time <= now + window_seconds


def fetch_markets(reader: ChainReader) -> list[Market]:
    """
    Read every market record from the chain.

    Args:
        reader: Chain reader

    Returns:
        Markets in ascending id order. Records that cannot be read are skipped.
    """
    count = reader.market_count()
    logger.info(f"Total markets on-chain: {count}")

    markets: list[Market] = []
    for market_id in range(count):
        market = reader.get_market(market_id)
        if market is not None:
            markets.append(market)

    return markets


def scan_for_settlement(reader: ChainReader, now: int) -> list[Market]:
    """
    Find expired, unresolved markets.

    Args:
        reader: Chain reader
        now: Current unix time in seconds

    Returns:
        Markets needing settlement, ascending by id
    """
    logger.info("Scanning on-chain markets for settlement...")

    pending: list[Market] = []
    for market in fetch_markets(reader):
        if is_settleable(market, now):
            logger.info(f"  Market #{market.id}: \"{market.question}\" - EXPIRED, needs settlement")
            pending.append(market)

    logger.info(f"Found {len(pending)} market(s) to settle")
    return pending


def scan_for_trading(
    reader: ChainReader,
    now: int,
    has_position: Optional[Callable[[int], bool]] = None,
    window_seconds: int = TRADING_WINDOW_SECONDS,
) -> list[Market]:
    """
    Find active markets closing within the trading window that the agent has not bet on.

    Args:
        reader: Chain reader
        now: Current unix time in seconds
        has_position: Position check per market id (defaults to reader.has_position)
        window_seconds: Trading window length

    Returns:
        Tradeable markets, ascending by id
    """
    logger.info(f"Scanning for active markets expiring within {window_seconds // 3600} h...")

    if has_position is None:
        has_position = reader.has_position

    tradeable: list[Market] = []
    for market in fetch_markets(reader):
        if not is_tradeable(market, now, window_seconds):
            continue

        if has_position(market.id):
            logger.info(f"  Market #{market.id}: already have an active bet, skipping")
            continue

        hours_left = (market.end_time - now) / 3600
        logger.info(f"  [TRADEABLE] #{market.id}: \"{market.question}\" - {hours_left:.1f} h left")
        tradeable.append(market)

    logger.info(f"Found {len(tradeable)} tradeable market(s)")
    return tradeable
