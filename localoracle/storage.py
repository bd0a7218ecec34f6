"""
Storage module for the decision journal.

This module keeps a local SQLite audit trail of every settlement and trade
decision together with the result of its on-chain write, plus a summary row
per workflow cycle. On-chain state stays the source of truth; the journal
is never consulted to decide whether a market should be processed.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from localoracle.models import (
    CycleSummary,
    ForecastReading,
    SettlementDecision,
    TradeDecision,
    WeatherReading,
    WriteResult,
)
from localoracle.utils import current_utc_timestamp

# Configure module logger
logger = logging.getLogger(__name__)


class Storage:
    """
    Repository for journal operations.

    Write methods return True on success and False on failure; a journal
    problem is logged and never interrupts a cycle.
    """

    def __init__(self, db_path: Path):
        """
        Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Ensures proper connection handling and transaction management.
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settlements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market_id INTEGER NOT NULL,
                    outcome INTEGER NOT NULL,
                    method TEXT NOT NULL,
                    detail TEXT,
                    reading_a TEXT,
                    reading_b TEXT,
                    tx_status TEXT NOT NULL,
                    tx_hash TEXT,
                    error_message TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market_id INTEGER NOT NULL,
                    side INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    edge INTEGER NOT NULL,
                    combined_forecast INTEGER NOT NULL,
                    market_yes_pct INTEGER NOT NULL,
                    justification TEXT NOT NULL,
                    forecast_a TEXT,
                    forecast_b TEXT,
                    tx_status TEXT NOT NULL,
                    tx_hash TEXT,
                    error_message TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cycles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workflow TEXT NOT NULL,
                    scheduled_time TEXT NOT NULL,
                    scanned INTEGER NOT NULL,
                    decided INTEGER NOT NULL,
                    succeeded INTEGER NOT NULL,
                    failed INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_settlements_market_id
                ON settlements(market_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_market_id
                ON trades(market_id)
            """)

            logger.debug(f"Journal initialized at {self.db_path}")

    def save_settlement(
        self,
        decision: SettlementDecision,
        reading_a: WeatherReading,
        reading_b: WeatherReading,
        result: WriteResult,
    ) -> bool:
        """
        Record a settlement decision and its write result.

        Args:
            decision: Settlement decision
            reading_a: Reading from provider A
            reading_b: Reading from provider B
            result: Result of the resolveMarket write

        Returns:
            True if successful, False otherwise
        """
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO settlements
                    (market_id, outcome, method, detail, reading_a, reading_b,
                     tx_status, tx_hash, error_message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    decision.market_id,
                    int(decision.outcome),
                    decision.method.value,
                    decision.detail,
                    json.dumps(asdict(reading_a)),
                    json.dumps(asdict(reading_b)),
                    result.status.value,
                    result.tx_hash,
                    result.error_message,
                    current_utc_timestamp(),
                ))
            return True

        except sqlite3.Error as e:
            logger.error(f"Failed to journal settlement of market {decision.market_id}: {e}")
            return False

    def save_trade(
        self,
        decision: TradeDecision,
        forecast_a: ForecastReading,
        forecast_b: ForecastReading,
        result: WriteResult,
    ) -> bool:
        """Record a trade decision and its write result."""
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO trades
                    (market_id, side, amount, edge, combined_forecast, market_yes_pct,
                     justification, forecast_a, forecast_b, tx_status, tx_hash,
                     error_message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    decision.market_id,
                    int(decision.side),
                    decision.amount,
                    decision.edge,
                    decision.combined_forecast,
                    decision.market_yes_pct,
                    decision.justification,
                    json.dumps(asdict(forecast_a)),
                    json.dumps(asdict(forecast_b)),
                    result.status.value,
                    result.tx_hash,
                    result.error_message,
                    current_utc_timestamp(),
                ))
            return True

        except sqlite3.Error as e:
            logger.error(f"Failed to journal trade on market {decision.market_id}: {e}")
            return False

    def save_cycle(self, summary: CycleSummary) -> bool:
        """Record a cycle summary."""
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO cycles
                    (workflow, scheduled_time, scanned, decided, succeeded, failed,
                     status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    summary.workflow,
                    summary.scheduled_time.isoformat(),
                    summary.scanned,
                    summary.decided,
                    summary.succeeded,
                    summary.failed,
                    summary.status,
                    current_utc_timestamp(),
                ))
            return True

        except sqlite3.Error as e:
            logger.error(f"Failed to journal {summary.workflow} cycle: {e}")
            return False

    # Retrieval

    def recent_settlements(self, limit: int = 20) -> list[dict]:
        return self._recent("settlements", limit)

    def recent_trades(self, limit: int = 20) -> list[dict]:
        return self._recent("trades", limit)

    def recent_cycles(self, limit: int = 20, workflow: Optional[str] = None) -> list[dict]:
        """
        Most recent cycle summaries, newest first.

        Args:
            limit: Maximum number of rows
            workflow: Restrict to one workflow if given

        Returns:
            List of row dictionaries
        """
        query = "SELECT * FROM cycles"
        params: tuple = ()
        if workflow:
            query += " WHERE workflow = ?"
            params = (workflow,)
        query += " ORDER BY id DESC LIMIT ?"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params + (limit,)).fetchall()
                return [dict(row) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Failed to read cycles: {e}")
            return []

    def _recent(self, table: str, limit: int) -> list[dict]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"SELECT * FROM {table} ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
                return [dict(row) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Failed to read {table}: {e}")
            return []
