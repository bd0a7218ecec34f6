"""
Configuration management for the LocalOracle settlement and trading workflows.

This module loads configuration from environment variables (optionally via a
.env file) into a single immutable Config object that is passed explicitly to
every component. Nothing else in the package reads the environment.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from web3 import Web3

# Load environment variables from .env file if it exists
load_dotenv()


WORKFLOW_SETTLEMENT = "settlement"
WORKFLOW_TRADING = "trading"

PRIVATE_KEY_PATTERN = re.compile(r"(0x)?[0-9a-fA-F]{64}")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for both workflows.

    Attributes:
        rpc_url: JSON-RPC endpoint of the chain
        chain_id: Chain id used when signing transactions
        private_key: Key of the account that submits reports
        prediction_market_address: Address of the prediction market contract
        market_agent_address: Address of the agent contract (trading only)
        gas_limit: Gas limit attached to every write
        openweather_api_key: Credential for weather provider A
        weatherapi_key: Credential for weather provider B
        anthropic_api_key: Credential for the arbitration endpoint
        claude_model: Model used for arbitration
        settlement_schedule: Cron expression for the settlement workflow; keep
            the interval above the finalized-block lag to avoid re-resolving
        trading_schedule: Cron expression for the trading workflow
        scheduler_timezone: Timezone the cron expressions are evaluated in
        api_timeout: HTTP timeout in seconds for every external data call
        receipt_timeout: Seconds to wait for a transaction receipt
        redundancy: Number of redundant executions per consensus fetch
    """

    # Chain
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 11155111
    private_key: Optional[str] = None
    prediction_market_address: Optional[str] = None
    market_agent_address: Optional[str] = None
    gas_limit: int = 500_000

    # Data providers
    openweather_api_key: Optional[str] = None
    weatherapi_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"
    claude_max_tokens: int = 10

    # Scheduling
    # Longer than finalized-block lag (about 13 min on Sepolia), so a market
    # resolved in one cycle already reads as resolved in the next
    settlement_schedule: str = "*/30 * * * *"
    trading_schedule: str = "0 * * * *"
    scheduler_timezone: str = "UTC"

    # Timeouts (seconds) and redundancy
    api_timeout: int = 30
    receipt_timeout: int = 120
    redundancy: int = 3

    # Journal, logging, notifications
    db_path: Path = Path("data/localoracle.db")
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """
        Build a Config from environment variables.

        Returns:
            Config populated from the environment, with defaults for unset values
        """
        log_file = os.getenv("LOG_FILE")
        return cls(
            rpc_url=os.getenv("RPC_URL", cls.rpc_url),
            chain_id=_env_int("CHAIN_ID", cls.chain_id),
            private_key=os.getenv("ORACLE_PRIVATE_KEY"),
            prediction_market_address=os.getenv("PREDICTION_MARKET_ADDRESS"),
            market_agent_address=os.getenv("MARKET_AGENT_ADDRESS"),
            gas_limit=_env_int("GAS_LIMIT", cls.gas_limit),
            openweather_api_key=os.getenv("OPENWEATHER_API_KEY"),
            weatherapi_key=os.getenv("WEATHERAPI_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            claude_model=os.getenv("CLAUDE_MODEL", cls.claude_model),
            claude_max_tokens=_env_int("CLAUDE_MAX_TOKENS", cls.claude_max_tokens),
            settlement_schedule=os.getenv("SETTLEMENT_SCHEDULE", cls.settlement_schedule),
            trading_schedule=os.getenv("TRADING_SCHEDULE", cls.trading_schedule),
            scheduler_timezone=os.getenv("SCHEDULER_TIMEZONE", cls.scheduler_timezone),
            api_timeout=_env_int("API_TIMEOUT", cls.api_timeout),
            receipt_timeout=_env_int("RECEIPT_TIMEOUT", cls.receipt_timeout),
            redundancy=_env_int("REDUNDANCY", cls.redundancy),
            db_path=Path(os.getenv("DB_PATH", str(cls.db_path))),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            log_file=Path(log_file) if log_file else None,
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
        )

    def validate(self, workflow: str = WORKFLOW_SETTLEMENT) -> tuple[bool, list[str]]:
        """
        Validate that the values a workflow needs are present and sane.

        Args:
            workflow: WORKFLOW_SETTLEMENT or WORKFLOW_TRADING

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not self.private_key:
            errors.append("ORACLE_PRIVATE_KEY is required but not set")
        elif not PRIVATE_KEY_PATTERN.fullmatch(self.private_key):
            errors.append("ORACLE_PRIVATE_KEY must be 32 bytes of hex (64 hex digits, optional 0x)")

        addresses = [("PREDICTION_MARKET_ADDRESS", self.prediction_market_address)]
        if workflow == WORKFLOW_TRADING:
            addresses.append(("MARKET_AGENT_ADDRESS", self.market_agent_address))

        for name, address in addresses:
            if not address:
                errors.append(f"{name} is required but not set")
            elif not Web3.is_address(address):
                errors.append(f"{name} is not a valid address: '{address}'")

        # Provider keys are not fatal: a missing key just makes that source unavailable
        if self.gas_limit <= 0:
            errors.append("GAS_LIMIT must be positive")

        if self.redundancy < 1:
            errors.append("REDUNDANCY must be at least 1")

        if self.api_timeout < 1:
            errors.append("API_TIMEOUT must be at least 1 second")

        if self.receipt_timeout < 1:
            errors.append("RECEIPT_TIMEOUT must be at least 1 second")

        for name, expression in (
            ("SETTLEMENT_SCHEDULE", self.settlement_schedule),
            ("TRADING_SCHEDULE", self.trading_schedule),
        ):
            if len(expression.split()) != 5:
                errors.append(f"{name} must be a 5-field cron expression, got '{expression}'")

        return (len(errors) == 0, errors)

    def ensure_directories(self) -> None:
        """Create directories for the journal database and log file."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
