"""
On-chain reads and writes for the prediction market and agent contracts.

ChainReader issues read-only calls against the finalized block. ChainWriter
wraps ABI-encoded calls into reports, signs and submits them, and reports
SUCCESS / REVERTED / FATAL without ever raising into the workflows.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from localoracle.config import Config
from localoracle.models import (
    AgentPortfolioSnapshot,
    Market,
    TradeDecision,
    TxStatus,
    WriteResult,
)

# Configure module logger
logger = logging.getLogger(__name__)


FINALIZED_BLOCK = "finalized"

# Errors a JSON-RPC read or write can surface through web3 and its HTTP provider
CHAIN_ERRORS = (Web3Exception, RequestException, ValueError)

PREDICTION_MARKET_ABI = [
    {
        "type": "function",
        "name": "nextMarketId",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getMarket",
        "inputs": [{"name": "marketId", "type": "uint256"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "creator", "type": "address"},
                    {"name": "question", "type": "string"},
                    {"name": "lat", "type": "int256"},
                    {"name": "lng", "type": "int256"},
                    {"name": "endTime", "type": "uint256"},
                    {"name": "resolved", "type": "bool"},
                    {"name": "outcome", "type": "bool"},
                    {"name": "totalYesStake", "type": "uint256"},
                    {"name": "totalNoStake", "type": "uint256"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "resolveMarket",
        "inputs": [
            {"name": "marketId", "type": "uint256"},
            {"name": "outcome", "type": "bool"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
]

MARKET_AGENT_ABI = [
    {
        "type": "function",
        "name": "getStats",
        "inputs": [],
        "outputs": [
            {"name": "bankroll", "type": "uint256"},
            {"name": "_totalBets", "type": "uint256"},
            {"name": "_wins", "type": "uint256"},
            {"name": "_losses", "type": "uint256"},
            {"name": "_totalPnL", "type": "int256"},
            {"name": "_activeBets", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "marketToBetIndex",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "placeBet",
        "inputs": [
            {"name": "marketId", "type": "uint256"},
            {"name": "outcome", "type": "bool"},
            {"name": "amount", "type": "uint256"},
            {"name": "reasoning", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
    },
]


def connect(config: Config) -> Web3:
    """Create a Web3 instance for the configured RPC endpoint."""
    return Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.api_timeout}))


class ChainReader:
    """
    Read-only access to market and agent state.

    Args:
        web3: Connected Web3 instance
        market_address: Prediction market contract address
        agent_address: Agent contract address (needed for trading reads only)
        block_identifier: Block all reads are made against
    """

    def __init__(
        self,
        web3: Web3,
        market_address: str,
        agent_address: Optional[str] = None,
        block_identifier: Any = FINALIZED_BLOCK,
    ):
        self.web3 = web3
        self.block_identifier = block_identifier
        self.market_address = Web3.to_checksum_address(market_address)
        self.market_contract = web3.eth.contract(address=self.market_address, abi=PREDICTION_MARKET_ABI)
        self.agent_address = Web3.to_checksum_address(agent_address) if agent_address else None
        self.agent_contract = (
            web3.eth.contract(address=self.agent_address, abi=MARKET_AGENT_ABI)
            if self.agent_address else None
        )

    def market_count(self) -> int:
        """
        Number of markets ever created (the contract's next market id).

        Returns 0 when the contract has no code or the read fails, so a
        misconfigured address means "no markets this cycle".
        """
        try:
            code = self.web3.eth.get_code(self.market_address, block_identifier=self.block_identifier)
            if not code:
                logger.warning(
                    f"No contract code at {self.market_address}; contract may not be deployed yet"
                )
                return 0

            count = self.market_contract.functions.nextMarketId().call(
                block_identifier=self.block_identifier
            )
            return int(count)

        except BadFunctionCallOutput:
            logger.warning(f"Contract at {self.market_address} returned empty data for nextMarketId")
            return 0

        except CHAIN_ERRORS as e:
            logger.error(f"Failed to read market count: {e}")
            return 0

    def get_market(self, market_id: int) -> Optional[Market]:
        """
        Read one market record.

        Returns:
            Market, or None if the record could not be read or decoded
        """
        try:
            raw = self.market_contract.functions.getMarket(market_id).call(
                block_identifier=self.block_identifier
            )
            return Market.from_contract_tuple(raw)

        except BadFunctionCallOutput:
            logger.warning(f"Market #{market_id}: empty response, skipping")
            return None

        except (IndexError, TypeError) as e:
            logger.warning(f"Market #{market_id}: could not decode record: {e}")
            return None

        except CHAIN_ERRORS as e:
            logger.error(f"Market #{market_id}: read failed: {e}")
            return None

    def get_agent_stats(self) -> AgentPortfolioSnapshot:
        """
        Read the agent's portfolio statistics.

        Returns a zeroed snapshot on any failure so the trading workflow
        skips the run instead of trading blind.
        """
        if self.agent_contract is None:
            logger.error("Agent contract address not configured")
            return AgentPortfolioSnapshot()

        try:
            raw = self.agent_contract.functions.getStats().call(block_identifier=self.block_identifier)
            return AgentPortfolioSnapshot.from_contract_tuple(raw)

        except BadFunctionCallOutput:
            logger.warning("Agent contract returned empty data for getStats")
            return AgentPortfolioSnapshot()

        except (IndexError, TypeError) as e:
            logger.error(f"Could not decode agent stats: {e}")
            return AgentPortfolioSnapshot()

        except CHAIN_ERRORS as e:
            logger.error(f"Failed to read agent stats: {e}")
            return AgentPortfolioSnapshot()

    def has_position(self, market_id: int) -> bool:
        """
        Whether the agent already holds a position on a market.

        A non-zero bet index means a bet exists. Read failures are reported
        as "position exists" so an RPC problem can never cause a duplicate bet.
        """
        if self.agent_contract is None:
            logger.error("Agent contract address not configured; assuming position exists")
            return True

        try:
            index = self.agent_contract.functions.marketToBetIndex(market_id).call(
                block_identifier=self.block_identifier
            )
            return int(index) != 0

        except BadFunctionCallOutput:
            return False

        except CHAIN_ERRORS as e:
            logger.error(f"Market #{market_id}: position check failed ({e}); assuming position exists")
            return True


@dataclass(frozen=True)
class Report:
    """
    A prepared on-chain write.

    Attributes:
        receiver: Contract that receives the call
        call_data: Hex-encoded ABI call
        gas_limit: Gas limit for the transaction
    """
    receiver: str
    call_data: str
    gas_limit: int


def prepare_report(receiver: str, call_data: str, gas_limit: int) -> Report:
    """Wrap an encoded call into a Report."""
    return Report(receiver=Web3.to_checksum_address(receiver), call_data=call_data, gas_limit=gas_limit)


class ChainWriter:
    """
    Signs and submits reports.

    Every write is attempted exactly once. The outcome is returned as a
    WriteResult; nothing is raised to the caller.

    Args:
        web3: Connected Web3 instance
        account: Local signing account (web3.eth.account.from_key)
        chain_id: Chain id used for signing
        receipt_timeout: Seconds to wait for the transaction receipt
    """

    def __init__(self, web3: Web3, account: Any, chain_id: int, receipt_timeout: int = 120):
        self.web3 = web3
        self.account = account
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout

    def resolve_market(self, market_address: str, market_id: int, outcome: bool, gas_limit: int) -> WriteResult:
        """Submit resolveMarket(market_id, outcome)."""
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(market_address), abi=PREDICTION_MARKET_ABI
        )
        call_data = contract.encode_abi("resolveMarket", args=[market_id, outcome])
        return self.write_report(prepare_report(market_address, call_data, gas_limit))

    def place_bet(self, agent_address: str, decision: TradeDecision, gas_limit: int) -> WriteResult:
        """Submit placeBet(market_id, side, amount, justification)."""
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(agent_address), abi=MARKET_AGENT_ABI
        )
        call_data = contract.encode_abi(
            "placeBet",
            args=[decision.market_id, decision.side, decision.amount, decision.justification],
        )
        return self.write_report(prepare_report(agent_address, call_data, gas_limit))

    def write_report(self, report: Report) -> WriteResult:
        """
        Sign, submit and await a report.

        Args:
            report: Prepared report

        Returns:
            WriteResult with SUCCESS, REVERTED (with reason if recoverable) or FATAL
        """
        try:
            transaction = {
                "from": self.account.address,
                "to": report.receiver,
                "data": report.call_data,
                "gas": report.gas_limit,
                "gasPrice": self.web3.eth.gas_price,
                "nonce": self.web3.eth.get_transaction_count(self.account.address, "pending"),
                "chainId": self.chain_id,
            }
            signed = self.account.sign_transaction(transaction)
            tx_hash = Web3.to_hex(self.web3.eth.send_raw_transaction(signed.raw_transaction))
            logger.debug(f"Submitted transaction {tx_hash}, waiting for receipt")

            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

        except CHAIN_ERRORS as e:
            logger.error(f"Write to {report.receiver} FAILED: {e}")
            return WriteResult(status=TxStatus.FATAL, error_message=str(e))

        if receipt["status"] == 1:
            logger.info(f"Write successful, TxHash: {tx_hash}")
            return WriteResult(status=TxStatus.SUCCESS, tx_hash=tx_hash)

        reason = self._revert_reason(report, receipt["blockNumber"])
        logger.warning(f"Write REVERTED: {reason or 'unknown reason'} (TxHash: {tx_hash})")
        return WriteResult(status=TxStatus.REVERTED, tx_hash=tx_hash, error_message=reason)

    def _revert_reason(self, report: Report, block_number: int) -> Optional[str]:
        """Replay a reverted call at its block to recover the revert message."""
        try:
            self.web3.eth.call(
                {
                    "from": self.account.address,
                    "to": report.receiver,
                    "data": report.call_data,
                    "gas": report.gas_limit,
                },
                block_identifier=block_number,
            )
        except ContractLogicError as e:
            return str(e)
        except CHAIN_ERRORS as e:
            logger.debug(f"Could not replay reverted call: {e}")
        return None


def build_chain_clients(config: Config) -> tuple[ChainReader, ChainWriter]:
    """
    Wire a reader and writer for the configured chain.

    Args:
        config: Validated configuration

    Returns:
        (reader, writer)
    """
    web3 = connect(config)
    reader = ChainReader(
        web3,
        market_address=config.prediction_market_address,
        agent_address=config.market_agent_address,
    )
    account = web3.eth.account.from_key(config.private_key)
    writer = ChainWriter(web3, account, chain_id=config.chain_id, receipt_timeout=config.receipt_timeout)
    return reader, writer
