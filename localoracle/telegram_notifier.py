"""
Telegram notifier for delivering cycle summaries.

This module sends a short summary of each settlement or trading cycle to
Telegram. It uses the python-telegram-bot library for message delivery.
Notification is best-effort: failures are logged and never affect a cycle.
"""

import asyncio
import logging

from telegram import Bot
from telegram.error import NetworkError, TelegramError, TimedOut

from localoracle.config import Config, WORKFLOW_SETTLEMENT
from localoracle.models import CycleSummary, SettlementDecision, TradeDecision
from localoracle.utils import format_signed_pp, format_usdc

# Configure module logger
logger = logging.getLogger(__name__)


def _format_settlement(decision: SettlementDecision) -> str:
    outcome = "YES (rain)" if decision.outcome else "NO (no rain)"
    return f"#{decision.market_id}: {outcome} via {decision.method.value}"


def _format_trade(decision: TradeDecision) -> str:
    side = "YES" if decision.side else "NO"
    return (
        f"#{decision.market_id}: {side} {format_usdc(decision.amount)} "
        f"(edge {format_signed_pp(decision.edge)})"
    )


def format_cycle_summary(summary: CycleSummary) -> str:
    """
    Format a cycle summary into a readable Telegram message.

    Args:
        summary: Completed cycle summary

    Returns:
        Message text ready for Telegram
    """
    title = "Settlement" if summary.workflow == WORKFLOW_SETTLEMENT else "Trading"

    lines = [
        f"*{title} cycle* {summary.scheduled_time.strftime('%Y-%m-%d %H:%M %Z').strip()}",
        f"Status: {summary.status}",
        f"Scanned: {summary.scanned} | Decided: {summary.decided} | "
        f"OK: {summary.succeeded} | Failed: {summary.failed}",
    ]

    if summary.decisions:
        lines.append("")
        for decision in summary.decisions:
            if isinstance(decision, SettlementDecision):
                lines.append(_format_settlement(decision))
            elif isinstance(decision, TradeDecision):
                lines.append(_format_trade(decision))

    return "\n".join(lines)


async def _send(token: str, chat_id, text: str, timeout: int) -> None:
    bot = Bot(token=token)
    async with bot:
        await bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode="Markdown",
            disable_web_page_preview=True,
            read_timeout=timeout,
            write_timeout=timeout,
            connect_timeout=timeout,
        )


def send_telegram_message(message: str, config: Config) -> bool:
    """
    Send a message to Telegram safely with error handling.

    Args:
        message: Message text (Markdown)
        config: Configuration holding the bot token and chat id

    Returns:
        True if message sent successfully, False otherwise
    """
    if not config.telegram_bot_token or not config.telegram_chat_id:
        logger.debug("Telegram not configured (missing token or chat_id)")
        return False

    if not message or not message.strip():
        logger.warning("Empty message, not sending")
        return False

    # Parse chat_id (handle both string and int)
    try:
        chat_id = int(config.telegram_chat_id)
    except ValueError:
        chat_id = config.telegram_chat_id

    try:
        logger.debug(f"Sending message to Telegram chat {chat_id}")
        asyncio.run(_send(config.telegram_bot_token, chat_id, message, config.api_timeout))
        logger.info("Telegram message sent successfully")
        return True

    except TimedOut:
        logger.error(f"Telegram API request timed out after {config.api_timeout}s")
        return False

    except NetworkError as e:
        logger.error(f"Network error sending Telegram message: {e}")
        return False

    except TelegramError as e:
        logger.error(f"Telegram API error: {e}")
        return False


def send_cycle_summary(summary: CycleSummary, config: Config) -> bool:
    """
    Format and send a cycle summary to Telegram.

    Cycles that found nothing to do are not sent.

    Returns:
        True if sent successfully, False otherwise
    """
    if summary.scanned == 0:
        logger.debug(f"Nothing to report for {summary.workflow} cycle ({summary.status})")
        return False

    return send_telegram_message(format_cycle_summary(summary), config)
