"""
Utility functions for LocalOracle.

This module provides shared helper utilities used across the codebase:
integer rounding that matches the on-chain conventions, fixed-point
formatting, and cleanup of free-text model answers. All functions are pure
helpers with no domain logic.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from localoracle.models import FIXED_POINT_SCALE

# Configure module logger
logger = logging.getLogger(__name__)

# Characters a model may wrap a one-word answer in
_FORMATTING_CHARS = "`*_\"'.!"


def round_half_up(numerator: int, denominator: int) -> int:
    """
    Divide two non-negative integers and round half away from zero.

    Python's round() uses banker's rounding; percentages here must round
    0.5 upwards (30.5 -> 31), so the division is done in integers.

    Args:
        numerator: Non-negative dividend
        denominator: Positive divisor

    Returns:
        Rounded integer quotient

    Raises:
        ValueError: If denominator is not positive
    """
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")

    return (2 * numerator + denominator) // (2 * denominator)


def round_half_up_float(value: float) -> int:
    """Round a non-negative float to the nearest integer, 0.5 rounding up."""
    return int(math.floor(value + 0.5))


def safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """
    Safely convert a value to int with a default fallback.

    Handles None, strings, integers, and floats (floats are rounded half up).
    Booleans are rejected since providers never encode numbers that way.

    Args:
        value: Value to convert
        default: Value returned if conversion fails (default: None)

    Returns:
        Integer value or default if conversion fails
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        return round_half_up_float(value) if value >= 0 else -round_half_up_float(-value)

    if isinstance(value, str):
        try:
            return safe_int(float(value), default)
        except ValueError:
            return default

    return default


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert a value to float with a default fallback.

    NaN and infinities are treated as conversion failures.

    Args:
        value: Value to convert (string, int, float, or None)
        default: Default value if conversion fails (default: 0.0)

    Returns:
        Finite float value or default if conversion fails
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value)
        except ValueError:
            return default
    else:
        return default

    return result if math.isfinite(result) else default


def strip_answer_formatting(text: Optional[str]) -> str:
    """
    Normalize a short free-text model answer.

    Removes surrounding whitespace, markdown code fences, emphasis markers,
    quotes and trailing punctuation, then upper-cases the result, so that
    "```\\nyes.\\n```" becomes "YES".

    Args:
        text: Raw answer text

    Returns:
        Normalized answer, empty string if nothing is left
    """
    if not text or not isinstance(text, str):
        return ""

    cleaned = text.strip()

    # Remove markdown code blocks if present
    cleaned = cleaned.replace("```", "")

    return cleaned.strip().strip(_FORMATTING_CHARS).strip().upper()


def current_utc_timestamp() -> str:
    """
    Get current UTC timestamp as ISO 8601 string.

    Returns:
        ISO 8601 formatted timestamp string (e.g., "2024-01-15T10:30:45.123456+00:00")
    """
    return datetime.now(timezone.utc).isoformat()


def format_usdc(amount: int, decimals: int = 2) -> str:
    """
    Format a 1e6 fixed-point amount as a USDC string.

    Args:
        amount: Fixed-point amount (1 USDC = 1_000_000)
        decimals: Number of decimal places (default: 2)

    Returns:
        Formatted string (e.g., "15.00 USDC")
    """
    return f"{amount / FIXED_POINT_SCALE:,.{decimals}f} USDC"


def format_percentage(value: Optional[int]) -> str:
    """Format an integer percentage, or "N/A" when the value is missing."""
    if value is None:
        return "N/A"
    return f"{value}%"


def format_signed_pp(value: int) -> str:
    """Format a signed percentage-point value (e.g., "+30 pp", "-21 pp")."""
    return f"{value:+d} pp"
