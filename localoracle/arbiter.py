"""
AI arbitration for disagreeing weather sources using Claude.

When both weather providers return usable readings that disagree on whether
it is raining, this module asks Claude for a single-word YES/NO verdict. The
request is executed redundantly and only an identical verdict across all
runs is accepted.

Any failure (missing key, transport error, non-2xx response, unparsable
answer, or runs that disagree) falls back to provider A's (OpenWeatherMap)
raw reading. The fallback is logged and recorded on the result.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from localoracle.consensus import IdenticalAggregation, RedundantExecutor
from localoracle.models import Market, WeatherReading
from localoracle.utils import strip_answer_formatting

# Configure module logger
logger = logging.getLogger(__name__)


ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ArbitrationResult:
    """
    Verdict on a disagreement.

    Attributes:
        outcome: True if it is judged to be raining
        fallback_used: True if the verdict is provider A's reading rather than the model's
        reason: Why the fallback was used, empty when the model answered
    """
    outcome: bool
    fallback_used: bool = False
    reason: str = ""


def parse_verdict(text: Optional[str]) -> Optional[bool]:
    """
    Parse a YES/NO answer.

    Args:
        text: Raw answer text from the model

    Returns:
        True for YES, False for NO, None for anything else
    """
    answer = strip_answer_formatting(text)
    if answer == "YES":
        return True
    if answer == "NO":
        return False
    return None


def build_arbitration_prompt(
    market: Market,
    primary: WeatherReading,
    secondary: WeatherReading,
) -> str:
    """
    Build the deterministic disagreement prompt.

    Args:
        market: Market being settled
        primary: Reading from provider A
        secondary: Reading from provider B

    Returns:
        Prompt string
    """
    return f"""You are a weather oracle adjudicator for a blockchain prediction market. Two weather data sources disagree and you must determine the correct outcome.

Market question: "{market.question}"
Location: {market.latitude:.4f}, {market.longitude:.4f}

SOURCE 1 - {primary.source}:
  Condition: {primary.description} (code: {primary.condition_code})
  Rain detected: {str(primary.is_raining).lower()}

SOURCE 2 - {secondary.source}:
  Condition: {secondary.description} (code: {secondary.condition_code})
  Rain detected: {str(secondary.is_raining).lower()}

Based on the condition descriptions and codes, is it currently raining at this location? Consider:
- The specific condition descriptions (drizzle, mist, overcast vs actual rain)
- Weather code severity and specificity
- Which source's classification better matches the market question

Respond with EXACTLY one word: YES or NO"""


class AIArbiter:
    """
    Breaks ties between two disagreeing weather readings.

    Args:
        api_key: Anthropic API key; without one every arbitration falls back
        model: Claude model name
        executor: Redundant executor used for the verdict request
        timeout: Request timeout in seconds
        max_tokens: Completion budget (a one-word answer needs very few)
        session: Optional requests session
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        executor: RedundantExecutor,
        timeout: int = 30,
        max_tokens: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.executor = executor
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    def arbitrate(
        self,
        market: Market,
        primary: WeatherReading,
        secondary: WeatherReading,
    ) -> ArbitrationResult:
        """
        Decide whether it is raining when the two providers disagree.

        Args:
            market: Market being settled
            primary: Available reading from provider A (the fallback source)
            secondary: Available reading from provider B

        Returns:
            ArbitrationResult carrying the verdict and whether the fallback was used
        """
        logger.info(f"Sources disagree on market {market.id}, calling Claude to adjudicate")

        if not self.api_key:
            return self._fallback(primary, "ANTHROPIC_API_KEY not configured")

        prompt = build_arbitration_prompt(market, primary, secondary)
        verdict = self.executor.run(self._ask, IdenticalAggregation(), prompt)

        if verdict is None:
            return self._fallback(primary, "no agreed verdict from Claude")

        logger.info(f"AI verdict for market {market.id}: {'YES (raining)' if verdict else 'NO (not raining)'}")
        return ArbitrationResult(outcome=verdict)

    def _fallback(self, primary: WeatherReading, reason: str) -> ArbitrationResult:
        logger.warning(
            f"Arbitration unavailable ({reason}); falling back to {primary.source}: "
            f"{'YES' if primary.is_raining else 'NO'}"
        )
        return ArbitrationResult(outcome=primary.is_raining, fallback_used=True, reason=reason)

    def _ask(self, prompt: str) -> Optional[bool]:
        """
        Send one verdict request.

        Returns:
            Parsed verdict, or None on transport or parse failure
        """
        response_text = self._call_claude_api(prompt)
        if response_text is None:
            return None

        verdict = parse_verdict(response_text)
        if verdict is None:
            logger.warning(f"Unparsable arbitration answer: {response_text[:100]!r}")
        return verdict

    def _call_claude_api(self, prompt: str) -> Optional[str]:
        """
        Call the Anthropic Messages API.

        Args:
            prompt: Arbitration prompt

        Returns:
            Response text, or None on failure
        """
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": prompt
                }
            ],
        }

        try:
            logger.debug(f"Calling Claude API with model {self.model}")

            response = self.session.post(
                ANTHROPIC_MESSAGES_URL,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )

            response.raise_for_status()

            data = response.json()

            content = data.get("content") if isinstance(data, dict) else None
            if isinstance(content, list) and content and isinstance(content[0], dict):
                text = content[0].get("text")
                if isinstance(text, str):
                    return text

            logger.warning("Unexpected Claude API response structure")
            logger.debug(f"Response data: {json.dumps(data)[:500]}")
            return None

        except Timeout:
            logger.error(f"Claude API request timed out after {self.timeout}s")
            return None

        except ConnectionError as e:
            logger.error(f"Connection error calling Claude API: {e}")
            return None

        except ValueError as e:
            logger.error(f"Failed to parse Claude API response: {e}")
            return None

        except RequestException as e:
            logger.error(f"Claude API request failed: {e}")
            if hasattr(e, "response") and e.response is not None:
                logger.error(f"Response status: {e.response.status_code}")
                logger.debug(f"Response text: {e.response.text[:500]}")
            return None
