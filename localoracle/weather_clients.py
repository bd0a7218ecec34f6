"""
Weather provider clients.

Two independent providers are queried for every market:

- OpenWeatherMap (provider A): current conditions classified by condition
  code range, and a 3-hourly forecast whose precipitation probability is
  averaged over the next ~12 hours.
- WeatherAPI (provider B): current conditions classified by an explicit
  allow-list of rain codes, and a daily chance-of-rain forecast.

Clients never raise. Network errors, non-2xx responses and malformed
payloads all produce an unavailable reading.
"""

import logging
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from localoracle.models import ForecastReading, WeatherReading
from localoracle.utils import round_half_up_float, safe_float, safe_int

# Configure module logger
logger = logging.getLogger(__name__)


OWM_SOURCE = "OpenWeatherMap"
OWM_FORECAST_SOURCE = "OWM-Forecast"
WEATHERAPI_SOURCE = "WeatherAPI"
WEATHERAPI_FORECAST_SOURCE = "WeatherAPI-Forecast"

# 4 slots x 3 h = 12 h forecast horizon
OWM_FORECAST_SLOTS = 4

# WeatherAPI codes meaning rain: patchy/light rain and drizzle, rain
# intensities, freezing rain, rain showers, thundery rain.
# https://www.weatherapi.com/docs/weather_conditions.json
WEATHERAPI_RAIN_CODES = frozenset({
    1063, 1150, 1153, 1168, 1171,
    1180, 1183, 1186, 1189, 1192, 1195,
    1198, 1201,
    1240, 1243, 1246,
    1273, 1276,
})


def is_owm_rain(code: int) -> bool:
    """
    Classify an OpenWeatherMap condition code.

    2xx thunderstorm, 3xx drizzle, 5xx rain and 6xx snow all count as
    precipitation.
    """
    return 200 <= code < 700


def is_weatherapi_rain(code: int) -> bool:
    """Classify a WeatherAPI condition code against the rain allow-list."""
    return code in WEATHERAPI_RAIN_CODES


class WeatherClient:
    """
    Base class holding the HTTP plumbing shared by both providers.

    Args:
        api_key: Provider credential
        timeout: Request timeout in seconds
        session: Optional requests session (a new one is created if omitted)
    """

    name = "weather"

    def __init__(
        self,
        api_key: Optional[str],
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str, params: dict) -> tuple[Optional[Any], str]:
        """
        GET a JSON document.

        Returns:
            (payload, error) where payload is None on any failure and error is
            a short description suitable for an unavailable reading
        """
        if not self.api_key:
            logger.warning(f"{self.name}: API key not configured")
            return None, "API key not configured"

        try:
            response = self.session.get(
                url,
                params=params,
                timeout=self.timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "LocalOracle/1.0",
                },
            )
            response.raise_for_status()
            return response.json(), ""

        except Timeout:
            logger.error(f"{self.name}: request timed out after {self.timeout}s")
            return None, "timeout"

        except ConnectionError as e:
            logger.error(f"{self.name}: connection error: {e}")
            return None, "connection error"

        except ValueError as e:
            # requests' JSONDecodeError is both a ValueError and a RequestException
            logger.error(f"{self.name}: failed to parse JSON response: {e}")
            return None, "invalid JSON"

        except RequestException as e:
            status = None
            if hasattr(e, "response") and e.response is not None:
                status = e.response.status_code
            logger.error(f"{self.name}: request failed (status={status}): {e}")
            return None, f"API error ({status})" if status else "request failed"


class OpenWeatherMapClient(WeatherClient):
    """Weather provider A."""

    name = OWM_SOURCE
    CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"
    FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"

    def fetch_current(self, lat: float, lng: float) -> WeatherReading:
        """
        Fetch current conditions at a location.

        Args:
            lat: Latitude in degrees
            lng: Longitude in degrees

        Returns:
            WeatherReading, unavailable on any failure
        """
        data, error = self._get_json(
            self.CURRENT_URL,
            {"lat": lat, "lon": lng, "appid": self.api_key},
        )
        if data is None:
            return WeatherReading.unavailable(OWM_SOURCE, error)

        condition = _first(data.get("weather")) if isinstance(data, dict) else None
        code = safe_int(condition.get("id")) if condition else None
        if code is None:
            logger.warning(f"{OWM_SOURCE}: response has no condition code")
            return WeatherReading.unavailable(OWM_SOURCE, "malformed response")

        return WeatherReading(
            source=OWM_SOURCE,
            condition_code=code,
            description=str(condition.get("description") or "unknown"),
            is_raining=is_owm_rain(code),
        )

    def fetch_forecast(self, lat: float, lng: float) -> ForecastReading:
        """
        Fetch the ~12 hour rain probability at a location.

        The precipitation probability ("pop", 0-1) is averaged over the first
        OWM_FORECAST_SLOTS three-hour slots; missing values count as 0.

        Args:
            lat: Latitude in degrees
            lng: Longitude in degrees

        Returns:
            ForecastReading with an integer percentage, unavailable on failure
        """
        data, error = self._get_json(
            self.FORECAST_URL,
            {"lat": lat, "lon": lng, "appid": self.api_key, "cnt": OWM_FORECAST_SLOTS},
        )
        if data is None:
            return ForecastReading.unavailable(OWM_FORECAST_SOURCE, error)

        slots = data.get("list") if isinstance(data, dict) else None
        if not isinstance(slots, list) or not slots:
            return ForecastReading.unavailable(OWM_FORECAST_SOURCE, "empty list")

        slots = [slot for slot in slots[:OWM_FORECAST_SLOTS] if isinstance(slot, dict)]
        if not slots:
            return ForecastReading.unavailable(OWM_FORECAST_SOURCE, "malformed list")

        average_pop = sum(safe_float(slot.get("pop"), 0.0) for slot in slots) / len(slots)
        condition = _first(slots[0].get("weather"))

        return ForecastReading(
            source=OWM_FORECAST_SOURCE,
            rain_probability=round_half_up_float(average_pop * 100),
            description=str((condition or {}).get("description") or "unknown"),
        )


class WeatherAPIClient(WeatherClient):
    """Weather provider B."""

    name = WEATHERAPI_SOURCE
    CURRENT_URL = "https://api.weatherapi.com/v1/current.json"
    FORECAST_URL = "https://api.weatherapi.com/v1/forecast.json"

    def fetch_current(self, lat: float, lng: float) -> WeatherReading:
        data, error = self._get_json(
            self.CURRENT_URL,
            {"key": self.api_key, "q": f"{lat},{lng}"},
        )
        if data is None:
            return WeatherReading.unavailable(WEATHERAPI_SOURCE, error)

        current = data.get("current") if isinstance(data, dict) else None
        condition = current.get("condition") if isinstance(current, dict) else None
        code = safe_int(condition.get("code")) if isinstance(condition, dict) else None
        if code is None:
            logger.warning(f"{WEATHERAPI_SOURCE}: response has no condition code")
            return WeatherReading.unavailable(WEATHERAPI_SOURCE, "malformed response")

        return WeatherReading(
            source=WEATHERAPI_SOURCE,
            condition_code=code,
            description=str(condition.get("text") or "unknown"),
            is_raining=is_weatherapi_rain(code),
        )

    def fetch_forecast(self, lat: float, lng: float) -> ForecastReading:
        """Fetch today's chance of rain (0-100) at a location."""
        data, error = self._get_json(
            self.FORECAST_URL,
            {"key": self.api_key, "q": f"{lat},{lng}", "days": 1},
        )
        if data is None:
            return ForecastReading.unavailable(WEATHERAPI_FORECAST_SOURCE, error)

        forecast = data.get("forecast") if isinstance(data, dict) else None
        first_day = _first(forecast.get("forecastday")) if isinstance(forecast, dict) else None
        day = first_day.get("day") if first_day else None
        if not isinstance(day, dict):
            return ForecastReading.unavailable(WEATHERAPI_FORECAST_SOURCE, "no forecast data")

        chance = safe_int(day.get("daily_chance_of_rain"))
        if chance is None or not 0 <= chance <= 100:
            return ForecastReading.unavailable(WEATHERAPI_FORECAST_SOURCE, "no chance of rain")

        condition = day.get("condition")
        description = condition.get("text") if isinstance(condition, dict) else None

        return ForecastReading(
            source=WEATHERAPI_FORECAST_SOURCE,
            rain_probability=chance,
            description=str(description or "unknown"),
        )


def _first(items: Any) -> Optional[dict]:
    """Return the first element of a list if it is a dict."""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None
