"""Open-Meteo client implementing the location search and forecast operations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Self

import aiohttp

from weathergate.error import GatewayError
from weathergate.weather.codes import translate_code

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

MAX_LOCATIONS = 5
FORECAST_HOURS = 12
FORECAST_DAYS = 7


class OpenMeteoService:
    """Weather service backed by the Open-Meteo geocoding and forecast APIs.

    Any transport or parse failure surfaces as ``GatewayError.unavailable()``;
    the cause is logged here and nowhere else.
    """

    def __init__(
        self,
        *,
        geocoding_url: str = GEOCODING_URL,
        forecast_url: str = FORECAST_URL,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.geocoding_url = geocoding_url
        self.forecast_url = forecast_url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this service created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def search_location(self, city: str) -> list[dict[str, Any]]:
        """Search for up to five locations matching ``city``."""
        params = {"name": city, "count": MAX_LOCATIONS, "language": "en", "format": "json"}
        data = await self._get_json(self.geocoding_url, params)
        try:
            results = data.get("results") or []
            return [
                {
                    "name": result["name"],
                    "country": result.get("country"),
                    "lat": result["latitude"],
                    "lon": result["longitude"],
                }
                for result in results[:MAX_LOCATIONS]
            ]
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning("Malformed geocoding response for %r: %s", city, e)
            raise GatewayError.unavailable() from e

    async def get_complete_forecast(self, latitude: float, longitude: float) -> dict[str, Any]:
        """Current conditions, the next 12 hours and the next 7 days at a point."""
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m,weather_code,relative_humidity_2m,wind_speed_10m",
            "hourly": "temperature_2m,weather_code,precipitation_probability",
            "daily": "weather_code,temperature_2m_max,temperature_2m_min",
            "timezone": "auto",
            "forecast_days": FORECAST_DAYS,
        }
        data = await self._get_json(self.forecast_url, params)
        try:
            return build_forecast(data)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed forecast response for (%s, %s): %s", latitude, longitude, e)
            raise GatewayError.unavailable() from e

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        query = {key: str(value) for key, value in params.items()}
        try:
            async with self._session.get(
                url,
                params=query,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Request to %s failed: %s", url, e)
            raise GatewayError.unavailable() from e

        if not isinstance(data, dict):
            logger.warning("Unexpected payload from %s: %s", url, type(data).__name__)
            raise GatewayError.unavailable()
        return data


def build_forecast(data: dict[str, Any]) -> dict[str, Any]:
    """Remap an Open-Meteo forecast payload.

    Hourly entries are kept when they fall in the half-open window
    ``[0, 12)`` hours after the current-conditions timestamp; daily entries
    are the first seven supplied.
    """
    current = data["current"]
    hourly = data["hourly"]
    daily = data["daily"]

    now = datetime.fromisoformat(current["time"])
    next_hours = []
    for index, time in enumerate(hourly["time"]):
        hours_ahead = (datetime.fromisoformat(time) - now).total_seconds() / 3600
        if 0 <= hours_ahead < FORECAST_HOURS:
            code = hourly["weather_code"][index]
            next_hours.append(
                {
                    "time": time,
                    "temperature": hourly["temperature_2m"][index],
                    "weather": translate_code(code),
                    "weather_code": code,
                    "precipitation_probability": hourly["precipitation_probability"][index],
                }
            )

    next_days = []
    for index, date in enumerate(daily["time"][:FORECAST_DAYS]):
        code = daily["weather_code"][index]
        next_days.append(
            {
                "date": date,
                "weather": translate_code(code),
                "weather_code": code,
                "temperature_max": daily["temperature_2m_max"][index],
                "temperature_min": daily["temperature_2m_min"][index],
            }
        )

    return {
        "current": {
            "time": current["time"],
            "temperature": current["temperature_2m"],
            "weather": translate_code(current["weather_code"]),
            "weather_code": current["weather_code"],
            "humidity": current["relative_humidity_2m"],
            "wind_speed": current["wind_speed_10m"],
        },
        "next_12_hours": next_hours,
        "next_7_days": next_days,
    }
