"""Weather lookup tool backed by the wttr.in JSON API."""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from yuruppu.ai.tools.base import Tool
from yuruppu.core.context import RequestContext
from yuruppu.errors import ToolError
from yuruppu.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://wttr.in"
DEFAULT_TIMEOUT = 3.0
FORECAST_DAYS = 3
# wttr.in reports eight 3-hourly slots per day; index 4 is 12:00.
_MIDDAY_SLOT = 4


class WeatherArgs(BaseModel):
    location: str = Field(min_length=1, description="City name (e.g. 'Tokyo', '東京', 'Osaka')")


class CurrentWeather(BaseModel):
    temperature_c: float
    feels_like_c: float
    condition: str
    humidity: int
    wind_kmph: float


class DailyForecast(BaseModel):
    date: str
    max_temp_c: float
    min_temp_c: float
    condition: Optional[str] = None


class WeatherResult(BaseModel):
    location: str
    current: CurrentWeather
    forecast: list[DailyForecast] = Field(default_factory=list)


class WeatherTool(Tool[WeatherArgs, WeatherResult]):
    """Current conditions and a short forecast for a location."""

    parameters_model = WeatherArgs
    response_model = WeatherResult

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "get_weather"

    @property
    def description(self) -> str:
        return (
            "Get current weather and a 3-day forecast for a location. "
            "Supports Japanese city names like '東京' as well as 'Tokyo'."
        )

    async def execute(self, ctx: RequestContext, args: WeatherArgs) -> WeatherResult:
        url = f"{self._base_url}/{quote(args.location)}"
        try:
            resp = await self._client.get(url, params={"format": "j1"})
        except httpx.TimeoutException as e:
            raise ToolError("weather service timed out") from e
        except httpx.HTTPError as e:
            raise ToolError("failed to fetch weather data") from e

        if resp.status_code != httpx.codes.OK:
            raise ToolError(f"weather API returned status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ToolError("failed to parse weather data") from e

        return _parse_wttr(args.location, data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_wttr(location: str, data: dict[str, Any]) -> WeatherResult:
    conditions = data.get("current_condition") or []
    if not conditions:
        raise ToolError(f"no weather data available for {location}")

    current = conditions[0]
    try:
        result = WeatherResult(
            location=location,
            current=CurrentWeather(
                temperature_c=float(current["temp_C"]),
                feels_like_c=float(current["FeelsLikeC"]),
                condition=_description(current),
                humidity=int(current["humidity"]),
                wind_kmph=float(current["windspeedKmph"]),
            ),
            forecast=[_daily(day) for day in (data.get("weather") or [])[:FORECAST_DAYS]],
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("weather_payload_unexpected", location=location, error=str(e))
        raise ToolError("failed to parse weather data") from e
    return result


def _daily(day: dict[str, Any]) -> DailyForecast:
    hourly = day.get("hourly") or []
    condition = None
    if hourly:
        condition = _description(hourly[min(_MIDDAY_SLOT, len(hourly) - 1)]) or None
    return DailyForecast(
        date=day["date"],
        max_temp_c=float(day["maxtempC"]),
        min_temp_c=float(day["mintempC"]),
        condition=condition,
    )


def _description(entry: dict[str, Any]) -> str:
    descs = entry.get("weatherDesc") or []
    return descs[0].get("value", "") if descs else ""
