import asyncio
import datetime
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from bs4 import BeautifulSoup
from google.genai import types
from loguru import logger

from ..models import ToolCallRequest, ToolCallResult
from .config import AppSettings, LANGUAGE_NAMES
from .errors import ConfigurationError

# handler(arguments, language) -> JSON-serializable payload
ToolHandler = Callable[[Dict[str, Any], str], Awaitable[Dict[str, Any]]]

OPEN_METEO_GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
OPEN_METEO_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather interpretation codes used by Open-Meteo
WEATHER_CODE_CONDITIONS = {
    0: "Clear",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Rain",
    65: "Heavy rain",
    66: "Freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow",
    73: "Snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Rain showers",
    81: "Heavy rain showers",
    82: "Violent rain showers",
    85: "Snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with heavy hail",
}

# Timezone assumed for the clock tool when the model does not pass one
LANGUAGE_DEFAULT_TIMEZONES = {
    "ko": "Asia/Seoul",
    "en": "UTC",
    "es": "Europe/Madrid",
    "fr": "Europe/Paris",
}

# str.format templates; non-ASCII text stays out of strftime
LOCALIZED_TIME_FORMATS = {
    "ko": "{0:%Y}년 {0:%m}월 {0:%d}일 {0:%H}시 {0:%M}분",
    "en": "{0:%A}, {0:%B} {0:%d}, {0:%Y} {0:%H}:{0:%M}",
    "es": "{0:%d}/{0:%m}/{0:%Y} {0:%H}:{0:%M}",
    "fr": "{0:%d}/{0:%m}/{0:%Y} {0:%H}:{0:%M}",
}


class ToolRegistry:
    """
    Maps tool names to async handlers and their function declarations.

    Validated on construction: names are unique, each declaration carries the
    name it is registered under, and every handler is a coroutine function.
    """

    def __init__(self):
        self._handlers: Dict[str, ToolHandler] = {}
        self._declarations: Dict[str, types.FunctionDeclaration] = {}

    def register(self, declaration: types.FunctionDeclaration, handler: ToolHandler) -> None:
        name = declaration.name
        if not name:
            raise ConfigurationError("Tool declaration without a name")
        if name in self._handlers:
            raise ConfigurationError(f"Tool '{name}' is registered twice")
        if not inspect.iscoroutinefunction(handler):
            raise ConfigurationError(f"Handler for tool '{name}' must be an async function")
        self._handlers[name] = handler
        self._declarations[name] = declaration
        logger.debug(f"Registered tool '{name}'")

    @property
    def names(self) -> List[str]:
        return list(self._handlers)

    @property
    def declarations(self) -> List[types.FunctionDeclaration]:
        return list(self._declarations.values())

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(self, request: ToolCallRequest, language: str) -> ToolCallResult:
        """Runs one tool call. Never raises, failures become error payloads."""
        handler = self._handlers.get(request.name)
        if handler is None:
            logger.warning(f"Model requested unknown tool '{request.name}'")
            return ToolCallResult.failure(request.name, f"Unknown tool '{request.name}'", id=request.id)

        logger.info(f"Calling tool '{request.name}' with {request.arguments}")
        try:
            payload = await handler(dict(request.arguments), language)
        except Exception as e:
            logger.error(f"Tool '{request.name}' failed: {e}")
            return ToolCallResult.failure(request.name, str(e) or type(e).__name__, id=request.id)

        if not isinstance(payload, dict):
            payload = {"result": payload}
        logger.debug(f"Tool '{request.name}' returned: {str(payload)[:200]}")
        return ToolCallResult(name=request.name, payload=payload, id=request.id)


# --- Providers ---

def _get_json(url: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    response = requests.get(url, params=params, timeout=timeout, headers={"Accept": "application/json"})
    response.raise_for_status()
    return response.json()


def make_weather_handler(timeout: float) -> ToolHandler:
    async def get_weather(args: Dict[str, Any], language: str) -> Dict[str, Any]:
        location = str(args.get("location") or "").strip()
        if not location:
            return {"error": "A location is required"}

        try:
            geo = await asyncio.to_thread(
                _get_json,
                OPEN_METEO_GEOCODING_URL,
                {"name": location, "count": 1, "language": language, "format": "json"},
                timeout,
            )
        except requests.exceptions.RequestException as e:
            return {"error": f"Weather service unreachable: {e}"}

        places = geo.get("results") or []
        if not places:
            return {"error": f"Unknown location '{location}'"}
        place = places[0]

        try:
            forecast = await asyncio.to_thread(
                _get_json,
                OPEN_METEO_FORECAST_URL,
                {
                    "latitude": place["latitude"],
                    "longitude": place["longitude"],
                    "current": "temperature_2m,relative_humidity_2m,weather_code,wind_speed_10m",
                    "timezone": "auto",
                },
                timeout,
            )
        except requests.exceptions.RequestException as e:
            return {"error": f"Weather service unreachable: {e}"}

        current = forecast.get("current") or {}
        if "temperature_2m" not in current:
            return {"error": f"No current weather available for '{location}'"}
        code = current.get("weather_code")
        return {
            "location": place.get("name", location),
            "country": place.get("country"),
            "temperature": current.get("temperature_2m"),
            "unit": (forecast.get("current_units") or {}).get("temperature_2m", "°C"),
            "condition": WEATHER_CODE_CONDITIONS.get(code, "Unknown"),
            "humidity": current.get("relative_humidity_2m"),
            "wind_speed": current.get("wind_speed_10m"),
            "observed_at": current.get("time"),
        }

    return get_weather


async def get_current_time(args: Dict[str, Any], language: str) -> Dict[str, Any]:
    tz_name = str(args.get("timezone") or LANGUAGE_DEFAULT_TIMEZONES.get(language, "UTC"))
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return {"error": f"Unknown timezone '{tz_name}'"}
    now = datetime.datetime.now(tz)
    return {
        "iso": now.isoformat(timespec="seconds"),
        "timezone": tz_name,
        "weekday": now.strftime("%A"),
        "formatted": LOCALIZED_TIME_FORMATS.get(language, "{0:%Y}-{0:%m}-{0:%d} {0:%H}:{0:%M}").format(now),
        "language": LANGUAGE_NAMES.get(language, language),
    }


# Elements that never hold readable page text
NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


def parse_html_page(markup: str) -> Tuple[str, str]:
    """Returns the (title, readable text) of an HTML document."""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(NON_CONTENT_TAGS):
        element.decompose()

    title = ""
    if soup.title is not None:
        title = soup.title.get_text(strip=True)
        soup.title.decompose()

    text = " ".join(soup.get_text(separator=" ").split())
    return title, text


def make_page_fetch_handler(timeout: float, max_chars: int) -> ToolHandler:
    async def fetch_page_content(args: Dict[str, Any], language: str) -> Dict[str, Any]:
        url = str(args.get("url") or "").strip()
        if not url.startswith(("http://", "https://")):
            return {"error": f"Not an http(s) URL: '{url}'"}
        try:
            response = await asyncio.to_thread(
                requests.get, url, timeout=timeout, headers={"User-Agent": "gemini-messenger"}
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            return {"error": f"Could not fetch page: {e}"}

        title, text = parse_html_page(response.text)
        truncated = len(text) > max_chars
        return {
            "url": url,
            "title": title,
            "content": text[:max_chars],
            "truncated": truncated,
        }

    return fetch_page_content


def default_registry(app_settings: AppSettings) -> ToolRegistry:
    """Registry with the weather, clock and page fetcher tools."""
    registry = ToolRegistry()
    registry.register(
        types.FunctionDeclaration(
            name="get_weather",
            description="Get the current weather for a city or place.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "location": types.Schema(type=types.Type.STRING, description="City or place name, e.g. Seoul"),
                },
                required=["location"],
            ),
        ),
        make_weather_handler(app_settings.tool_http_timeout),
    )
    registry.register(
        types.FunctionDeclaration(
            name="get_current_time",
            description="Get the current date and time.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "timezone": types.Schema(
                        type=types.Type.STRING,
                        description="IANA timezone such as Asia/Seoul. Defaults to the user's region.",
                    ),
                },
            ),
        ),
        get_current_time,
    )
    registry.register(
        types.FunctionDeclaration(
            name="fetch_page_content",
            description="Fetch the readable text of a web page.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "url": types.Schema(type=types.Type.STRING, description="Absolute http(s) URL"),
                },
                required=["url"],
            ),
        ),
        make_page_fetch_handler(app_settings.tool_http_timeout, app_settings.page_fetch_max_chars),
    )
    return registry


__all__ = [
    "ToolHandler",
    "ToolRegistry",
    "get_current_time",
    "make_weather_handler",
    "make_page_fetch_handler",
    "parse_html_page",
    "default_registry",
]
