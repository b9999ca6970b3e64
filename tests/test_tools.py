import pytest
import requests
from google.genai import types

from gemini_messenger.models import ToolCallRequest
from gemini_messenger.utils import tools
from gemini_messenger.utils.config import AppSettings
from gemini_messenger.utils.errors import ConfigurationError
from gemini_messenger.utils.tools import (
    ToolRegistry,
    default_registry,
    get_current_time,
    parse_html_page,
    make_page_fetch_handler,
    make_weather_handler,
)


async def echo(args, language):
    return {"args": args, "language": language}


def test_registry_rejects_duplicates_and_sync_handlers():
    registry = ToolRegistry()
    registry.register(types.FunctionDeclaration(name="echo"), echo)

    with pytest.raises(ConfigurationError):
        registry.register(types.FunctionDeclaration(name="echo"), echo)
    with pytest.raises(ConfigurationError):
        registry.register(types.FunctionDeclaration(name="sync"), lambda args, language: {})
    with pytest.raises(ConfigurationError):
        registry.register(types.FunctionDeclaration(), echo)

    assert registry.names == ["echo"]
    assert "echo" in registry and "sync" not in registry


def test_default_registry_declares_all_tools():
    registry = default_registry(AppSettings())
    assert registry.names == ["get_weather", "get_current_time", "fetch_page_content"]
    assert [d.name for d in registry.declarations] == registry.names


@pytest.mark.asyncio
async def test_dispatch_wraps_non_dict_payloads():
    async def answer(args, language):
        return 42

    registry = ToolRegistry()
    registry.register(types.FunctionDeclaration(name="answer"), answer)

    result = await registry.dispatch(ToolCallRequest(name="answer", id="x"), "en")

    assert result.payload == {"result": 42}
    assert result.id == "x"
    assert not result.is_error


@pytest.mark.asyncio
async def test_dispatch_never_raises():
    async def broken(args, language):
        raise KeyError("location")

    registry = ToolRegistry()
    registry.register(types.FunctionDeclaration(name="broken"), broken)

    failed = await registry.dispatch(ToolCallRequest(name="broken"), "en")
    unknown = await registry.dispatch(ToolCallRequest(name="missing"), "en")

    assert failed.is_error
    assert unknown.is_error
    assert "missing" in unknown.payload["error"]


@pytest.mark.asyncio
async def test_clock_with_explicit_timezone():
    payload = await get_current_time({"timezone": "Asia/Seoul"}, "en")

    assert payload["timezone"] == "Asia/Seoul"
    assert payload["iso"].endswith("+09:00")


@pytest.mark.asyncio
async def test_clock_defaults_to_language_region():
    assert (await get_current_time({}, "fr"))["timezone"] == "Europe/Paris"
    korean = await get_current_time({}, "ko")
    assert korean["language"] == "Korean"
    assert korean["formatted"].endswith("분")
    assert "년" in korean["formatted"]


@pytest.mark.asyncio
async def test_clock_unknown_timezone():
    assert "error" in await get_current_time({"timezone": "Mars/Olympus_Mons"}, "en")


@pytest.mark.asyncio
async def test_weather_handler(monkeypatch):
    requested = []

    def fake_get_json(url, params, timeout):
        requested.append(url)
        if url == tools.OPEN_METEO_GEOCODING_URL:
            assert params["name"] == "Seoul"
            return {"results": [{"name": "Seoul", "country": "South Korea", "latitude": 37.57, "longitude": 126.98}]}
        return {
            "current_units": {"temperature_2m": "°C"},
            "current": {
                "time": "2026-01-15T09:00",
                "temperature_2m": 5,
                "relative_humidity_2m": 40,
                "weather_code": 0,
                "wind_speed_10m": 7.2,
            },
        }

    monkeypatch.setattr(tools, "_get_json", fake_get_json)

    payload = await make_weather_handler(5)({"location": "Seoul"}, "en")

    assert requested == [tools.OPEN_METEO_GEOCODING_URL, tools.OPEN_METEO_FORECAST_URL]
    assert payload["temperature"] == 5
    assert payload["condition"] == "Clear"
    assert payload["location"] == "Seoul"
    assert payload["unit"] == "°C"


@pytest.mark.asyncio
async def test_weather_handler_errors(monkeypatch):
    handler = make_weather_handler(5)
    assert "error" in await handler({}, "en")

    monkeypatch.setattr(tools, "_get_json", lambda url, params, timeout: {"results": []})
    assert "Atlantis" in (await handler({"location": "Atlantis"}, "en"))["error"]

    def offline(url, params, timeout):
        raise requests.exceptions.ConnectionError("offline")

    monkeypatch.setattr(tools, "_get_json", offline)
    assert "unreachable" in (await handler({"location": "Seoul"}, "en"))["error"]


def test_parse_html_page():
    markup = (
        "<html><head><title> Cartoons &amp; more </title><style>p{}</style><script>var x;</script></head>"
        "<body><noscript>enable js</noscript><p>Tom &amp; Jerry</p>\n<p>run</p></body></html>"
    )

    assert parse_html_page(markup) == ("Cartoons & more", "Tom & Jerry run")


def test_parse_html_page_without_title():
    assert parse_html_page("<div>plain <b>text</b></div>") == ("", "plain text")


class FakePage:
    def __init__(self, text, status_error=None):
        self.text = text
        self._status_error = status_error

    def raise_for_status(self):
        if self._status_error is not None:
            raise self._status_error


@pytest.mark.asyncio
async def test_page_fetch_truncates(monkeypatch):
    page = "<html><title>News &amp; more</title><body>" + "word " * 100 + "</body></html>"
    monkeypatch.setattr(tools.requests, "get", lambda url, timeout, headers: FakePage(page))

    payload = await make_page_fetch_handler(5, 50)({"url": "https://news.example"}, "en")

    assert payload["title"] == "News & more"
    assert len(payload["content"]) == 50
    assert payload["truncated"] is True
    assert payload["content"].startswith("word word")


@pytest.mark.asyncio
async def test_page_fetch_errors(monkeypatch):
    handler = make_page_fetch_handler(5, 100)
    assert "error" in await handler({"url": "file:///etc/passwd"}, "en")

    error = requests.exceptions.HTTPError("404 Client Error")
    monkeypatch.setattr(tools.requests, "get", lambda url, timeout, headers: FakePage("", status_error=error))
    assert "404" in (await handler({"url": "https://missing.example"}, "en"))["error"]
