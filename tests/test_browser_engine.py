import asyncio
import re

import pytest

from conftest import make_profile
from pharmacy_checker.config import ScannerConfig
from pharmacy_checker.engines import browser_engine
from pharmacy_checker.engines.browser_engine import PlaywrightSession, PlaywrightSessionFactory
from pharmacy_checker.errors import NetworkWaitTimeout


class FakeResponse:
    def __init__(self, url, status=200, body="{}"):
        self.url = url
        self.status = status
        self._body = body

    async def text(self):
        return self._body


class FakePage:
    url = "https://pharmacy.test/"

    def __init__(self):
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    def emit(self, response):
        self.handlers["response"](response)


@pytest.fixture
def factory(monkeypatch):
    monkeypatch.setattr(browser_engine, "configure_browsers_path", lambda: None)
    return PlaywrightSessionFactory(ScannerConfig(headless=True))


@pytest.mark.asyncio
async def test_response_seen_before_the_wait_is_not_missed():
    page = FakePage()
    session = PlaywrightSession(page)
    page.emit(FakeResponse("https://pharmacy.test/static/app.js"))
    page.emit(FakeResponse("https://pharmacy.test/api/public/product/7/availability", status=304))
    page.emit(FakeResponse("https://pharmacy.test/api/public/product/7/availability", body='{"stock": 3}'))

    captured = await session.wait_for_response(re.compile(r"/api/public/product/.+/availability"), timeout_ms=500)

    assert captured.status == 200
    assert captured.text == '{"stock": 3}'


@pytest.mark.asyncio
async def test_wait_for_response_times_out():
    page = FakePage()
    session = PlaywrightSession(page)
    page.emit(FakeResponse("https://pharmacy.test/other"))

    with pytest.raises(NetworkWaitTimeout):
        await session.wait_for_response(re.compile("availability"), timeout_ms=50)


@pytest.mark.asyncio
async def test_unmatched_responses_stay_available_to_later_waits():
    page = FakePage()
    session = PlaywrightSession(page)
    page.emit(FakeResponse("https://pharmacy.test/api/availability", body='{"stock": 1}'))
    page.emit(FakeResponse("https://pharmacy.test/api/search", body='{"hits": 2}'))

    search = await session.wait_for_response(re.compile("search"), timeout_ms=200)
    availability = await session.wait_for_response(re.compile("availability"), timeout_ms=200)

    assert search.text == '{"hits": 2}'
    assert availability.text == '{"stock": 1}'


@pytest.mark.asyncio
async def test_matched_response_is_consumed():
    page = FakePage()
    session = PlaywrightSession(page)
    page.emit(FakeResponse("https://pharmacy.test/api/availability"))

    await session.wait_for_response(re.compile("availability"), timeout_ms=200)

    with pytest.raises(NetworkWaitTimeout):
        await session.wait_for_response(re.compile("availability"), timeout_ms=50)


@pytest.mark.asyncio
async def test_response_arriving_during_the_wait():
    page = FakePage()
    session = PlaywrightSession(page)
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, page.emit, FakeResponse("https://pharmacy.test/other"))
    loop.call_later(0.02, page.emit, FakeResponse("https://pharmacy.test/api/availability", body="[]"))

    captured = await session.wait_for_response(re.compile("availability"), timeout_ms=1000)

    assert captured.text == "[]"


def test_context_options_defaults(factory):
    options = factory.context_options(make_profile())

    assert options["locale"] == "sk-SK"
    assert options["timezone_id"] == "Europe/Bratislava"
    assert options["viewport"] == {"width": 1920, "height": 1080}
    assert "geolocation" not in options
    assert "java_script_enabled" not in options


def test_context_options_geolocation_and_no_js(factory):
    profile = make_profile(
        geolocation={"enable": True, "latitude": 48.1486, "longitude": 17.1077},
        metadata={"requiresJavascript": False},
    )

    options = factory.context_options(profile)

    assert options["geolocation"] == {"latitude": 48.1486, "longitude": 17.1077}
    assert options["permissions"] == ["geolocation"]
    assert options["java_script_enabled"] is False


def test_geolocation_with_origin_is_granted_per_origin(factory):
    profile = make_profile(
        geolocation={"enable": True, "latitude": 48.1, "longitude": 17.1, "origin": "https://www.drmax.sk"},
    )
    assert "permissions" not in factory.context_options(profile)


def test_disabled_geolocation_is_ignored(factory):
    profile = make_profile(geolocation={"enable": False, "latitude": 48.1, "longitude": 17.1})
    assert "geolocation" not in factory.context_options(profile)
