"""
Shared fakes for the scanner tests.

FakeSession answers the BrowsingSession protocol from a static HTML page
(queried with BeautifulSoup) and a list of canned network responses, so the
interpreter, the extraction engine and the scheduler can be exercised without
a browser.
"""
from __future__ import annotations

import asyncio
import json
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from bs4 import BeautifulSoup

from pharmacy_checker.config import ScannerConfig
from pharmacy_checker.engines.base import CapturedResponse
from pharmacy_checker.errors import DeliveryError, NetworkWaitTimeout, SelectorNotFound
from pharmacy_checker.profiles.models import SiteProfile


RESULTS_HTML = """
<html><body>
  <table class="results">
    <tr class="row"><td class="name">Ibalgin</td><td class="price">3,99</td><td class="stock">Skladom</td></tr>
  </table>
  <input name="q" value="">
  <a class="first" data-id="42" href="/p/42">first</a>
</body></html>
"""


class FakeSession:
    def __init__(self, html: str = RESULTS_HTML, responses: Optional[List[CapturedResponse]] = None) -> None:
        self.html = html
        self.responses = list(responses or [])
        self.calls: List[tuple] = []
        self.values: Dict[str, str] = {}
        self._url = "about:blank"
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    def _find(self, selector: str):
        return BeautifulSoup(self.html, "html.parser").select_one(selector)

    def _require(self, selector: str) -> None:
        if self._find(selector) is None:
            raise SelectorNotFound(f"{selector!r} not found")

    async def goto(self, url: str, *, timeout_ms: int) -> None:
        self.calls.append(("goto", url))
        self._url = url

    async def fill(self, selector: str, value: str, *, timeout_ms: int) -> None:
        self._require(selector)
        self.calls.append(("fill", selector, value))
        self.values[selector] = value

    async def type_text(self, selector: str, value: str, *, delay_ms: int, timeout_ms: int) -> None:
        self._require(selector)
        self.calls.append(("type", selector, value))
        self.values[selector] = self.values.get(selector, "") + value

    async def click(self, selector: str, *, timeout_ms: int) -> None:
        self._require(selector)
        self.calls.append(("click", selector))

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None:
        self.calls.append(("wait_for_selector", selector))
        self._require(selector)

    async def wait_for_response(self, pattern: re.Pattern[str], *, timeout_ms: int) -> CapturedResponse:
        self.calls.append(("wait_for_response", pattern.pattern))
        for response in self.responses:
            if response.status == 200 and pattern.search(response.url):
                return response
        raise NetworkWaitTimeout(f"no response matching {pattern.pattern!r}")

    async def get_attribute(self, selector: str, attribute: str, *, timeout_ms: int) -> Optional[str]:
        self._require(selector)
        self.calls.append(("get_attribute", selector, attribute))
        return self._find(selector).get(attribute)

    async def content(self) -> str:
        return self.html


class FakeSessionFactory:
    """Hands out one FakeSession per scan and records open/close."""

    def __init__(self, html: str = RESULTS_HTML, responses: Optional[List[CapturedResponse]] = None) -> None:
        self.html = html
        self.responses = responses
        self.sessions: List[FakeSession] = []
        self.open_count = 0
        self.close_count = 0

    @asynccontextmanager
    async def open(self, profile: SiteProfile):
        session = FakeSession(self.html, self.responses)
        self.sessions.append(session)
        self.open_count += 1
        try:
            yield session
        finally:
            session.closed = True
            self.close_count += 1


class HangingSessionFactory(FakeSessionFactory):
    """Sessions whose navigation never finishes, for cancellation tests."""

    @asynccontextmanager
    async def open(self, profile: SiteProfile):
        async with super().open(profile) as session:
            async def hang(url: str, *, timeout_ms: int) -> None:
                await asyncio.Event().wait()

            session.goto = hang
            yield session


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.payloads: List[Dict[str, Any]] = []
        self.closed = False

    async def deliver(self, payload: Dict[str, Any]) -> None:
        self.payloads.append(payload)
        if self.fail:
            raise DeliveryError("backend returned 503", status=503)

    async def close(self) -> None:
        self.closed = True


def make_profile(**overrides: Any) -> SiteProfile:
    data: Dict[str, Any] = {
        "id": "testpharm",
        "name": "Test Pharmacy",
        "rateLimitSeconds": 0,
        "navigationFlow": [
            {"action": "navigate", "url": "https://pharmacy.test/search"},
            {"action": "wait_for_selector", "selector": "table.results"},
        ],
        "extraction": {
            "iterateRows": "tr.row",
            "fields": {
                "name": {"selector": "td.name"},
                "priceText": {"selector": "td.price"},
                "availabilityText": {"selector": "td.stock"},
            },
        },
    }
    data.update(overrides)
    return SiteProfile.model_validate(data)


def write_profile(directory: Path, filename: str, data: Dict[str, Any]) -> Path:
    path = directory / filename
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def profile() -> SiteProfile:
    return make_profile()


@pytest.fixture
def config(tmp_path: Path) -> ScannerConfig:
    profiles_dir = tmp_path / "profiles"
    profiles_dir.mkdir()
    return ScannerConfig(
        profiles_dir=str(profiles_dir),
        products=["Ibalgin"],
        run_once=True,
        default_rate_limit_seconds=0,
        payload_log_path=str(tmp_path / "state" / "sent_payloads.ndjson"),
        hash_state_path="",
    )
