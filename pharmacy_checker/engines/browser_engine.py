# engines/browser_engine.py
from __future__ import annotations

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import Browser, Page, Playwright, Response, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .base import CapturedResponse
from ..config import ScannerConfig
from ..errors import NavigationTimeout, NetworkWaitTimeout, SelectorNotFound, SessionError
from ..profiles.models import SiteProfile

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
]

EXTRA_HEADERS = {
    "Accept-Language": "sk-SK,sk;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['sk-SK', 'sk', 'en-US', 'en'] });
window.chrome = { runtime: {} };
"""


def app_data_dir() -> Path:
    base = os.getenv("LOCALAPPDATA") or str(Path.home() / ".pharmacy-checker")
    p = Path(base) / "pharmacy-checker"
    p.mkdir(parents=True, exist_ok=True)
    return p


def configure_browsers_path() -> None:
    """Use the app's private browser install when one exists and nothing else is configured."""
    browsers_dir = app_data_dir() / "ms-playwright"
    if browsers_dir.is_dir():
        os.environ.setdefault("PLAYWRIGHT_BROWSERS_PATH", str(browsers_dir))


class PlaywrightSession:
    """BrowsingSession over one Playwright page."""

    def __init__(self, page: Page, *, wait_until: str = "domcontentloaded") -> None:
        self._page = page
        self._wait_until = wait_until
        # Responses seen since page open and not yet claimed by a wait.
        self._backlog: List[Response] = []
        self._arrived = asyncio.Event()
        page.on("response", self._on_response)

    def _on_response(self, response: Response) -> None:
        self._backlog.append(response)
        self._arrived.set()

    def _claim(self, pattern: re.Pattern[str]) -> Optional[Response]:
        for index, response in enumerate(self._backlog):
            if response.status == 200 and pattern.search(response.url):
                return self._backlog.pop(index)
        return None

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, *, timeout_ms: int) -> None:
        try:
            await self._page.goto(url, wait_until=self._wait_until, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(f"navigation to {url} timed out after {timeout_ms} ms") from exc
        except PlaywrightError as exc:
            raise SessionError(f"navigation to {url} failed: {exc}") from exc

    async def fill(self, selector: str, value: str, *, timeout_ms: int) -> None:
        try:
            await self._page.fill(selector, value, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise SelectorNotFound(f"no fillable element for {selector!r}") from exc
        except PlaywrightError as exc:
            raise SessionError(f"fill {selector!r} failed: {exc}") from exc

    async def type_text(self, selector: str, value: str, *, delay_ms: int, timeout_ms: int) -> None:
        try:
            await self._page.locator(selector).first.press_sequentially(value, delay=delay_ms, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise SelectorNotFound(f"no typeable element for {selector!r}") from exc
        except PlaywrightError as exc:
            raise SessionError(f"typing into {selector!r} failed: {exc}") from exc

    async def click(self, selector: str, *, timeout_ms: int) -> None:
        try:
            await self._page.click(selector, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise SelectorNotFound(f"no clickable element for {selector!r}") from exc
        except PlaywrightError as exc:
            raise SessionError(f"click {selector!r} failed: {exc}") from exc

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise SelectorNotFound(f"{selector!r} did not appear within {timeout_ms} ms") from exc
        except PlaywrightError as exc:
            raise SessionError(f"waiting for {selector!r} failed: {exc}") from exc

    async def wait_for_response(self, pattern: re.Pattern[str], *, timeout_ms: int) -> CapturedResponse:
        """
        Return the first 200 response whose URL matches ``pattern``, oldest first.
        Only the matched response is consumed; others stay available to later waits.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        response = self._claim(pattern)
        while response is None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise NetworkWaitTimeout(f"no response matching {pattern.pattern!r} within {timeout_ms} ms")
            self._arrived.clear()
            try:
                await asyncio.wait_for(self._arrived.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                raise NetworkWaitTimeout(
                    f"no response matching {pattern.pattern!r} within {timeout_ms} ms"
                ) from None
            response = self._claim(pattern)

        try:
            text = await response.text()
        except PlaywrightError as exc:
            raise SessionError(f"reading response body of {response.url} failed: {exc}") from exc
        return CapturedResponse(url=response.url, status=response.status, text=text)

    async def get_attribute(self, selector: str, attribute: str, *, timeout_ms: int) -> Optional[str]:
        try:
            return await self._page.get_attribute(selector, attribute, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise SelectorNotFound(f"{selector!r} not found for attribute {attribute!r}") from exc
        except PlaywrightError as exc:
            raise SessionError(f"reading {attribute!r} of {selector!r} failed: {exc}") from exc

    async def content(self) -> str:
        try:
            return await self._page.content()
        except PlaywrightError as exc:
            raise SessionError(f"reading page content failed: {exc}") from exc


class PlaywrightSessionFactory:
    """
    One headless Chromium per scan. The browser is closed on every exit path,
    including task cancellation.
    """

    def __init__(self, config: ScannerConfig) -> None:
        self.config = config
        configure_browsers_path()

    @asynccontextmanager
    async def open(self, profile: SiteProfile) -> AsyncIterator[PlaywrightSession]:
        async with async_playwright() as pw:
            browser = await self._launch(pw)
            try:
                page = await self._new_page(browser, profile)
                yield PlaywrightSession(page, wait_until="networkidle" if profile.is_spa else "domcontentloaded")
            finally:
                try:
                    await browser.close()
                except PlaywrightError as exc:
                    logger.debug("Browser close failed for %s: %r", profile.id, exc)

    async def _launch(self, pw: Playwright) -> Browser:
        try:
            return await pw.chromium.launch(headless=self.config.headless, args=LAUNCH_ARGS)
        except PlaywrightError as exc:
            raise SessionError(f"browser launch failed: {exc}") from exc

    async def _new_page(self, browser: Browser, profile: SiteProfile) -> Page:
        try:
            context = await browser.new_context(**self.context_options(profile))
            geo = profile.geolocation
            if geo is not None and geo.active and geo.origin:
                await context.grant_permissions(["geolocation"], origin=geo.origin)
            page = await context.new_page()
            await page.set_extra_http_headers(EXTRA_HEADERS)
            await page.add_init_script(STEALTH_SCRIPT)
            return page
        except PlaywrightError as exc:
            raise SessionError(f"browser context setup failed: {exc}") from exc

    def context_options(self, profile: SiteProfile) -> Dict[str, Any]:
        cfg = self.config
        options: Dict[str, Any] = {
            "viewport": {"width": 1920, "height": 1080},
            "user_agent": cfg.user_agent,
            "locale": cfg.locale,
            "timezone_id": cfg.timezone_id,
        }
        if profile.metadata is not None and profile.metadata.requires_javascript is False:
            options["java_script_enabled"] = False
        geo = profile.geolocation
        if geo is not None and geo.active:
            options["geolocation"] = {"latitude": geo.latitude, "longitude": geo.longitude}
            if not geo.origin:
                options["permissions"] = ["geolocation"]
        return options
