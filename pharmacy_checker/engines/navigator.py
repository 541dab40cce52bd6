from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict

from .base import BrowsingSession, SessionFactory, SessionSnapshot
from ..errors import NavigationError, SessionError
from ..profiles.models import (
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    ClickStep,
    ExtractAttributeStep,
    FillStep,
    NavigateStep,
    RunPromptStep,
    SiteProfile,
    WaitForResponseStep,
    WaitForSelectorStep,
    compile_pattern,
)

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT_MS = 15000
WARMUP_TIMEOUT_MS = 10000
WARMUP_PAUSE_SECONDS = (2.0, 4.0)

#: Page fragments served instead of results when a site blocks automated traffic.
BLOCK_MARKERS = ("Error 500", "Error 403", "Access Denied")


class NavigationInterpreter:
    """
    Drives one browsing session through a profile's navigation flow.

    Steps execute strictly in declared order, each mapped to one session
    primitive. The first failing required step aborts the remaining steps and
    its NavigationError propagates; nothing is retried here (the scheduler
    owns retry policy by scanning again next pass). The session is released on
    every exit path because it only lives inside ``factory.open()``.
    """

    def __init__(self, factory: SessionFactory) -> None:
        self.factory = factory

    async def run(self, profile: SiteProfile, query: str) -> SessionSnapshot:
        captures: Dict[str, Any] = {}
        async with self.factory.open(profile) as session:
            await self._open_search(session, profile, query)

            for index, step in enumerate(profile.navigation_flow or []):
                if step.comment:
                    logger.debug("site=%s step=%d action=%s: %s", profile.id, index, step.action, step.comment)
                try:
                    await self._execute(session, profile, step, query, captures)
                except NavigationError as exc:
                    exc.at_step(index, step.action)
                    if step.is_required:
                        logger.info("Navigation aborted site=%s product=%r: %s", profile.id, query, exc)
                        raise
                    logger.info("Optional step missed site=%s product=%r: %s", profile.id, query, exc)
                    captures.setdefault("navigationWarnings", []).append(str(exc))

            html = await session.content()
            return SessionSnapshot(url=session.url, html=html, captures=captures)

    # ---- Entry navigation ----

    async def _open_search(self, session: BrowsingSession, profile: SiteProfile, query: str) -> None:
        url = profile.render_search_url(query)
        if not url:
            return

        if profile.warmup_homepage:
            homepage = profile.homepage_url(query)
            try:
                await session.goto(homepage, timeout_ms=WARMUP_TIMEOUT_MS)
                await asyncio.sleep(random.uniform(*WARMUP_PAUSE_SECONDS))
            except NavigationError as exc:
                logger.debug("Homepage warm-up failed site=%s: %s", profile.id, exc)

        await session.goto(url, timeout_ms=SEARCH_TIMEOUT_MS)
        await self._check_blocked(session)

    async def _check_blocked(self, session: BrowsingSession) -> None:
        html = await session.content()
        if any(marker in html for marker in BLOCK_MARKERS):
            raise SessionError(f"site returned an error page at {session.url} (possible bot detection)")

    # ---- Steps ----

    async def _execute(
        self,
        session: BrowsingSession,
        profile: SiteProfile,
        step: Any,
        query: str,
        captures: Dict[str, Any],
    ) -> None:
        handler = getattr(self, f"_step_{step.action}")
        await handler(session, profile, step, query, captures)

    async def _step_navigate(self, session, profile, step: NavigateStep, query, captures) -> None:
        await session.goto(step.url, timeout_ms=step.timeout_ms or DEFAULT_NAVIGATION_TIMEOUT_MS)
        await self._check_blocked(session)

    async def _step_fill(self, session, profile, step: FillStep, query, captures) -> None:
        timeout_ms = step.timeout_ms or profile.scan_timeout_ms
        value = step.resolve_value(query)
        if step.clear_first:
            await session.fill(step.selector, "", timeout_ms=timeout_ms)
        try:
            await session.type_text(step.selector, value, delay_ms=step.type_delay_ms, timeout_ms=timeout_ms)
        except SessionError as exc:
            # Some widgets reject synthetic key presses; setting the value still works.
            logger.debug("Typing failed site=%s selector=%r, filling instead: %s", profile.id, step.selector, exc)
            await session.fill(step.selector, value, timeout_ms=timeout_ms)

    async def _step_click(self, session, profile, step: ClickStep, query, captures) -> None:
        timeout_ms = step.timeout_ms or profile.scan_timeout_ms
        value = None
        if step.extract_attribute is not None:
            # Clicking may navigate away from the element, so read it first.
            value = await session.get_attribute(
                step.selector, step.extract_attribute.attribute, timeout_ms=timeout_ms
            )
        await session.click(step.selector, timeout_ms=timeout_ms)
        if value is not None:
            captures[step.extract_attribute.name] = value

    async def _step_wait_for_selector(self, session, profile, step: WaitForSelectorStep, query, captures) -> None:
        await session.wait_for_selector(step.selector, timeout_ms=step.timeout_ms or profile.scan_timeout_ms)

    async def _step_wait_for_response(self, session, profile, step: WaitForResponseStep, query, captures) -> None:
        pattern = compile_pattern(profile.response_regex(step) or "")
        response = await session.wait_for_response(pattern, timeout_ms=step.timeout_ms or profile.scan_timeout_ms)
        logger.debug("Captured response site=%s url=%s", profile.id, response.url)
        if not response.text:
            return
        if profile.persist_api_json:
            captures[f"{step.capture_name}Raw"] = response.text
        try:
            captures[step.capture_name] = json.loads(response.text)
        except ValueError:
            logger.debug("Response from %s is not JSON; not captured", response.url)

    async def _step_extract_attribute(self, session, profile, step: ExtractAttributeStep, query, captures) -> None:
        value = await session.get_attribute(
            step.selector, step.attribute, timeout_ms=step.timeout_ms or profile.scan_timeout_ms
        )
        if value is not None:
            captures[step.name] = value

    async def _step_run_prompt(self, session, profile, step: RunPromptStep, query, captures) -> None:
        logger.info("Automation hint site=%s: %s", profile.id, step.prompt)
