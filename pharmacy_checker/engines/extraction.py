from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from bs4 import BeautifulSoup, Tag

from .base import RowResults, ScanPayload, ScanResult, ScanRow, ScanStatus, SessionSnapshot, SingleResult
from ..errors import ExtractionError
from ..profiles.models import ExtractionRules, FieldRule

logger = logging.getLogger(__name__)

# Field names (as written in profiles) that feed the well-known row columns.
NAME_FIELDS = ("name", "title")
PRICE_FIELDS = ("price", "priceText")
AVAILABILITY_FIELDS = ("availability", "availabilityText", "stockStatus", "stock")


def first_present(raw: Dict[str, Optional[str]], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def row_from_raw(raw: Dict[str, Optional[str]]) -> ScanRow:
    return ScanRow(
        name=first_present(raw, NAME_FIELDS),
        price_text=first_present(raw, PRICE_FIELDS),
        availability_text=first_present(raw, AVAILABILITY_FIELDS),
        raw=dict(raw),
    )


class ExtractionEngine:
    """
    Applies a profile's extraction rules to the page a navigation flow ended on.

    Values stay raw strings: price parsing and availability classification
    happen in the caller. Failures never escape; they come back as a
    ScanResult with status ``error``.
    """

    def __init__(self, parser: str = "html.parser") -> None:
        self.parser = parser

    def extract(self, snapshot: SessionSnapshot, rules: Optional[ExtractionRules]) -> ScanResult:
        captures = dict(snapshot.captures)
        if rules is None:
            status = ScanStatus.OK if captures else ScanStatus.NOT_FOUND
            return ScanResult(status=status, payload=SingleResult(), captures=captures)

        soup = BeautifulSoup(snapshot.html, self.parser)
        attempts = [("primary", rules)]
        if rules.has_fallback:
            attempts.append(("fallback", rules.fallback()))

        last_error: Optional[Exception] = None
        for label, attempt in attempts:
            try:
                payload = self._apply(soup, attempt)
            except Exception as exc:  # broad catch: a bad selector must not kill the scan
                last_error = exc
                logger.debug("Extraction with %s rules failed on %s: %r", label, snapshot.url, exc)
                continue
            last_error = None
            if payload is not None:
                return ScanResult(status=ScanStatus.OK, payload=payload, captures=captures)
            logger.debug("Extraction with %s rules matched nothing on %s", label, snapshot.url)

        if last_error is not None:
            error = ExtractionError(f"extraction failed on {snapshot.url}: {last_error}")
            return ScanResult.failed(str(error), type(error).__name__, captures)

        note = self._empty_note(soup, rules)
        logger.info("No results on %s (%s)", snapshot.url, note)
        return ScanResult(
            status=ScanStatus.NOT_FOUND,
            payload=SingleResult({"note": note, "pageUrl": snapshot.url}),
            captures=captures,
        )

    # ---- Helpers ----

    def _apply(self, soup: BeautifulSoup, rules: ExtractionRules) -> Optional[ScanPayload]:
        if rules.iterate_rows:
            rows: List[ScanRow] = []
            for element in soup.select(rules.iterate_rows):
                raw = self._capture(element, rules.fields)
                if any(value is not None for value in raw.values()):
                    rows.append(row_from_raw(raw))
            return RowResults(rows) if rows else None

        raw = self._capture(soup, rules.fields)
        if any(value is not None for value in raw.values()):
            return SingleResult(dict(raw))
        return None

    def _capture(self, scope: Union[BeautifulSoup, Tag], fields: Dict[str, FieldRule]) -> Dict[str, Optional[str]]:
        out: Dict[str, Optional[str]] = {}
        for name, rule in fields.items():
            element = scope.select_one(rule.selector)
            if element is None:
                out[name] = None
            elif rule.type == "attribute":
                value = element.get(rule.attribute_name)
                if isinstance(value, list):  # multi-valued attributes such as class
                    value = " ".join(value)
                out[name] = value
            else:
                out[name] = " ".join(element.get_text(" ").split())
        return out

    def _empty_note(self, soup: BeautifulSoup, rules: ExtractionRules) -> str:
        if rules.no_results_selector:
            try:
                if soup.select_one(rules.no_results_selector) is not None:
                    return "no_results_selector_matched"
            except Exception as exc:  # same policy as field selectors
                logger.debug("noResultsSelector %r failed: %r", rules.no_results_selector, exc)
        text = soup.get_text(" ").lower()
        if any(phrase.lower() in text for phrase in rules.no_results_phrases):
            return "no_results_text_found"
        return "no_rows" if rules.iterate_rows else "missing_fields"
