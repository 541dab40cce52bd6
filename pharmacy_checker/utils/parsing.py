from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..engines.base import ScanStatus

#: Lower-cased fragments that mean "in stock" on the scanned sites.
IN_STOCK_PHRASES = ("na sklade", "skladom", "áno", ">0")

UNKNOWN_SLUG = "unknown"

_PRICE_CHARS = re.compile(r"[^0-9.,]")
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def classify_availability(text: Optional[str]) -> ScanStatus:
    """
    Map raw availability text to a status.
    Anything without a positive phrase counts as ``not_found``; there is no
    negative confirmation.
    """
    if not text:
        return ScanStatus.NOT_FOUND
    lowered = text.lower()
    if any(phrase in lowered for phrase in IN_STOCK_PHRASES):
        return ScanStatus.OK
    return ScanStatus.NOT_FOUND


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a price such as ``"12,50 €"`` into ``Decimal("12.50")``.
    Keeps digits, dots and commas only, treats commas as decimal points and
    returns None for anything that still does not parse.
    """
    if not text:
        return None
    digits = _PRICE_CHARS.sub("", text).replace(",", ".")
    if not digits:
        return None
    try:
        value = Decimal(digits)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def slugify(name: Optional[str]) -> str:
    """Stable identifier fragment for a result row name."""
    slug = _SLUG_SEPARATORS.sub("-", (name or UNKNOWN_SLUG).lower()).strip("-")
    return slug or UNKNOWN_SLUG


# Dosage-form and unit words dropped from a query before the loose title match.
_QUERY_NOISE = ("tablety", "tablet", "kapsula", "kapsuly", "mg", "ml")


def query_key(query: str) -> str:
    key = query.lower()
    for word in _QUERY_NOISE:
        key = key.replace(word, "")
    return key.strip()


def is_relevant(title: str, query: str) -> bool:
    """
    Whether a single-result page title plausibly belongs to the searched product.
    Either string containing the other is a match; otherwise the query stripped
    of dosage words must be at least 4 characters and appear in the title.
    """
    title_lower = title.lower()
    query_lower = query.lower()
    if query_lower in title_lower or title_lower in query_lower:
        return True
    key = query_key(query)
    return len(key) >= 4 and key in title_lower
