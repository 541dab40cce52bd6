from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .base import RowResults, ScanResult, ScanRow, ScanStatus, SingleResult
from .extraction import AVAILABILITY_FIELDS, NAME_FIELDS, PRICE_FIELDS, first_present
from ..profiles.models import SiteProfile
from ..utils.parsing import classify_availability, is_relevant, parse_price, slugify

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """One normalized (site, row, product) reading, ready for change detection."""
    key: str
    pharmacy_id: str
    product: str
    status: ScanStatus
    price: Optional[Decimal]
    details: Optional[Dict[str, Any]]

    def to_payload(self, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
        ts = timestamp or datetime.now(timezone.utc)
        return {
            "pharmacyId": self.pharmacy_id,
            "product": self.product,
            "timestamp": ts.isoformat().replace("+00:00", "Z"),
            "status": self.status.value,
            "price": float(self.price) if self.price is not None else None,
            "details": self.details,
        }


def build_observations(profile: SiteProfile, product: str, result: ScanResult) -> List[Observation]:
    if isinstance(result.payload, RowResults):
        observations = [_row_observation(profile, product, row) for row in result.payload.rows]
        _warn_duplicate_keys(profile, product, observations)
        return observations
    return [_single_observation(profile, product, result, result.payload)]


def _row_observation(profile: SiteProfile, product: str, row: ScanRow) -> Observation:
    pharmacy_id = f"{profile.id}:{slugify(row.name)}"
    details = {
        "sourceName": row.name,
        "priceText": row.price_text,
        "availabilityText": row.availability_text,
        "raw": dict(row.raw),
    }
    return Observation(
        key=f"{pharmacy_id}:{product}",
        pharmacy_id=pharmacy_id,
        product=product,
        status=classify_availability(row.availability_text),
        price=parse_price(row.price_text),
        details=details,
    )


def _single_observation(profile: SiteProfile, product: str, result: ScanResult, payload: SingleResult) -> Observation:
    status = result.status
    price = result.price
    details: Dict[str, Any] = {**payload.fields, **result.captures}
    note = _single_result_problem(payload, product) if status is ScanStatus.OK else None
    if note is not None:
        logger.info("Single result rejected site=%s product=%r: %s", profile.id, product, note)
        status = ScanStatus.NOT_FOUND
        details["note"] = note
    elif status is ScanStatus.OK:
        availability = first_present(payload.fields, AVAILABILITY_FIELDS)
        if availability is not None:
            status = classify_availability(availability)
        if price is None:
            price = parse_price(first_present(payload.fields, PRICE_FIELDS))

    return Observation(
        key=f"{profile.id}:{product}",
        pharmacy_id=profile.id,
        product=product,
        status=status,
        price=price,
        details=details or None,
    )


def _single_result_problem(payload: SingleResult, product: str) -> Optional[str]:
    """A page read as one product must name it and show a price."""
    if not payload.fields:
        return None
    title = first_present(payload.fields, NAME_FIELDS)
    price_text = first_present(payload.fields, PRICE_FIELDS)
    if not title or not price_text:
        return "missing_title_or_price"
    if not is_relevant(title, product):
        return "product_name_mismatch"
    return None


def _warn_duplicate_keys(profile: SiteProfile, product: str, observations: List[Observation]) -> None:
    seen = set()
    for observation in observations:
        if observation.key in seen:
            logger.warning(
                "Rows share key=%s site=%s product=%r; their changes will overwrite each other",
                observation.key,
                profile.id,
                product,
            )
        seen.add(observation.key)
