from __future__ import annotations

import logging

from .base import ScanResult, SessionFactory
from .extraction import ExtractionEngine
from .navigator import NavigationInterpreter
from ..errors import NavigationError
from ..profiles.models import SiteProfile

logger = logging.getLogger(__name__)


class SiteScanner:
    """Navigation followed by extraction: one ScanResult per (site, product)."""

    def __init__(self, interpreter: NavigationInterpreter, engine: ExtractionEngine | None = None) -> None:
        self.interpreter = interpreter
        self.engine = engine or ExtractionEngine()

    @classmethod
    def from_factory(cls, factory: SessionFactory) -> "SiteScanner":
        return cls(NavigationInterpreter(factory))

    async def scan(self, profile: SiteProfile, product: str) -> ScanResult:
        try:
            snapshot = await self.interpreter.run(profile, product)
        except NavigationError as exc:
            logger.warning("Scan failed site=%s product=%r error=%s: %s", profile.id, product, type(exc).__name__, exc)
            return ScanResult.failed(str(exc), type(exc).__name__)

        result = self.engine.extract(snapshot, profile.extraction)
        logger.info("Scanned site=%s product=%r status=%s", profile.id, product, result.status.value)
        return result
