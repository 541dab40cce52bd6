from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from aiohttp import ClientSession

from ..config import ScannerConfig
from ..utils.http import create_session, post_json

logger = logging.getLogger(__name__)

AVAILABILITY_PATH = "/internal/availability"


class BackendSink:
    """POSTs availability observations to the backend's internal endpoint."""

    def __init__(self, config: ScannerConfig) -> None:
        self.url = config.backend_url.rstrip("/") + AVAILABILITY_PATH
        self.timeout = config.backend_timeout
        self._session: Optional[ClientSession] = None

    async def deliver(self, payload: Dict[str, Any]) -> None:
        if self._session is None or self._session.closed:
            self._session = create_session()
        status = await post_json(self._session, self.url, payload, timeout=self.timeout)
        logger.debug("Delivered pharmacyId=%s product=%r status=%s", payload.get("pharmacyId"), payload.get("product"), status)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
