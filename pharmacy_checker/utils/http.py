from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import DeliveryError

logger = logging.getLogger(__name__)


async def post_json(
    session: ClientSession,
    url: str,
    payload: Dict[str, Any],
    *,
    timeout: float = 30.0,
) -> int:
    """
    POST a JSON body and return the response status.
    Raises DeliveryError for connection failures and any non-2xx answer; never retries.
    """
    try:
        async with session.post(url, json=payload, timeout=ClientTimeout(total=timeout)) as resp:
            if not 200 <= resp.status < 300:
                body = await resp.text()
                raise DeliveryError(f"{url} returned {resp.status}: {body[:200]}", status=resp.status)
            return resp.status
    except DeliveryError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise DeliveryError(f"{url} unreachable: {exc!r}") from exc


def create_session(base_url: Optional[str] = None) -> ClientSession:
    """
    Create a shared aiohttp ClientSession.
    """
    # Note: caller is responsible for closing the session (await session.close()).
    return aiohttp.ClientSession(base_url=base_url, headers={"Accept": "application/json"})
