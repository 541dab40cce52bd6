from __future__ import annotations

from typing import Any, Dict, Protocol


class Sink(Protocol):
    """Downstream receiver of forwarded observations."""

    async def deliver(self, payload: Dict[str, Any]) -> None:
        """Send one payload; raise DeliveryError if it was not accepted."""
        ...

    async def close(self) -> None:
        ...
