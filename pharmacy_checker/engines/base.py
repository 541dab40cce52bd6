from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, Union

from ..profiles.models import SiteProfile


class ScanStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class CapturedResponse:
    url: str
    status: int
    text: str


@dataclass
class SessionSnapshot:
    """What a finished navigation flow leaves behind for extraction."""
    url: str
    html: str
    captures: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScanRow:
    name: Optional[str] = None
    price_text: Optional[str] = None
    availability_text: Optional[str] = None
    raw: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priceText": self.price_text,
            "availabilityText": self.availability_text,
            "raw": dict(self.raw),
        }


@dataclass
class SingleResult:
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RowResults:
    rows: List[ScanRow] = field(default_factory=list)


ScanPayload = Union[SingleResult, RowResults]


@dataclass
class ScanResult:
    status: ScanStatus
    price: Optional[Decimal] = None
    payload: ScanPayload = field(default_factory=SingleResult)
    captures: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, message: str, error_type: str, captures: Optional[Dict[str, Any]] = None) -> "ScanResult":
        return cls(
            status=ScanStatus.ERROR,
            payload=SingleResult({"error": message, "errorType": error_type}),
            captures=dict(captures or {}),
        )


class BrowsingSession(Protocol):
    """
    The browser primitives the navigation interpreter needs.
    Implementations raise the NavigationError subclasses from ``errors``.
    """

    @property
    def url(self) -> str:
        ...

    async def goto(self, url: str, *, timeout_ms: int) -> None:
        ...

    async def fill(self, selector: str, value: str, *, timeout_ms: int) -> None:
        ...

    async def type_text(self, selector: str, value: str, *, delay_ms: int, timeout_ms: int) -> None:
        ...

    async def click(self, selector: str, *, timeout_ms: int) -> None:
        ...

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None:
        ...

    async def wait_for_response(self, pattern: re.Pattern[str], *, timeout_ms: int) -> CapturedResponse:
        ...

    async def get_attribute(self, selector: str, attribute: str, *, timeout_ms: int) -> Optional[str]:
        ...

    async def content(self) -> str:
        ...


class SessionFactory(Protocol):
    def open(self, profile: SiteProfile) -> AsyncContextManager[BrowsingSession]:
        """Open one session for one scan; leaving the context releases it."""
        ...
