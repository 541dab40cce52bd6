from __future__ import annotations

from typing import Optional


class ScannerError(Exception):
    """Base class for every error raised by the scanner core."""


class ConfigError(ScannerError):
    """A site profile or the scanner configuration is malformed."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class NavigationError(ScannerError):
    """A navigation step could not be completed; aborts a single scan."""

    def __init__(self, message: str, *, step_index: Optional[int] = None, action: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.step_index = step_index
        self.action = action

    def at_step(self, step_index: int, action: str) -> "NavigationError":
        self.step_index = step_index
        self.action = action
        return self

    def __str__(self) -> str:
        if self.step_index is None:
            return self.message
        return f"step {self.step_index} ({self.action}): {self.message}"


class NavigationTimeout(NavigationError):
    pass


class SelectorNotFound(NavigationError):
    pass


class NetworkWaitTimeout(NavigationError):
    pass


class SessionError(NavigationError):
    """The browsing session itself failed (launch, crash, blocked page)."""


class ExtractionError(ScannerError):
    pass


class DeliveryError(ScannerError):
    """The downstream sink was unreachable or answered with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class PersistenceError(ScannerError):
    pass
