"""
Positioning source abstraction for driver devices.

A PositionSource wraps whatever produces GPS fixes on the device (a gpsd
reader, a platform location API, a replay file). It delivers fixes and errors
through async callbacks until the watch handle is cancelled.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from schooltrack.app.core.clock import utcnow
from schooltrack.app.core.config import settings


class PositionErrorCode(int, enum.Enum):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class PositionError(Exception):
    """Error reported by a PositionSource for a watch."""

    def __init__(self, code: PositionErrorCode, message: str = ""):
        self.code = code
        self.message = message or code.name.lower().replace("_", " ")
        super().__init__(self.message)

    @property
    def is_transient(self) -> bool:
        return self.code in (PositionErrorCode.TIMEOUT, PositionErrorCode.POSITION_UNAVAILABLE)


@dataclass
class PositionFix:
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool = True
    max_age_ms: int = 10000
    timeout_ms: int = 5000

    @classmethod
    def from_settings(cls) -> "PositionOptions":
        return cls(
            high_accuracy=settings.tracking_high_accuracy,
            max_age_ms=settings.tracking_max_age_ms,
            timeout_ms=settings.tracking_timeout_ms,
        )


OnSample = Callable[[PositionFix], Awaitable[None]]
OnError = Callable[[PositionError], Awaitable[None]]


class PositionSource(ABC):

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the device can produce fixes at all."""

    @abstractmethod
    async def request_continuous_updates(self, on_sample: OnSample, on_error: OnError,
                                         options: PositionOptions) -> Any:
        """Start a watch and return its handle."""

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Stop a watch. Cancelling an unknown handle is a no-op."""
