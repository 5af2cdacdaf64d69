"""Value types shared by the decoder, classifier and connection state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class UnitKind(Enum):
    """Units the scale can display. Values are the display symbols."""

    GRAM = "g"
    OUNCE = "oz"
    POUND = "lb"
    KILOGRAM = "kg"
    MILLILITER = "ml"
    FLUID_OUNCE = "fl oz"

    @property
    def symbol(self) -> str:
        return self.value


class StableReadingKey(NamedTuple):
    """Equality key used to suppress repeated stable readings."""

    weight: float
    unit: UnitKind


@dataclass(frozen=True)
class Reading:
    """A single decoded weight measurement.

    ``observed_at`` is stamped when the frame is decoded and is excluded from
    equality, so two decodes of the same bytes compare equal.
    """

    weight: float
    unit: UnitKind
    is_stable: bool
    observed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    @property
    def key(self) -> StableReadingKey:
        return StableReadingKey(self.weight, self.unit)

    def to_dict(self) -> Dict[str, Any]:
        """Convert reading to dictionary for logging."""
        return {
            "weight": self.weight,
            "unit": self.unit.symbol,
            "stable": self.is_stable,
            "observed_at": self.observed_at.isoformat(),
        }

    def __str__(self) -> str:
        precision = 0 if self.unit is UnitKind.GRAM else 2
        return f"{self.weight:.{precision}f} {self.unit.symbol}"


class ConnectionState(Enum):
    """Lifecycle states of a scale session."""

    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


class FailureReason(Enum):
    """Why a connection attempt ended in ``ConnectionState.FAILED``."""

    UNSUPPORTED = "unsupported"
    USER_CANCELLED = "user_cancelled"
    CONNECT_FAILED = "connect_failed"
    SERVICE_NOT_FOUND = "service_not_found"
    CHARACTERISTIC_NOT_FOUND = "characteristic_not_found"
    SUBSCRIBE_FAILED = "subscribe_failed"


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of the connection state exposed to consumers."""

    state: ConnectionState
    reason: Optional[FailureReason] = None
    message: str = ""

    @classmethod
    def idle(cls) -> ConnectionStatus:
        return cls(ConnectionState.IDLE)

    @classmethod
    def failed(cls, reason: FailureReason, message: str = "") -> ConnectionStatus:
        return cls(ConnectionState.FAILED, reason, message)

    @property
    def is_failed(self) -> bool:
        return self.state is ConnectionState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.state.value}
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.message:
            data["message"] = self.message
        return data

    def __str__(self) -> str:
        if self.reason is None:
            return self.state.value
        return f"{self.state.value}({self.reason.value})"
