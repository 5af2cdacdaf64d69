"""Transport adapter interface the connection state machine drives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from ..models import FailureReason

SCALE_SERVICE_UUID = "00001910-0000-1000-8000-00805f9b34fb"
SCALE_CHARACTERISTIC_UUID = "00002c12-0000-1000-8000-00805f9b34fb"
SCALE_NAME_PREFIXES = ("Etekcity", "ESN00")

FrameCallback = Callable[[bytes], None]
DisconnectCallback = Callable[[], None]


class TransportError(Exception):
    """Base class for transport failures during the connection handshake."""

    reason: FailureReason = FailureReason.CONNECT_FAILED

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason.value.replace("_", " "))


class UnsupportedError(TransportError):
    reason = FailureReason.UNSUPPORTED


class UserCancelledError(TransportError):
    reason = FailureReason.USER_CANCELLED


class ConnectFailedError(TransportError):
    reason = FailureReason.CONNECT_FAILED


class ServiceNotFoundError(TransportError):
    reason = FailureReason.SERVICE_NOT_FOUND


class CharacteristicNotFoundError(TransportError):
    reason = FailureReason.CHARACTERISTIC_NOT_FOUND


class SubscribeFailedError(TransportError):
    reason = FailureReason.SUBSCRIBE_FAILED


@dataclass
class DeviceFilter:
    """Which advertisements count as a scale."""

    service_uuid: str = SCALE_SERVICE_UUID
    name_prefixes: List[str] = field(default_factory=lambda: list(SCALE_NAME_PREFIXES))
    address: str = ""

    def matches(
        self,
        name: Optional[str],
        service_uuids: Iterable[str] = (),
        address: str = "",
    ) -> bool:
        """Check an advertisement against the filter.

        A configured address must match exactly. Otherwise the advertised
        service or any name prefix is enough.
        """
        if self.address:
            return address.upper() == self.address.upper()
        if self.service_uuid.lower() in (uuid.lower() for uuid in service_uuids):
            return True
        return bool(name) and any(name.startswith(prefix) for prefix in self.name_prefixes)


class ScaleTransport(ABC):
    """Radio capabilities the connection state machine needs.

    Handles are opaque to the caller. Implementations translate their own
    errors into TransportError subclasses; ``unsubscribe`` and ``close`` are
    best effort and should log rather than raise.
    """

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether the host can talk BLE at all."""

    @abstractmethod
    async def request_device(self, device_filter: DeviceFilter) -> Any:
        """Select a device. May wait indefinitely for a user or a scan."""

    @abstractmethod
    async def open_session(self, device: Any) -> Any:
        """Connect and resolve the notification characteristic."""

    @abstractmethod
    async def subscribe(
        self,
        channel: Any,
        on_frame: FrameCallback,
        on_disconnect: DisconnectCallback,
    ) -> None:
        """Enable notifications on the channel."""

    @abstractmethod
    async def unsubscribe(self, channel: Any) -> None:
        """Disable notifications."""

    @abstractmethod
    async def close(self, device: Any) -> None:
        """Drop the link to the device."""
