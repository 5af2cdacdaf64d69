"""BLE package for the ESN00 scale: frame parser and transports."""

from .bleak_transport import BleakTransport
from .esn00_parse import FrameDecoder, decode_frame
from .transport import DeviceFilter, ScaleTransport, TransportError

__all__ = [
    "BleakTransport",
    "FrameDecoder",
    "decode_frame",
    "DeviceFilter",
    "ScaleTransport",
    "TransportError",
]
