"""Shared test helpers: an in-memory transport for driving the state machine."""

import asyncio
from typing import Dict, List, Optional

from scale_bridge.ble.transport import DeviceFilter, ScaleTransport


class FakeTransport(ScaleTransport):
    """Records calls; steps can be gated on an event or made to raise."""

    def __init__(self, supported: bool = True) -> None:
        self.supported = supported
        self.calls: List[str] = []
        self.errors: Dict[str, BaseException] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.device = "scale-device"
        self.channel = "scale-channel"
        self.device_filter: Optional[DeviceFilter] = None
        self.on_frame = None
        self.on_disconnect = None

    def is_supported(self) -> bool:
        return self.supported

    def gate(self, name: str) -> asyncio.Event:
        """Make the named step wait until the returned event is set."""
        event = asyncio.Event()
        self.gates[name] = event
        return event

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def _step(self, name: str) -> None:
        self.calls.append(name)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def request_device(self, device_filter):
        self.device_filter = device_filter
        await self._step("request_device")
        return self.device

    async def open_session(self, device):
        await self._step("open_session")
        return self.channel

    async def subscribe(self, channel, on_frame, on_disconnect):
        self.on_frame = on_frame
        self.on_disconnect = on_disconnect
        await self._step("subscribe")

    async def unsubscribe(self, channel):
        await self._step("unsubscribe")

    async def close(self, device):
        await self._step("close")

