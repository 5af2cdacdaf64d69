"""Bleak-backed transport for the Etekcity ESN00 scale."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Dict, Optional

from bleak import BleakClient, BleakError, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice

from .transport import (
    SCALE_CHARACTERISTIC_UUID,
    SCALE_SERVICE_UUID,
    CharacteristicNotFoundError,
    ConnectFailedError,
    DeviceFilter,
    DisconnectCallback,
    FrameCallback,
    ScaleTransport,
    ServiceNotFoundError,
    SubscribeFailedError,
    UnsupportedError,
    UserCancelledError,
)


logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("linux", "darwin", "win32")


@dataclass
class BleakChannel:
    """Connected client plus the resolved notification characteristic."""

    client: BleakClient
    characteristic: BleakGATTCharacteristic
    on_disconnect: Optional[DisconnectCallback] = None


class BleakTransport(ScaleTransport):
    """ScaleTransport implementation using bleak."""

    def __init__(
        self,
        adapter: str = "hci0",
        service_uuid: str = SCALE_SERVICE_UUID,
        characteristic_uuid: str = SCALE_CHARACTERISTIC_UUID,
        scan_timeout_sec: float = 20.0,
        connect_timeout_sec: float = 10.0,
    ) -> None:
        self.adapter = adapter
        self.service_uuid = service_uuid
        self.characteristic_uuid = characteristic_uuid
        self.scan_timeout_sec = scan_timeout_sec
        self.connect_timeout_sec = connect_timeout_sec

        # Channels by device address
        self._channels: Dict[str, BleakChannel] = {}

    def is_supported(self) -> bool:
        return sys.platform.startswith(SUPPORTED_PLATFORMS)

    async def request_device(self, device_filter: DeviceFilter) -> BLEDevice:
        """Scan until a matching scale advertises or the scan times out."""
        logger.info(f"Scanning for scale on {self.adapter} ({self.scan_timeout_sec:.0f}s)")

        try:
            if device_filter.address:
                device = await BleakScanner.find_device_by_address(
                    device_filter.address,
                    timeout=self.scan_timeout_sec,
                    adapter=self.adapter,
                )
            else:
                device = await BleakScanner.find_device_by_filter(
                    lambda d, adv: device_filter.matches(
                        d.name or adv.local_name, adv.service_uuids, d.address
                    ),
                    timeout=self.scan_timeout_sec,
                    adapter=self.adapter,
                )
        except BleakError as e:
            raise UnsupportedError(f"Bluetooth adapter {self.adapter} unavailable: {e}") from e

        if device is None:
            raise UserCancelledError(
                f"No scale found within {self.scan_timeout_sec:.0f}s"
            )

        logger.info(f"Found scale {device.name} at {device.address}")
        return device

    async def open_session(self, device: BLEDevice) -> BleakChannel:
        """Connect to the scale and resolve the weight characteristic."""
        client = BleakClient(
            device,
            adapter=self.adapter,
            timeout=self.connect_timeout_sec,
            disconnected_callback=self._on_client_disconnect,
        )

        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise ConnectFailedError(f"Connection to {device.address} failed: {e}") from e

        service = client.services.get_service(self.service_uuid)
        if service is None:
            await self._disconnect_client(client)
            raise ServiceNotFoundError(f"Service {self.service_uuid} not found")

        characteristic = service.get_characteristic(self.characteristic_uuid)
        if characteristic is None:
            await self._disconnect_client(client)
            raise CharacteristicNotFoundError(
                f"Characteristic {self.characteristic_uuid} not found"
            )

        channel = BleakChannel(client=client, characteristic=characteristic)
        self._channels[device.address] = channel
        return channel

    async def subscribe(
        self,
        channel: BleakChannel,
        on_frame: FrameCallback,
        on_disconnect: DisconnectCallback,
    ) -> None:
        channel.on_disconnect = on_disconnect

        if not channel.client.is_connected:
            raise SubscribeFailedError("Scale disconnected before notifications were enabled")

        try:
            await channel.client.start_notify(
                channel.characteristic,
                lambda _sender, data: on_frame(bytes(data)),
            )
        except BleakError as e:
            raise SubscribeFailedError(f"Enabling notifications failed: {e}") from e

        logger.info("Scale notifications enabled")

    async def unsubscribe(self, channel: BleakChannel) -> None:
        channel.on_disconnect = None
        try:
            if channel.client.is_connected:
                await channel.client.stop_notify(channel.characteristic)
        except Exception as e:
            logger.warning(f"Error disabling scale notifications: {e}")

    async def close(self, device: BLEDevice) -> None:
        channel = self._channels.pop(device.address, None)
        if channel is None:
            return
        channel.on_disconnect = None
        await self._disconnect_client(channel.client)

    async def _disconnect_client(self, client: BleakClient) -> None:
        try:
            if client.is_connected:
                await client.disconnect()
        except Exception as e:
            logger.warning(f"Error during scale disconnect: {e}")

    def _on_client_disconnect(self, client: BleakClient) -> None:
        """Route bleak's disconnect callback to the subscriber."""
        logger.warning(f"Scale {client.address} disconnected")
        channel = self._channels.get(client.address)
        if channel and channel.on_disconnect:
            channel.on_disconnect()
