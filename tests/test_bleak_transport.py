"""Tests for the bleak transport with bleak mocked out."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from bleak import BleakError

from scale_bridge.ble.bleak_transport import BleakTransport
from scale_bridge.ble.transport import (
    SCALE_SERVICE_UUID,
    CharacteristicNotFoundError,
    ConnectFailedError,
    DeviceFilter,
    ServiceNotFoundError,
    SubscribeFailedError,
    UnsupportedError,
    UserCancelledError,
)

MODULE = "scale_bridge.ble.bleak_transport"
DEVICE = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="ESN00")


def make_client(service_found=True, characteristic_found=True):
    client = MagicMock()
    client.address = DEVICE.address
    client.is_connected = True
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()

    service = MagicMock()
    service.get_characteristic.return_value = MagicMock() if characteristic_found else None
    client.services.get_service.return_value = service if service_found else None
    return client


def adv(local_name=None, service_uuids=()):
    return SimpleNamespace(local_name=local_name, service_uuids=list(service_uuids))


class TestDeviceFilter:
    """Advertisement matching."""

    def test_name_prefix(self):
        assert DeviceFilter().matches("Etekcity Nutrition Scale")
        assert DeviceFilter().matches("ESN00-1a2b")
        assert not DeviceFilter().matches("Other Scale")
        assert not DeviceFilter().matches(None)

    def test_service_uuid_case_insensitive(self):
        assert DeviceFilter().matches(None, [SCALE_SERVICE_UUID.upper()])

    def test_address_overrides_other_criteria(self):
        device_filter = DeviceFilter(address="aa:bb:cc:dd:ee:ff")
        assert device_filter.matches("Other", [], "AA:BB:CC:DD:EE:FF")
        assert not device_filter.matches("ESN00", [SCALE_SERVICE_UUID], "11:22:33:44:55:66")


class TestRequestDevice:
    """Scanning for the scale."""

    def test_scan_by_filter(self):
        with patch(f"{MODULE}.BleakScanner") as scanner:
            scanner.find_device_by_filter = AsyncMock(return_value=DEVICE)
            transport = BleakTransport(adapter="hci1", scan_timeout_sec=3.0)

            device = asyncio.run(transport.request_device(DeviceFilter()))

        assert device is DEVICE
        call = scanner.find_device_by_filter.call_args
        assert call.kwargs["timeout"] == 3.0
        assert call.kwargs["adapter"] == "hci1"

        filterfunc = call.args[0]
        assert filterfunc(SimpleNamespace(name="ESN00-01", address="x"), adv())
        assert filterfunc(SimpleNamespace(name=None, address="x"), adv("Etekcity"))
        assert not filterfunc(SimpleNamespace(name="Kettle", address="x"), adv())

    def test_scan_by_address(self):
        with patch(f"{MODULE}.BleakScanner") as scanner:
            scanner.find_device_by_address = AsyncMock(return_value=DEVICE)
            transport = BleakTransport()

            device = asyncio.run(transport.request_device(DeviceFilter(address=DEVICE.address)))

        assert device is DEVICE
        assert scanner.find_device_by_address.call_args.args[0] == DEVICE.address

    def test_nothing_found(self):
        with patch(f"{MODULE}.BleakScanner") as scanner:
            scanner.find_device_by_filter = AsyncMock(return_value=None)
            with pytest.raises(UserCancelledError):
                asyncio.run(BleakTransport().request_device(DeviceFilter()))

    def test_adapter_unavailable(self):
        with patch(f"{MODULE}.BleakScanner") as scanner:
            scanner.find_device_by_filter = AsyncMock(side_effect=BleakError("no adapter"))
            with pytest.raises(UnsupportedError):
                asyncio.run(BleakTransport().request_device(DeviceFilter()))


class TestSession:
    """Connecting, subscribing and tearing down."""

    def test_open_session(self):
        client = make_client()
        with patch(f"{MODULE}.BleakClient", return_value=client) as client_cls:
            transport = BleakTransport(connect_timeout_sec=4.0)
            channel = asyncio.run(transport.open_session(DEVICE))

        assert channel.client is client
        client.connect.assert_awaited_once()
        assert client_cls.call_args.kwargs["timeout"] == 4.0

    def test_connect_error(self):
        client = make_client()
        client.connect.side_effect = BleakError("le-connection-abort-by-local")
        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(ConnectFailedError):
                asyncio.run(BleakTransport().open_session(DEVICE))

    def test_connect_timeout(self):
        client = make_client()
        client.connect.side_effect = asyncio.TimeoutError()
        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(ConnectFailedError):
                asyncio.run(BleakTransport().open_session(DEVICE))

    def test_missing_service(self):
        client = make_client(service_found=False)
        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(ServiceNotFoundError):
                asyncio.run(BleakTransport().open_session(DEVICE))
        client.disconnect.assert_awaited_once()

    def test_missing_characteristic(self):
        client = make_client(characteristic_found=False)
        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(CharacteristicNotFoundError):
                asyncio.run(BleakTransport().open_session(DEVICE))
        client.disconnect.assert_awaited_once()

    def test_subscribe_forwards_frames_as_bytes(self):
        client = make_client()
        frames = []

        async def scenario():
            transport = BleakTransport()
            channel = await transport.open_session(DEVICE)
            await transport.subscribe(channel, frames.append, Mock())
            handler = client.start_notify.call_args.args[1]
            handler(None, bytearray(b"\x01\x02"))

        with patch(f"{MODULE}.BleakClient", return_value=client):
            asyncio.run(scenario())

        assert frames == [b"\x01\x02"]
        assert isinstance(frames[0], bytes)

    def test_subscribe_error(self):
        client = make_client()
        client.start_notify.side_effect = BleakError("notify failed")

        async def scenario():
            transport = BleakTransport()
            channel = await transport.open_session(DEVICE)
            await transport.subscribe(channel, Mock(), Mock())

        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(SubscribeFailedError):
                asyncio.run(scenario())

    def test_subscribe_after_link_dropped(self):
        client = make_client()

        async def scenario():
            transport = BleakTransport()
            channel = await transport.open_session(DEVICE)
            client.is_connected = False
            await transport.subscribe(channel, Mock(), Mock())

        with patch(f"{MODULE}.BleakClient", return_value=client):
            with pytest.raises(SubscribeFailedError):
                asyncio.run(scenario())
        client.start_notify.assert_not_awaited()

    def test_disconnect_routed_until_closed(self):
        client = make_client()
        on_disconnect = Mock()

        async def scenario():
            transport = BleakTransport()
            channel = await transport.open_session(DEVICE)
            await transport.subscribe(channel, Mock(), on_disconnect)

            disconnected_callback = client_cls.call_args.kwargs["disconnected_callback"]
            disconnected_callback(client)
            assert on_disconnect.call_count == 1

            await transport.unsubscribe(channel)
            await transport.close(DEVICE)
            disconnected_callback(client)

        with patch(f"{MODULE}.BleakClient", return_value=client) as client_cls:
            asyncio.run(scenario())

        assert on_disconnect.call_count == 1
        client.stop_notify.assert_awaited_once()
        client.disconnect.assert_awaited_once()

    def test_teardown_errors_are_swallowed(self):
        client = make_client()
        client.stop_notify.side_effect = BleakError("not connected")
        client.disconnect.side_effect = BleakError("already gone")

        async def scenario():
            transport = BleakTransport()
            channel = await transport.open_session(DEVICE)
            await transport.unsubscribe(channel)
            await transport.close(DEVICE)
            # unknown device is a no-op
            await transport.close(SimpleNamespace(address="00:00:00:00:00:00"))

        with patch(f"{MODULE}.BleakClient", return_value=client):
            asyncio.run(scenario())

        client.disconnect.assert_awaited_once()
