#!/usr/bin/env python3
"""Bleak scan helper: lists nearby devices and marks the ones that look like the scale."""
import argparse
import asyncio
import sys
from pathlib import Path

from bleak import BleakScanner

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scale_bridge.ble.transport import DeviceFilter


async def scan(timeout: float, only_scales: bool) -> None:
    device_filter = DeviceFilter()
    print(f'Starting BLE scan for {timeout:.0f}s...')
    found = await BleakScanner.discover(timeout=timeout, return_adv=True)
    print(f'Found {len(found)} devices')
    for device, adv in found.values():
        name = device.name or adv.local_name
        is_scale = device_filter.matches(name, adv.service_uuids, device.address)
        if only_scales and not is_scale:
            continue
        marker = '*' if is_scale else ' '
        print(f"{marker} {device.address}  | {name!r} | rssi={adv.rssi}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--timeout', type=float, default=10.0)
    parser.add_argument('--scales', action='store_true', help='Only list scales')
    args = parser.parse_args()
    asyncio.run(scan(args.timeout, args.scales))
