"""Headless runner that keeps a scale connected and logs its readings."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from .ble.bleak_transport import BleakTransport
from .ble.esn00_parse import FrameDecoder
from .ble.transport import ScaleTransport
from .config import AppConfig
from .connection import ScaleConnection
from .logs import DualNdjsonLogger, NdjsonLogger
from .models import ConnectionState, ConnectionStatus, FailureReason, Reading

logger = logging.getLogger(__name__)


class ScaleBridge:
    """Coordinates the scale connection, reconnects and the session log."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[ScaleTransport] = None,
        poll_interval_sec: float = 0.5,
        status_interval_sec: float = 30.0,
    ) -> None:
        self.config = config
        self.poll_interval_sec = poll_interval_sec
        self.status_interval_sec = status_interval_sec

        if config.logging.debug_dir:
            self.logger: NdjsonLogger = DualNdjsonLogger(
                config.logging.dir,
                config.logging.debug_dir,
                config.logging.file_prefix,
            )
        else:
            self.logger = NdjsonLogger(config.logging.dir, config.logging.file_prefix)

        self.logger.mode = config.logging.mode
        if config.logging.verbose_whitelist:
            self.logger.verbose_whitelist.update(config.logging.verbose_whitelist)

        scale = config.scale
        self.transport = transport or BleakTransport(
            adapter=scale.adapter,
            service_uuid=scale.service_uuid,
            characteristic_uuid=scale.characteristic_uuid,
            scan_timeout_sec=scale.scan_timeout_sec,
            connect_timeout_sec=scale.connect_timeout_sec,
        )
        self.connection = ScaleConnection(
            self.transport,
            device_filter=scale.device_filter(),
            decoder=FrameDecoder(layout=config.decoder.layout()),
        )
        self.connection.set_status_callback(self._on_status)
        self.connection.set_reading_callback(self._on_reading)
        self.connection.set_stable_reading_callback(self._on_stable_reading)

        self._stable_consumer: Optional[Callable[[Reading], None]] = None
        self._stop_requested = False
        self._tasks: List[asyncio.Task] = []

    def set_stable_reading_callback(self, callback: Callable[[Reading], None]) -> None:
        """Forward new stable readings to an external consumer."""
        self._stable_consumer = callback

    async def start(self) -> None:
        """Start the connection loop and status reporting."""
        self._stop_requested = False

        self.logger.status("Bridge starting", {
            "adapter": self.config.scale.adapter,
            "mac": self.config.scale.mac or None,
            "auto_reconnect": self.config.scale.auto_reconnect,
        })

        self._tasks.append(asyncio.create_task(self._run_connection()))
        self._tasks.append(asyncio.create_task(self._status_loop()))

        self.logger.status("Bridge started", {"active_tasks": len(self._tasks)})

    async def stop(self) -> None:
        """Stop the bridge and release the scale."""
        self._stop_requested = True
        self.logger.status("Bridge stopping")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.connection.close()

        self.logger.status("Bridge stopped")
        self.logger.close()

    async def _run_connection(self) -> None:
        """Connect, wait for the session to end, retry with exponential backoff."""
        scale = self.config.scale
        retry_delay = scale.reconnect_initial_sec

        while not self._stop_requested:
            try:
                status = await self.connection.connect()
            except Exception as e:
                logger.warning(f"Scale connection attempt failed: {e}")
                status = self.connection.status

            if status.state is ConnectionState.ACTIVE:
                retry_delay = scale.reconnect_initial_sec
                await self._wait_for_session_end()
            elif status.reason is FailureReason.UNSUPPORTED:
                logger.error(f"Cannot use Bluetooth: {status.message}")
                return

            if self._stop_requested or not scale.auto_reconnect:
                return

            jitter = (asyncio.get_running_loop().time() % 1.0) * scale.reconnect_jitter_sec
            await asyncio.sleep(retry_delay + jitter)
            retry_delay = min(retry_delay * 2, scale.reconnect_max_sec)

    async def _wait_for_session_end(self) -> None:
        while self.connection.is_active and not self._stop_requested:
            await asyncio.sleep(self.poll_interval_sec)

    async def _status_loop(self) -> None:
        """Periodic status reporting."""
        while not self._stop_requested:
            await asyncio.sleep(self.status_interval_sec)

            reading = self.connection.current_reading
            self.logger.status("Bridge status", {
                "connection": self.connection.status.to_dict(),
                "current_reading": reading.to_dict() if reading else None,
                "stable_readings": self.connection.classifier.stable_count,
            })

    def _on_status(self, status: ConnectionStatus) -> None:
        self.logger.connection(status)

    def _on_reading(self, reading: Reading) -> None:
        self.logger.debug("reading", reading.to_dict())

    def _on_stable_reading(self, reading: Reading) -> None:
        self.logger.reading("STABLE", reading)
        if self._stable_consumer:
            self._stable_consumer(reading)


async def run_bridge(config_path: str) -> None:
    """Run the bridge with the specified configuration."""
    from .config import load_config, validate_config

    config = load_config(config_path)
    errors = validate_config(config)

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return

    bridge = ScaleBridge(config)
    bridge.set_stable_reading_callback(lambda reading: print(f"Stable: {reading}"))

    try:
        await bridge.start()
        while True:
            await asyncio.sleep(1.0)
    finally:
        await bridge.stop()
