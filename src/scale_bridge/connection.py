"""Connection lifecycle for a single BLE scale session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

from .ble.esn00_parse import FrameDecoder
from .ble.transport import (
    ConnectFailedError,
    DeviceFilter,
    ScaleTransport,
    SubscribeFailedError,
    TransportError,
)
from .classifier import ReadingClassifier
from .models import ConnectionState, ConnectionStatus, FailureReason, Reading


logger = logging.getLogger(__name__)

_HANDSHAKE_STATES = frozenset(
    {ConnectionState.DISCOVERING, ConnectionState.CONNECTING, ConnectionState.SUBSCRIBING}
)

TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.DISCOVERING}),
    ConnectionState.DISCOVERING: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.FAILED, ConnectionState.DISCONNECTING}
    ),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.SUBSCRIBING, ConnectionState.FAILED, ConnectionState.DISCONNECTING}
    ),
    ConnectionState.SUBSCRIBING: frozenset(
        {ConnectionState.ACTIVE, ConnectionState.FAILED, ConnectionState.DISCONNECTING}
    ),
    ConnectionState.ACTIVE: frozenset({ConnectionState.DISCONNECTING, ConnectionState.IDLE}),
    ConnectionState.DISCONNECTING: frozenset({ConnectionState.IDLE}),
    ConnectionState.FAILED: frozenset({ConnectionState.DISCOVERING}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when the state machine is asked to take an undefined edge."""


@dataclass
class Session:
    """Device and channel bound to one connect-to-disconnect cycle."""

    device: Any
    channel: Any = None
    subscribed: bool = False
    released: bool = False
    link_lost: bool = False


class ScaleConnection:
    """Drives discovery, connection and notification subscription for one scale.

    All work happens on one asyncio event loop. State checks and transitions
    happen before any await, so calls cannot interleave mid-transition, and
    each session is torn down exactly once whichever way it ends.
    """

    def __init__(
        self,
        transport: ScaleTransport,
        device_filter: Optional[DeviceFilter] = None,
        decoder: Optional[FrameDecoder] = None,
        classifier: Optional[ReadingClassifier] = None,
    ) -> None:
        self.transport = transport
        self.device_filter = device_filter or DeviceFilter()
        self.decoder = decoder or FrameDecoder()
        self.classifier = classifier or ReadingClassifier()

        self._status = ConnectionStatus.idle()
        self._session: Optional[Session] = None
        self._cancel_requested = False
        self._teardown_tasks: Set[asyncio.Task] = set()

        # Callbacks
        self._on_status: Optional[Callable[[ConnectionStatus], None]] = None
        self._on_reading: Optional[Callable[[Reading], None]] = None
        self._on_stable_reading: Optional[Callable[[Reading], None]] = None

    def set_status_callback(self, callback: Callable[[ConnectionStatus], None]) -> None:
        """Set callback for status changes."""
        self._on_status = callback

    def set_reading_callback(self, callback: Callable[[Reading], None]) -> None:
        """Set callback for every decoded reading (live display)."""
        self._on_reading = callback

    def set_stable_reading_callback(self, callback: Callable[[Reading], None]) -> None:
        """Set callback for new stable readings."""
        self._on_stable_reading = callback

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def state(self) -> ConnectionState:
        return self._status.state

    @property
    def is_active(self) -> bool:
        return self._status.state is ConnectionState.ACTIVE

    @property
    def current_reading(self) -> Optional[Reading]:
        """Most recent decoded reading of the live session."""
        return self.classifier.latest

    async def connect(self) -> ConnectionStatus:
        """Run the handshake from IDLE or FAILED up to ACTIVE.

        Returns the resulting status. Calling this in any other state is a
        no-op that returns the current status.
        """
        if self._status.state not in (ConnectionState.IDLE, ConnectionState.FAILED):
            logger.warning(f"connect() ignored while {self._status}")
            return self._status

        self._cancel_requested = False
        self._transition(ConnectionState.DISCOVERING)

        try:
            supported = self.transport.is_supported()
        except Exception as e:
            return self._fail(FailureReason.UNSUPPORTED, f"Bluetooth LE check failed: {e}")
        if not supported:
            return self._fail(
                FailureReason.UNSUPPORTED, "Bluetooth LE is not supported on this host"
            )

        try:
            await self._wait_for_teardown()
            device = await self.transport.request_device(self.device_filter)
        except TransportError as e:
            if self._cancel_requested:
                self._transition(ConnectionState.DISCONNECTING)
                self._transition(ConnectionState.IDLE)
                return self._status
            return self._fail(e.reason, str(e))
        except BaseException:
            self._transition(ConnectionState.DISCONNECTING)
            self._transition(ConnectionState.IDLE)
            raise

        session = Session(device=device)
        self._session = session

        try:
            if self._cancel_requested:
                return await self._abort(session)

            self._transition(ConnectionState.CONNECTING)
            try:
                session.channel = await self.transport.open_session(device)
            except TransportError as e:
                return await self._abort(session, e)
            if self._cancel_requested:
                return await self._abort(session)
            if session.link_lost:
                return await self._abort(session, ConnectFailedError("Link lost while connecting"))

            self._transition(ConnectionState.SUBSCRIBING)
            try:
                await self.transport.subscribe(
                    session.channel,
                    lambda data: self._handle_frame(session, data),
                    lambda: self._handle_link_lost(session),
                )
            except TransportError as e:
                return await self._abort(session, e)
            session.subscribed = True
            if self._cancel_requested:
                return await self._abort(session)
            if session.link_lost:
                return await self._abort(
                    session, SubscribeFailedError("Link lost while enabling notifications")
                )
        except BaseException:
            # Cancelled or unexpected error mid-handshake: do not leak the channel
            if self._status.state in _HANDSHAKE_STATES:
                self._transition(ConnectionState.DISCONNECTING)
            try:
                await self._release(session)
            finally:
                if self._status.state is ConnectionState.DISCONNECTING:
                    self._transition(ConnectionState.IDLE)
            raise

        self._transition(ConnectionState.ACTIVE)
        return self._status

    async def disconnect(self) -> ConnectionStatus:
        """End the current session.

        From ACTIVE this tears the session down and returns IDLE. During a
        handshake it marks the attempt cancelled; the pending step finishes in
        IDLE. In IDLE, FAILED or DISCONNECTING it does nothing.
        """
        state = self._status.state

        if state in _HANDSHAKE_STATES:
            logger.info(f"Cancelling connection attempt while {state.value}")
            self._cancel_requested = True
            return self._status

        if state is not ConnectionState.ACTIVE:
            return self._status

        session = self._session
        self._transition(ConnectionState.DISCONNECTING)
        try:
            if session is not None:
                await self._release(session)
        finally:
            self._transition(ConnectionState.IDLE)
        return self._status

    async def close(self) -> None:
        """Owner teardown: end any session and wait for pending cleanup."""
        if self._status.state is ConnectionState.ACTIVE:
            await self.disconnect()
        elif self._status.state in _HANDSHAKE_STATES:
            self._cancel_requested = True

        if self._teardown_tasks:
            await asyncio.gather(*list(self._teardown_tasks), return_exceptions=True)

    async def __aenter__(self) -> ScaleConnection:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _transition(
        self,
        new_state: ConnectionState,
        reason: Optional[FailureReason] = None,
        message: str = "",
    ) -> None:
        old_state = self._status.state
        if new_state not in TRANSITIONS[old_state]:
            raise InvalidTransitionError(f"{old_state.value} -> {new_state.value}")

        if old_state is ConnectionState.ACTIVE:
            self.classifier.reset()

        self._status = ConnectionStatus(new_state, reason, message)
        if new_state is ConnectionState.FAILED:
            logger.warning(f"Scale connection failed: {self._status} {message}")
        else:
            logger.info(f"Scale connection {old_state.value} -> {new_state.value}")

        if self._on_status:
            self._on_status(self._status)

    def _fail(self, reason: FailureReason, message: str) -> ConnectionStatus:
        self._transition(ConnectionState.FAILED, reason, message)
        return self._status

    async def _abort(
        self, session: Session, error: Optional[TransportError] = None
    ) -> ConnectionStatus:
        """Release a half-built session and end the handshake."""
        if error is None or self._cancel_requested:
            self._transition(ConnectionState.DISCONNECTING)
            try:
                await self._release(session)
            finally:
                self._transition(ConnectionState.IDLE)
            return self._status

        await self._release(session)
        return self._fail(error.reason, str(error))

    async def _wait_for_teardown(self) -> None:
        """Let a previous session finish closing before a new one opens."""
        if self._teardown_tasks:
            logger.debug("Waiting for previous scale session to close")
            # asyncio.wait leaves the teardown running if connect() is cancelled
            await asyncio.wait(list(self._teardown_tasks))

    async def _release(self, session: Session) -> None:
        """Unsubscribe then close, once per session, swallowing errors."""
        if session.released:
            return
        session.released = True
        if self._session is session:
            self._session = None

        try:
            if session.subscribed:
                await self.transport.unsubscribe(session.channel)
        except Exception as e:
            logger.warning(f"Error unsubscribing from scale: {e}")
        finally:
            try:
                await self.transport.close(session.device)
            except Exception as e:
                logger.warning(f"Error closing scale connection: {e}")

    def _handle_link_lost(self, session: Session) -> None:
        """Transport reported that the device dropped the link."""
        if session.released or session is not self._session:
            logger.debug("Ignoring disconnect for a released session")
            return

        if self._status.state is not ConnectionState.ACTIVE:
            # Handshake or explicit disconnect in flight; it will observe this
            session.link_lost = True
            return

        logger.warning("Scale disconnected unexpectedly")
        self._session = None
        self._transition(ConnectionState.IDLE)

        task = asyncio.get_running_loop().create_task(self._release(session))
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_tasks.discard)

    def _handle_frame(self, session: Session, data: bytes) -> None:
        """Decode a notification and pass it through the classifier."""
        if session is not self._session or self._status.state is not ConnectionState.ACTIVE:
            return

        reading = self.decoder.decode(data)
        if reading is None:
            return

        stable = self.classifier.observe(reading)
        if self._on_reading:
            self._on_reading(reading)

        if stable is not None:
            logger.info(f"Stable reading: {stable}")
            if self._on_stable_reading:
                self._on_stable_reading(stable)
