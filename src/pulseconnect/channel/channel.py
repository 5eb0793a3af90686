"""
Resilient event channel.

A single duplex connection to the real-time event endpoint, scoped to the
signed-in user. Abnormal closures are retried with exponential backoff up to
a bounded number of attempts; inbound JSON messages are fanned out to every
registered listener, each one isolated from the others' failures.
"""

import asyncio
import inspect
import json
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import quote

from ..utils.config import ChannelConfig
from ..utils.logging import get_logger
from .transport import (
    ABNORMAL_CLOSURE,
    ConnectionState,
    FrameType,
    Transport,
    TRANSPORT_FAILURES,
    WebSocketTransport,
)

if TYPE_CHECKING:
    from ..session.context import SessionContext


logger = get_logger("pulseconnect.channel")

Listener = Callable[[Any], Union[None, Awaitable[None]]]
TransportFactory = Callable[[], Transport]

# Reconnect delays kept in the stats history
RECENT_DELAYS = 20


class EventChannel:
    """Reconnecting message channel with listener fan-out."""

    def __init__(
        self,
        session: "SessionContext",
        ws_url: str,
        config: Optional[ChannelConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        config = config or ChannelConfig()
        self.session = session
        self.ws_url = ws_url.rstrip("/")
        self.base_reconnect_delay = config.base_reconnect_delay
        self.max_reconnect_attempts = config.max_reconnect_attempts
        self.normal_close_code = config.normal_close_code
        self._transport_factory = transport_factory or WebSocketTransport

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.reconnect_delay = self.base_reconnect_delay
        self.exhausted = False

        self._transport: Optional[Transport] = None
        self._connecting = False
        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []
        self._exhausted_handlers: List[Callable[[], None]] = []
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._stats: Dict[str, Any] = {
            "transports_created": 0,
            "connections": 0,
            "closures": 0,
            "messages_sent": 0,
            "messages_received": 0,
            "parse_errors": 0,
            "listener_errors": 0,
            "reconnect_delays": deque(maxlen=RECENT_DELAYS),
            "connected_at": None,
            "disconnected_at": None,
        }

    @property
    def is_connected(self) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.is_open
        )

    def build_url(self) -> Optional[str]:
        user_id = self.session.user_id
        token = self.session.get_token()
        if not user_id or not token:
            return None
        return f"{self.ws_url}/ws/{quote(user_id, safe='')}?token={quote(token, safe='')}"

    def connect(self) -> Optional[asyncio.Task]:
        """
        Open the channel for the current session.

        No-op when a connection is already open or being established, or when
        the session lacks a user id or token. Must be called from within a
        running event loop; returns the task driving the connection, if any.
        """
        if self._transport is not None and self._transport.is_open:
            logger.debug("connect_skipped", reason="already open")
            return None
        if self._connecting:
            logger.debug("connect_skipped", reason="connection in progress")
            return None

        url = self.build_url()
        if url is None:
            logger.debug("connect_skipped", reason="no session")
            return None

        loop = asyncio.get_running_loop()
        self._cancel_reconnect()
        self._connecting = True
        self.exhausted = False
        self.state = ConnectionState.CONNECTING
        self._stopped.clear()

        transport = self._transport_factory()
        self._transport = transport
        self._stats["transports_created"] += 1

        self._connection_task = loop.create_task(self._run(transport, url))
        return self._connection_task

    async def disconnect(self) -> None:
        """Close the channel and suppress any further reconnection."""
        self.reconnect_attempts = self.max_reconnect_attempts
        self._cancel_reconnect()

        transport, self._transport = self._transport, None
        task = self._connection_task
        was_connecting = self._connecting
        self._connecting = False

        self._stopped.set()
        if transport is None:
            return

        self.state = ConnectionState.DISCONNECTED
        self._stats["disconnected_at"] = datetime.now(timezone.utc)
        logger.info("channel_disconnecting")

        if was_connecting and task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await transport.close(self.normal_close_code, "User disconnect")
        except TRANSPORT_FAILURES as e:
            logger.warning("channel_close_failed", error=str(e))

    def reset_backoff(self) -> None:
        self.reconnect_attempts = 0
        self.reconnect_delay = self.base_reconnect_delay
        self.exhausted = False

    async def send(self, data: Any) -> bool:
        """Send a JSON message; returns False when the channel is not open."""
        transport = self._transport
        if not self.is_connected or transport is None:
            logger.warning("send_skipped", reason="not connected")
            return False

        text = json.dumps(data)
        try:
            await transport.send_text(text)
        except TRANSPORT_FAILURES as e:
            logger.warning("send_failed", error=str(e))
            return False

        self._stats["messages_sent"] += 1
        return True

    def add_listener(self, listener: Listener) -> bool:
        if not callable(listener):
            logger.warning("listener_rejected", reason="not callable")
            return False
        if listener in self._listeners:
            return False
        self._listeners.append(listener)
        return True

    def remove_listener(self, listener: Listener) -> bool:
        if listener not in self._listeners:
            return False
        self._listeners.remove(listener)
        return True

    def on_exhausted(self, handler: Callable[[], None]) -> None:
        """Register a callback fired when reconnection gives up."""
        self._exhausted_handlers.append(handler)

    async def wait_closed(self) -> None:
        """Wait until the channel is down with no reconnect pending."""
        await self._stopped.wait()

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats["reconnect_delays"] = list(self._stats["reconnect_delays"])
        stats["state"] = self.state.value
        stats["reconnect_attempts"] = self.reconnect_attempts
        stats["listeners"] = len(self._listeners)
        stats["exhausted"] = self.exhausted
        return stats

    async def _run(self, transport: Transport, url: str) -> None:
        try:
            await transport.open(url)
        except TRANSPORT_FAILURES as e:
            logger.warning("channel_open_failed", error=str(e))
            if self._transport is transport:
                self._connecting = False
            self._handle_closed(transport, ABNORMAL_CLOSURE)
            return

        if self._transport is not transport:
            # Disconnected while the handshake was in flight
            await transport.close(self.normal_close_code)
            return

        self._connecting = False
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self.reconnect_delay = self.base_reconnect_delay
        self._stats["connections"] += 1
        self._stats["connected_at"] = datetime.now(timezone.utc)
        logger.info("channel_connected", user_id=self.session.user_id)

        close_code = ABNORMAL_CLOSURE
        try:
            while True:
                frame = await transport.receive()
                if frame.type == FrameType.TEXT:
                    await self._dispatch(frame.data)
                elif frame.type == FrameType.CLOSE:
                    close_code = frame.close_code if frame.close_code is not None else ABNORMAL_CLOSURE
                    break
                else:
                    logger.warning("channel_transport_error", error=str(frame.error))
                    break
        except TRANSPORT_FAILURES as e:
            logger.error("channel_receive_failed", error=str(e))

        try:
            await transport.close(self.normal_close_code)
        except TRANSPORT_FAILURES as e:
            logger.warning("channel_close_failed", error=str(e))

        self._handle_closed(transport, close_code)

    async def _dispatch(self, raw: Optional[str]) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._stats["parse_errors"] += 1
            logger.error("message_parse_failed", error=str(e))
            return

        self._stats["messages_received"] += 1

        for listener in list(self._listeners):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._stats["listener_errors"] += 1
                logger.error(
                    "listener_failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                    exc_info=True,
                )

    def _handle_closed(self, transport: Transport, code: int) -> None:
        if self._transport is not transport:
            # Superseded or explicitly disconnected
            return

        self._transport = None
        self.state = ConnectionState.DISCONNECTED
        self._stats["closures"] += 1
        self._stats["disconnected_at"] = datetime.now(timezone.utc)
        logger.info("channel_closed", code=code)

        if code == self.normal_close_code:
            self._stopped.set()
            return

        if self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.reconnect_delay * (2 ** (self.reconnect_attempts - 1))
            self._stats["reconnect_delays"].append(delay)
            logger.info(
                "channel_reconnect_scheduled",
                attempt=self.reconnect_attempts,
                delay=delay,
            )
            loop = asyncio.get_running_loop()
            self._reconnect_handle = loop.call_later(delay, self._reconnect)
        else:
            self.exhausted = True
            self._stopped.set()
            logger.error("max_reconnect_attempts_reached", attempts=self.reconnect_attempts)
            for handler in list(self._exhausted_handlers):
                try:
                    handler()
                except Exception as e:
                    logger.error("exhausted_handler_failed", error=str(e), exc_info=True)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None


__all__ = [
    'EventChannel',
    'Listener',
    'TransportFactory',
]
