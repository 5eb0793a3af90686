"""WebSocket transport implementations for the event channel"""

import asyncio
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException
from websockets.protocol import State

from ..utils.logging import get_logger
from ..utils.errors import ChannelError

logger = get_logger("pulseconnect.channel.transport")

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

# Failures a transport may surface while opening, sending or closing
TRANSPORT_FAILURES = (ChannelError, WebSocketException, asyncio.TimeoutError, OSError)


class ConnectionState(enum.Enum):
    """Connection state of the event channel"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FrameType(enum.Enum):
    TEXT = "text"
    CLOSE = "close"
    ERROR = "error"


@dataclass
class Frame:
    """One inbound event from a transport"""
    type: FrameType
    data: Optional[str] = None
    close_code: Optional[int] = None
    error: Optional[BaseException] = None


class Transport(ABC):
    """A single duplex connection. One instance is opened at most once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can be sent"""

    @abstractmethod
    async def open(self, url: str) -> None:
        """Establish the connection; raises one of TRANSPORT_FAILURES"""

    @abstractmethod
    async def receive(self) -> Frame:
        """Wait for the next inbound frame"""

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame"""

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection and release resources; safe to repeat"""


class WebSocketTransport(Transport):
    """Transport backed by a ``websockets`` client connection"""

    def __init__(self, ping_interval: Optional[float] = 20.0, open_timeout: Optional[float] = 10.0):
        self.ping_interval = ping_interval
        self.open_timeout = open_timeout
        self._websocket: Optional[ClientConnection] = None

    @property
    def is_open(self) -> bool:
        return self._websocket is not None and self._websocket.state is State.OPEN

    async def open(self, url: str) -> None:
        if self._websocket is not None:
            raise ChannelError("Transport already opened")

        try:
            self._websocket = await connect(
                url,
                ping_interval=self.ping_interval,
                open_timeout=self.open_timeout,
            )
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise ChannelError(f"Failed to open WebSocket: {e}", cause=e) from e

    async def receive(self) -> Frame:
        if self._websocket is None:
            return Frame(FrameType.CLOSE, close_code=ABNORMAL_CLOSURE)

        try:
            message = await self._websocket.recv()
        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSURE
            return Frame(FrameType.CLOSE, close_code=code)
        except WebSocketException as e:
            return Frame(FrameType.ERROR, error=e)

        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        return Frame(FrameType.TEXT, data=message)

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ChannelError("Cannot send on a closed WebSocket")
        try:
            await self._websocket.send(text)
        except websockets.ConnectionClosed as e:
            raise ChannelError(f"WebSocket closed while sending: {e}", cause=e) from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._websocket is not None and self._websocket.state is not State.CLOSED:
            await self._websocket.close(code=code, reason=reason)


__all__ = [
    'ConnectionState',
    'Frame',
    'FrameType',
    'Transport',
    'WebSocketTransport',
    'NORMAL_CLOSURE',
    'ABNORMAL_CLOSURE',
    'TRANSPORT_FAILURES',
]
