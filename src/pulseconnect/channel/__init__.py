"""
Real-time event channel for the PulseConnect client core.
"""

from .transport import (
    ConnectionState,
    Frame,
    FrameType,
    Transport,
    WebSocketTransport,
)
from .channel import EventChannel

__all__ = [
    'ConnectionState',
    'Frame',
    'FrameType',
    'Transport',
    'WebSocketTransport',
    'EventChannel',
]
