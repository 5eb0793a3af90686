"""
Test fixtures for PulseConnect.

Provides fakes for the remote preference service and the channel transport.
"""

from .sync_fixtures import FakeRemote, SyncFixtures
from .channel_fixtures import FakeTransport, FakeTransportFactory

__all__ = [
    "FakeRemote",
    "SyncFixtures",
    "FakeTransport",
    "FakeTransportFactory",
]
