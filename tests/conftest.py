"""
Pytest configuration and shared fixtures for PulseConnect tests.
"""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from pulseconnect.channel import EventChannel
from pulseconnect.session import SessionContext
from pulseconnect.storage import MemorySlot
from pulseconnect.sync import PreferenceSyncEngine
from pulseconnect.utils.config import ChannelConfig, PulseConfig, StorageConfig, SyncConfig
from tests.fixtures import FakeRemote, FakeTransportFactory


# Test configuration
TEST_CONFIG = {
    "sync": {
        "api_url": "http://campus.example.edu/api",
        "debounce_seconds": 0.01,
    },
    "channel": {
        "base_reconnect_delay": 0.001,
        "max_reconnect_attempts": 5,
    },
    "logging": {
        "level": "DEBUG",
        "format": "simple",
    },
}

WS_BASE = "ws://localhost:8000"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def test_config(temp_dir: Path) -> PulseConfig:
    """Create test configuration rooted in the temp directory."""
    data: Dict[str, Any] = json.loads(json.dumps(TEST_CONFIG))
    data["storage"] = {"directory": str(temp_dir / "state")}
    data["logging"]["directory"] = str(temp_dir / "logs")
    return PulseConfig(**data)


@pytest.fixture
def slot() -> MemorySlot:
    return MemorySlot()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(debounce_seconds=0.01)


@pytest.fixture
def engine(slot: MemorySlot, remote: FakeRemote, sync_config: SyncConfig) -> PreferenceSyncEngine:
    """Engine over an in-memory slot and a fake remote, no session yet."""
    return PreferenceSyncEngine(slot, remote, sync_config=sync_config, storage_config=StorageConfig())


@pytest.fixture
def session() -> SessionContext:
    """Session already holding a user and token."""
    ctx = SessionContext()
    ctx.user = {"id": 42, "email": "dispatch@campus.example.edu"}
    ctx.token = "tok-abc"
    return ctx


@pytest.fixture
def channel_config() -> ChannelConfig:
    return ChannelConfig(base_reconnect_delay=0.001, max_reconnect_attempts=5)


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def channel(session: SessionContext, channel_config: ChannelConfig,
            transport_factory: FakeTransportFactory) -> EventChannel:
    return EventChannel(session, WS_BASE, channel_config, transport_factory=transport_factory)


@pytest.fixture
def sample_alert() -> Dict[str, Any]:
    return {
        "type": "emergency_alert",
        "alert": {
            "id": 917,
            "title": "Severe weather warning",
            "severity": "high",
            "building": "Science Hall",
        },
    }
