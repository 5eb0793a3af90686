"""
Durable key/value slots.

A slot is a synchronous ``get``/``set``/``remove`` store of string values
with no transactional guarantees. The sync engine keeps its last known good
snapshot in one; the session context keeps the credential in another key.
"""

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from ..utils.logging import get_logger
from ..utils.errors import StorageError


logger = get_logger("pulseconnect.storage")

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class DurableSlot(ABC):
    """Abstract synchronous key/value slot."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored string, or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key; missing keys are ignored."""


class MemorySlot(DurableSlot):
    """In-process slot, used for tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.writes += 1

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileSlot(DurableSlot):
    """
    Directory-backed slot: one file per key.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write never leaves a truncated value behind.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create slot directory {self.directory}: {e}", cause=e) from e

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StorageError(f"Invalid slot key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read slot {key}: {e}", cause=e) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StorageError(f"Failed to write slot {key}: {e}", cause=e) from e

        logger.debug("slot_written", key=key, size=len(value))

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to remove slot {key}: {e}", cause=e) from e


__all__ = [
    'DurableSlot',
    'MemorySlot',
    'FileSlot',
]
