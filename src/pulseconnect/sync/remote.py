"""Remote preference service clients"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..utils.logging import get_logger
from ..utils.errors import RemoteServiceError

logger = get_logger("pulseconnect.sync.remote")

SYNC_PATH = "/settings/sync/"


class RemotePreferenceService(ABC):
    """Request/response endpoint holding the canonical snapshot"""

    @abstractmethod
    async def fetch(self) -> Dict[str, Any]:
        """Return the ``{"success": bool, "settings": {...}}`` envelope.

        Raises RemoteServiceError when the service cannot be reached.
        """

    @abstractmethod
    async def store(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a full snapshot and return the acknowledgement.

        Raises RemoteServiceError when the service cannot be reached.
        """


class HttpPreferenceService(RemotePreferenceService):
    """HTTP client for ``GET``/``POST {api_url}/settings/sync/``

    The bearer credential is read through ``token_provider`` on every
    request so a token refreshed by the session is picked up without
    rebuilding the client.
    """

    def __init__(self, api_url: str, token_provider: Callable[[], Optional[str]],
                 timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.api_url = api_url.rstrip('/')
        self.token_provider = token_provider
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def url(self) -> str:
        return f"{self.api_url}{SYNC_PATH}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = self._get_session()
        try:
            async with session.request(method, self.url, json=body, headers=self._headers()) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteServiceError(
                        f"HTTP {response.status} from {method} {self.url}: {text[:200]}",
                        status=response.status
                    )
                if response.content_length == 0:
                    return {}
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteServiceError(f"{method} {self.url} failed: {e}", cause=e) from e
        except ValueError as e:
            raise RemoteServiceError(f"Invalid JSON from {method} {self.url}", cause=e) from e

        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise RemoteServiceError(f"Unexpected response body from {method} {self.url}")
        return payload

    async def fetch(self) -> Dict[str, Any]:
        payload = await self._request("GET")
        logger.debug("remote_snapshot_fetched", keys=len(payload.get("settings") or {}))
        return payload

    async def store(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        ack = await self._request("POST", snapshot)
        logger.debug("remote_snapshot_stored", keys=len(snapshot))
        return ack

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    'RemotePreferenceService',
    'HttpPreferenceService',
    'SYNC_PATH',
]
