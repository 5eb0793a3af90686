"""
Session context: current identity, bearer credential, and auth transitions.

The core never acquires or renews credentials itself. Whatever performs the
login hands the resulting user record and token to ``login()``; observers
(the sync engine and event channel glue) react to the transition.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..storage.slot import DurableSlot
from ..utils.logging import get_logger


logger = get_logger("pulseconnect.session")

AuthObserver = Callable[[bool], Union[None, Awaitable[None]]]

TOKEN_KEY = "token"
USER_KEY = "user"


class SessionContext:
    """Holds the authenticated user and notifies observers on transitions."""

    def __init__(self, slot: Optional[DurableSlot] = None):
        self.slot = slot
        self.user: Optional[Dict[str, Any]] = None
        self.token: Optional[str] = None
        self._observers: List[AuthObserver] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def user_id(self) -> Optional[str]:
        if not self.user or self.user.get("id") is None:
            return None
        return str(self.user["id"])

    def get_token(self) -> Optional[str]:
        return self.token

    def subscribe(self, observer: AuthObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: AuthObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def restore(self) -> bool:
        """Load a previously persisted session from the slot, without notifying."""
        if self.slot is None:
            return False

        token = self.slot.get(TOKEN_KEY)
        raw_user = self.slot.get(USER_KEY)
        user = None
        if raw_user:
            try:
                user = json.loads(raw_user)
            except ValueError:
                logger.warning("stored_user_unreadable")

        self.token = token or None
        self.user = user if isinstance(user, dict) else None
        logger.debug("session_restored", authenticated=self.is_authenticated)
        return self.is_authenticated

    async def login(self, user: Dict[str, Any], token: str) -> None:
        """Adopt an already-issued credential and announce the transition."""
        self.user = dict(user)
        self.token = token
        if self.slot is not None:
            self.slot.set(TOKEN_KEY, token)
            self.slot.set(USER_KEY, json.dumps(self.user))

        logger.info("session_started", user_id=self.user_id)
        await self._notify(True)

    async def logout(self) -> None:
        self.user = None
        self.token = None
        if self.slot is not None:
            self.slot.remove(TOKEN_KEY)
            self.slot.remove(USER_KEY)

        logger.info("session_ended")
        await self._notify(False)

    async def _notify(self, authenticated: bool) -> None:
        for observer in list(self._observers):
            try:
                result = observer(authenticated)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("session_observer_failed", error=str(e), exc_info=True)


__all__ = [
    'SessionContext',
    'AuthObserver',
]
