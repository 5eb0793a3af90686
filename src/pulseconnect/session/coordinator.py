"""Glue between the session context, the sync engine and the event channel."""

from ..channel.channel import EventChannel
from ..sync.engine import PreferenceSyncEngine
from ..utils.logging import get_logger
from .context import SessionContext


logger = get_logger("pulseconnect.session.coordinator")


class SessionCoordinator:
    """
    Drives the engine and the channel from authentication transitions.

    On login the engine loads and pulls, then the channel connects with a
    fresh backoff budget. On logout the channel is closed for good and
    remote sync is switched off; local preferences stay usable.
    """

    def __init__(self, session: SessionContext, engine: PreferenceSyncEngine, channel: EventChannel):
        self.session = session
        self.engine = engine
        self.channel = channel
        self._started = False

    async def start(self) -> None:
        """Subscribe to transitions and apply the current session once."""
        if self._started:
            return
        self._started = True
        self.session.subscribe(self._on_auth_change)
        await self._on_auth_change(self.session.is_authenticated)

    async def stop(self) -> None:
        """Unsubscribe, close the channel and wait for pending pushes."""
        if not self._started:
            return
        self._started = False
        self.session.unsubscribe(self._on_auth_change)
        await self.channel.disconnect()
        await self.engine.flush()
        logger.info("coordinator_stopped")

    async def _on_auth_change(self, authenticated: bool) -> None:
        if authenticated:
            logger.info("session_active", user_id=self.session.user_id)
            self.engine.set_session(True)
            await self.engine.initialize(True)
            self.channel.reset_backoff()
            self.channel.connect()
        else:
            logger.info("session_inactive")
            await self.channel.disconnect()
            self.engine.set_session(False)


__all__ = [
    'SessionCoordinator',
]
