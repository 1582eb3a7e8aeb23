"""
Auth Gate

Wraps the host's token provider. A missing token is a silent reason to
skip a cycle. A rejected token (HTTP 401) pauses flushing and pulls until
the host reports a successful re-authentication via resume().
"""

from typing import Callable, Protocol

from ...common.events import Listeners
from ...common.logging_setup import get_service_logger

logger = get_service_logger("sync.auth")


class AuthProvider(Protocol):
    async def get_token(self) -> str | None: ...


class StaticTokenProvider:
    """Token handed over by the host after login"""

    def __init__(self, token: str | None = None):
        self._token = token

    async def get_token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token


class AuthGate:
    """Token access with pause-on-rejection"""

    def __init__(self, provider: AuthProvider):
        self.provider = provider
        self._paused = False
        self._rejected_token: str | None = None
        self._listeners = Listeners("auth")

    @property
    def is_paused(self) -> bool:
        return self._paused

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """callback(paused) on pause/resume"""
        return self._listeners.add(callback)

    async def get_token(self) -> str | None:
        """
        Usable token, or None when absent or paused.

        While paused, a token different from the rejected one means the
        host logged in again, which resumes the gate.
        """
        token = await self.provider.get_token()
        if not token:
            logger.debug("No auth token - skipping")
            return None

        if self._paused:
            if self._rejected_token is None or token == self._rejected_token:
                return None
            self.resume()

        return token

    def reject(self, token: str | None = None) -> None:
        """Record a 401; pauses until resume()"""
        if self._paused:
            return

        self._paused = True
        self._rejected_token = token
        logger.warning("Auth token rejected - pausing sync until re-authentication")
        self._listeners.emit(True)

    def resume(self) -> None:
        """Host re-authenticated; allow sync again"""
        if not self._paused:
            return

        self._paused = False
        self._rejected_token = None
        logger.info("Re-authenticated - resuming sync")
        self._listeners.emit(False)
