"""
Version Negotiator

Compares the locally cached menu version with the server's and refetches
the whole snapshot only when the server reports changes.
"""

from typing import Callable

from ...common.events import Listeners
from ...common.exceptions import AuthError, NetworkError
from ...common.logging_setup import get_service_logger
from ...common.models import OutletContext, ReferenceSnapshot
from ..cache.store import CacheStore
from .auth import AuthGate
from .client import CloudClient
from .connectivity import ConnectivityObserver

logger = get_service_logger("sync.negotiator")

MENU_KEY = "offline:menu"


class VersionNegotiator:
    """Version-gated refresh of the menu snapshot"""

    def __init__(
        self,
        client: CloudClient,
        cache: CacheStore,
        connectivity: ConnectivityObserver,
        auth: AuthGate,
        cache_key: str = MENU_KEY,
    ):
        self.client = client
        self.cache = cache
        self.connectivity = connectivity
        self.auth = auth
        self.cache_key = cache_key
        self._updated = Listeners("menu-updated")

    def on_updated(self, callback: Callable[[ReferenceSnapshot], None]) -> Callable[[], None]:
        return self._updated.add(callback)

    async def refresh(self, context: OutletContext) -> ReferenceSnapshot:
        """
        Fetch and persist the full snapshot.

        Raises:
            NetworkError: offline, no token, or fetch failed
            AuthError: credential rejected
        """
        if not self.connectivity.is_online():
            raise NetworkError("Offline and no cached menu", operation="fetch_menu")

        token = await self.auth.get_token()
        if not token:
            raise NetworkError("No auth token available", operation="fetch_menu")

        try:
            snapshot = await self.client.fetch_menu(context, token, cached_at=self.cache.clock())
        except AuthError:
            self.auth.reject(token)
            raise

        if self.cache.set(self.cache_key, snapshot.to_dict(), version=snapshot.version):
            self._updated.emit(snapshot)
            return snapshot

        # Stale candidate or storage failure: serve what the store holds
        stored = self.cache.get(self.cache_key)
        return ReferenceSnapshot.from_dict(stored) if stored else snapshot

    async def check_for_updates(self, context: OutletContext, local_version: int) -> bool:
        """
        Refetch the snapshot if the server has a newer version.

        Returns:
            True if a newer snapshot was persisted
        """
        if not self.connectivity.is_online():
            logger.debug("Offline - skipping update check")
            return False

        token = await self.auth.get_token()
        if not token:
            logger.debug("No auth token - skipping update check")
            return False

        try:
            has_changes = await self.client.check_sync(context, local_version, token)
            if not has_changes:
                logger.debug(f"Menu is up to date (version {local_version})")
                return False

            logger.info(
                f"Server has updates since version {local_version}, refreshing...",
                extra={"version": local_version, "outlet_id": context.outlet_id},
            )
            snapshot = await self.client.fetch_menu(context, token, cached_at=self.cache.clock())

        except AuthError:
            self.auth.reject(token)
            return False
        except NetworkError as e:
            logger.warning(f"Update check failed: {e}")
            return False

        # Wholesale replace, guarded by version monotonicity
        if not self.cache.set(self.cache_key, snapshot.to_dict(), version=snapshot.version):
            return False

        self._updated.emit(snapshot)
        return True
