"""
Read-Through Repository

Stale-while-revalidate reads for the POS:
1. Warm cache: return local data immediately, revalidate in the background
2. Cold cache: wait for the network, persist, return (errors propagate)
3. Background failures are logged; stale data keeps serving reads

Menu data is revalidated by version negotiation. The customer directory
and open-table state have no server version and are revalidated once
older than a fixed window. Tables change often, so their window is short.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ...common.events import Listeners
from ...common.exceptions import AuthError, NetworkError
from ...common.logging_setup import get_service_logger
from ...common.models import OutletContext, ReferenceSnapshot
from ..sync.auth import AuthGate
from ..sync.client import CloudClient
from ..sync.connectivity import ConnectivityObserver
from ..sync.negotiator import VersionNegotiator
from .store import CacheStore

logger = get_service_logger("cache.repository")

CUSTOMERS_KEY = "offline:customers"
TABLES_KEY = "offline:tables"
SHIFT_KEY = "offline:shift"
ORDERS_KEY = "offline:orders"

# Local order history kept for receipts/reprints while offline
MAX_LOCAL_ORDERS = 500


class EntityKind(str, Enum):
    """Cached entity collections"""
    MENU = "menu"
    CUSTOMERS = "customers"
    TABLES = "tables"


@dataclass(frozen=True)
class EntityPolicy:
    """How one entity kind is cached and revalidated"""
    cache_key: str
    versioned: bool
    revalidate_after_minutes: float | None = None
    expire_after_minutes: float | None = None


class ReadThroughRepository:
    """
    Primary data access layer for the POS.

    Revalidation tasks are tracked so callers (tests, shutdown) can wait
    for them with wait_idle(); at most one runs per entity kind.
    """

    def __init__(
        self,
        cache: CacheStore,
        negotiator: VersionNegotiator,
        client: CloudClient,
        connectivity: ConnectivityObserver,
        auth: AuthGate,
        customers_revalidate_minutes: float = 60.0,
        customers_expire_minutes: float | None = 24 * 60.0,
        tables_revalidate_minutes: float = 1.0,
        tables_expire_minutes: float | None = 5.0,
        version_check_interval_s: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.negotiator = negotiator
        self.client = client
        self.connectivity = connectivity
        self.auth = auth
        self.version_check_interval_s = version_check_interval_s
        self.monotonic = monotonic

        self.policies: dict[EntityKind, EntityPolicy] = {
            EntityKind.MENU: EntityPolicy(cache_key=negotiator.cache_key, versioned=True),
            EntityKind.CUSTOMERS: EntityPolicy(
                cache_key=CUSTOMERS_KEY,
                versioned=False,
                revalidate_after_minutes=customers_revalidate_minutes,
                expire_after_minutes=customers_expire_minutes,
            ),
            EntityKind.TABLES: EntityPolicy(
                cache_key=TABLES_KEY,
                versioned=False,
                revalidate_after_minutes=tables_revalidate_minutes,
                expire_after_minutes=tables_expire_minutes,
            ),
        }
        # CloudClient method per unversioned kind
        self._fetchers: dict[EntityKind, str] = {
            EntityKind.CUSTOMERS: "fetch_customers",
            EntityKind.TABLES: "fetch_open_tables",
        }

        self._updated = Listeners("entity-updated")
        self._inflight: dict[EntityKind, asyncio.Task] = {}
        self._last_checked: dict[EntityKind, float] = {}

        # Menu refreshes from the periodic pull also count as "updated"
        negotiator.on_updated(lambda snapshot: self._updated.emit(EntityKind.MENU, snapshot.to_dict()))

    def on_updated(self, callback: Callable[[EntityKind, Any], None]) -> Callable[[], None]:
        """callback(kind, data) whenever a fresher value is persisted"""
        return self._updated.add(callback)

    # ============================================
    # READS
    # ============================================

    async def get_entity(self, kind: EntityKind, context: OutletContext) -> Any:
        """
        Get an entity collection, local-first.

        Raises:
            NetworkError, AuthError: cold cache and the fetch failed
        """
        policy = self.policies[kind]
        entry = self.cache.get_entry(policy.cache_key)

        if entry is not None:
            if self.connectivity.is_online() and self._needs_revalidation(kind, policy, entry.cached_at):
                self._start_revalidation(kind, context, entry.version or 0)
            return entry.data

        # Critical miss: must wait for the network (first load)
        logger.info(f"No cached {kind.value} - fetching from server")
        data = await self._fetch(kind, context)
        self._last_checked[kind] = self.monotonic()
        return data

    async def get_menu(self, context: OutletContext) -> ReferenceSnapshot:
        data = await self.get_entity(EntityKind.MENU, context)
        return ReferenceSnapshot.from_dict(data)

    async def get_customers(self, context: OutletContext) -> list[dict]:
        return await self.get_entity(EntityKind.CUSTOMERS, context)

    async def get_tables(self, context: OutletContext) -> list[dict]:
        """Open tables; a copy older than the table TTL is never served"""
        return await self.get_entity(EntityKind.TABLES, context)

    def _needs_revalidation(self, kind: EntityKind, policy: EntityPolicy, cached_at: float) -> bool:
        if policy.versioned:
            last = self._last_checked.get(kind)
            return last is None or self.monotonic() - last >= self.version_check_interval_s

        age_minutes = (self.cache.clock() - cached_at) / 60
        return age_minutes >= (policy.revalidate_after_minutes or 0)

    async def _fetch(self, kind: EntityKind, context: OutletContext) -> Any:
        """Network fetch + persist; errors propagate"""
        if kind is EntityKind.MENU:
            snapshot = await self.negotiator.refresh(context)
            return snapshot.to_dict()

        policy = self.policies[kind]
        if not self.connectivity.is_online():
            raise NetworkError(f"Offline and no cached {kind.value}", operation=f"fetch_{kind.value}")

        token = await self.auth.get_token()
        if not token:
            raise NetworkError("No auth token available", operation=f"fetch_{kind.value}")

        try:
            fetch = getattr(self.client, self._fetchers[kind])
            data = await fetch(context, token)
        except AuthError:
            self.auth.reject(token)
            raise

        self.cache.set(policy.cache_key, data, ttl_minutes=policy.expire_after_minutes)
        return data

    # ============================================
    # BACKGROUND REVALIDATION
    # ============================================

    def _start_revalidation(self, kind: EntityKind, context: OutletContext, local_version: int) -> None:
        task = self._inflight.get(kind)
        if task is not None and not task.done():
            return

        self._last_checked[kind] = self.monotonic()
        task = asyncio.create_task(self._revalidate(kind, context, local_version))
        self._inflight[kind] = task

        def _done(finished: asyncio.Task) -> None:
            if self._inflight.get(kind) is finished:
                del self._inflight[kind]

        task.add_done_callback(_done)

    async def _revalidate(self, kind: EntityKind, context: OutletContext, local_version: int) -> None:
        try:
            if kind is EntityKind.MENU:
                # Negotiator emits the "updated" notification itself
                await self.negotiator.check_for_updates(context, local_version)
                return

            data = await self._fetch(kind, context)
            self._updated.emit(kind, data)

        except (NetworkError, AuthError) as e:
            logger.warning(f"Background {kind.value} refresh failed: {e}")
        except Exception as e:
            logger.error(f"Background {kind.value} refresh error: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait for in-flight background revalidations"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ============================================
    # LOCAL ORDER HISTORY
    # ============================================

    def record_order(self, order: dict) -> None:
        """Prepend an order to the local history (newest first)"""
        orders = self.get_orders()
        orders.insert(0, order)
        self.cache.set(ORDERS_KEY, orders[:MAX_LOCAL_ORDERS])

    def get_orders(self) -> list[dict]:
        return self.cache.get(ORDERS_KEY) or []

    # ============================================
    # ACTIVE SHIFT
    # ============================================

    def set_active_shift(self, shift: dict | None) -> None:
        """Remember the open shift (no expiry); None clears it"""
        if shift is None:
            self.cache.delete(SHIFT_KEY)
            logger.info("Active shift cleared")
            return
        self.cache.set(SHIFT_KEY, shift)

    def get_active_shift(self) -> dict | None:
        return self.cache.get(SHIFT_KEY)

    def is_offline_ready(self) -> bool:
        """Minimum data for offline operation: menu items and outlet details"""
        data = self.cache.get(self.negotiator.cache_key)
        if not data:
            return False
        snapshot = ReferenceSnapshot.from_dict(data)
        return bool(snapshot.items and snapshot.metadata.get("outlet"))
