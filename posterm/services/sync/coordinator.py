"""
Sync Coordinator

Public face of the sync engine for the POS host:
- Accepts writes into the outbox (optimistic commit)
- Reacts to connectivity: on reconnect, flush first, then pull reference data
- Drives periodic flush/pull triggers
- Pushes a derived SyncStatus to subscribers on every change
"""

import asyncio
from typing import Any, Callable

from ...common.events import Listeners
from ...common.logging_setup import get_service_logger
from ...common.models import FlushResult, MutationRecord, MutationType, OutletContext, SyncStatus
from ...common.scheduler import ScheduledLoop
from ..cache.repository import ReadThroughRepository
from ..cache.store import CacheStore
from .auth import AuthGate
from .connectivity import ConnectivityObserver
from .negotiator import VersionNegotiator
from .outbox import MutationOutbox

logger = get_service_logger("sync.coordinator")


class SyncCoordinator:
    """
    Ties the outbox, the negotiator and the cache together.

    Sync never blocks the caller: enqueue returns once the record is
    durable and flushing happens in the background.
    """

    def __init__(
        self,
        outbox: MutationOutbox,
        negotiator: VersionNegotiator,
        repository: ReadThroughRepository,
        cache: CacheStore,
        connectivity: ConnectivityObserver,
        auth: AuthGate,
        context: OutletContext | None = None,
        flush_interval_s: float = 30.0,
        pull_interval_s: float = 60.0,
    ):
        self.outbox = outbox
        self.negotiator = negotiator
        self.repository = repository
        self.cache = cache
        self.connectivity = connectivity
        self.auth = auth
        self.context = context

        self._listeners = Listeners("sync-status")
        self._tasks: set[asyncio.Task] = set()

        self._flush_loop = ScheduledLoop(flush_interval_s, self._flush_tick, name="outbox-flush")
        self._pull_loop = ScheduledLoop(pull_interval_s, self.pull_latest_data, name="reference-pull")

        self._unsubscribes = [
            connectivity.on_change(self._on_connectivity_change),
            outbox.on_change(self._on_outbox_change),
            auth.on_change(self._on_auth_change),
        ]

    # ============================================
    # LIFECYCLE
    # ============================================

    async def start(self) -> None:
        """Start periodic flush and pull triggers"""
        await self._flush_loop.start()
        await self._pull_loop.start()
        logger.info(
            f"Sync coordinator started (flush every {self._flush_loop.interval}s, "
            f"pull every {self._pull_loop.interval}s)"
        )

    async def stop(self) -> None:
        self._flush_loop.stop()
        self._pull_loop.stop()
        await self.wait_idle()
        logger.info("Sync coordinator stopped")

    def close(self) -> None:
        """Detach from connectivity, outbox and auth notifications"""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    def get_scheduler_stats(self) -> list[dict]:
        return [self._flush_loop.get_stats(), self._pull_loop.get_stats()]

    def set_context(self, context: OutletContext | None) -> None:
        """Outlet switch or logout"""
        self.context = context

    # ============================================
    # WRITES
    # ============================================

    async def enqueue(self, mutation_type: MutationType | str, payload: Any) -> str:
        """Accept a write; raises StorageError if it cannot be persisted"""
        return await self.outbox.enqueue(mutation_type, payload)

    async def submit_order(self, order: dict) -> str:
        """
        Commit an order locally and queue it for the cloud.

        The order shows up in local history immediately, online or not.
        """
        self.repository.record_order(order)
        return await self.outbox.enqueue(MutationType.CREATE_ORDER, order)

    async def start_shift(self, shift: dict) -> str:
        """Open a shift locally and queue it for the cloud"""
        self.repository.set_active_shift(shift)
        return await self.outbox.enqueue(MutationType.START_SHIFT, shift)

    async def end_shift(self, payload: dict) -> str:
        """Close the active shift locally and queue the closing for the cloud"""
        self.repository.set_active_shift(None)
        return await self.outbox.enqueue(MutationType.END_SHIFT, payload)

    # ============================================
    # SYNC CYCLES
    # ============================================

    async def _flush_tick(self) -> None:
        await self.outbox.flush()

    async def _flush_completely(self) -> FlushResult:
        """Flush, waiting out a pass that is already running instead of skipping"""
        result = await self.outbox.flush()
        while result.skipped and result.reason == "in_progress":
            await self.outbox.wait_for_flush()
            result = await self.outbox.flush()
        return result

    async def force_sync(self) -> FlushResult:
        """Flush the outbox, then pull reference data"""
        result = await self._flush_completely()
        await self.pull_latest_data()
        return result

    async def pull_latest_data(self) -> bool:
        """
        Refresh the menu if the server has a newer version.

        Returns:
            True if a newer snapshot was stored
        """
        if not self.connectivity.is_online():
            return False

        if self.context is None or not self.context.outlet_id:
            logger.debug("No outlet selected - skipping data pull")
            return False

        try:
            current_version = self.cache.get_version(self.negotiator.cache_key)
            updated = await self.negotiator.check_for_updates(self.context, current_version)
        except Exception as e:
            logger.error(f"Data pull failed: {e}", exc_info=True)
            return False

        logger.debug("Data pull complete")
        return updated

    async def _on_reconnect(self) -> None:
        await self._flush_completely()
        await self.pull_latest_data()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for background reconnect work and outbox flushes"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.outbox.wait_idle()

    # ============================================
    # OPERATOR ACTIONS
    # ============================================

    def resume_auth(self) -> None:
        """Host re-authenticated; resume and catch up"""
        self.auth.resume()
        if self.connectivity.is_online():
            self._spawn(self._on_reconnect())

    def requeue(self, mutation_id: str) -> MutationRecord:
        return self.outbox.requeue(mutation_id)

    async def retry(self, mutation_id: str) -> bool:
        return await self.outbox.retry(mutation_id)

    def clear_failed(self) -> int:
        return self.outbox.clear_failed()

    def clear_all_pending(self) -> int:
        return self.outbox.clear_all()

    # ============================================
    # STATUS & LISTENERS
    # ============================================

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.connectivity.is_online(),
            is_syncing=self.outbox.is_flushing,
            pending_count=self.outbox.pending_count(),
            failed_count=self.outbox.failed_count(),
            last_sync_at=self.cache.get_last_sync(),
            auth_paused=self.auth.is_paused,
        )

    def subscribe(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        return self._listeners.add(listener)

    def _notify(self) -> None:
        if len(self._listeners):
            self._listeners.emit(self.get_status())

    def _on_connectivity_change(self, online: bool) -> None:
        self._notify()
        if online:
            logger.info("Back online - syncing...")
            self._spawn(self._on_reconnect())

    def _on_outbox_change(self, event: str, result: FlushResult | None) -> None:
        if event == "flush_finished" and result is not None and not result.skipped:
            self.cache.mark_synced()
        self._notify()

    def _on_auth_change(self, paused: bool) -> None:
        self._notify()
