"""
Sync Service - Terminal Sync Process

Responsible for:
- Building the cache and sync engine from local configuration
- Probing cloud connectivity and running periodic flush/pull triggers
- Exposing a local health/operator API for the POS host and support staff
"""

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path

import httpx
from aiohttp import web

from ...common.config import StorageBackend, TerminalConfig, load_config_file
from ...common.exceptions import ExhaustedRetriesError, MutationNotFoundError, StorageError
from ...common.logging_setup import get_service_logger, set_log_level
from ...storage.kv_store import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from ..cache.repository import ReadThroughRepository
from ..cache.store import CacheStore
from .auth import AuthGate, StaticTokenProvider
from .client import CloudClient
from .connectivity import ProbeConnectivity
from .coordinator import SyncCoordinator
from .negotiator import VersionNegotiator
from .outbox import MutationOutbox

logger = get_service_logger("sync.service")


class SyncService:
    """
    Sync Service

    Owns every engine component for one terminal. The health server only
    listens on localhost.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: TerminalConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or load_config_file(config_path)
        set_log_level(self.config.log_level)

        self.kv = self._create_store()
        self.cache = CacheStore(self.kv)
        self.client = CloudClient(
            self.config.cloud.url,
            timeout_s=self.config.cloud.request_timeout_s,
            transport=transport,
        )
        self.connectivity = ProbeConnectivity(
            self.client,
            health_path=self.config.cloud.health_path,
            interval_s=self.config.sync.probe_interval_s,
        )
        self.token_provider = StaticTokenProvider(self.config.cloud.token)
        self.auth = AuthGate(self.token_provider)

        self.negotiator = VersionNegotiator(self.client, self.cache, self.connectivity, self.auth)
        self.repository = ReadThroughRepository(
            self.cache,
            self.negotiator,
            self.client,
            self.connectivity,
            self.auth,
            customers_revalidate_minutes=self.config.cache.customers_revalidate_minutes,
            customers_expire_minutes=self.config.cache.customers_expire_minutes,
            tables_revalidate_minutes=self.config.cache.tables_revalidate_minutes,
            tables_expire_minutes=self.config.cache.tables_expire_minutes,
            version_check_interval_s=self.config.cache.version_check_interval_s,
        )
        self.outbox = MutationOutbox(
            self.kv,
            self.client,
            self.connectivity,
            self.auth,
            max_retries=self.config.sync.max_retries,
            backoff_base_ms=self.config.sync.backoff_base_ms,
            backoff_cap_ms=self.config.sync.backoff_cap_ms,
        )

        outlet = self.config.outlet
        self.coordinator = SyncCoordinator(
            self.outbox,
            self.negotiator,
            self.repository,
            self.cache,
            self.connectivity,
            self.auth,
            context=outlet.to_context() if outlet.outlet_id else None,
            flush_interval_s=self.config.sync.flush_interval_s,
            pull_interval_s=self.config.sync.pull_interval_s,
        )

        self._start_time = datetime.now(timezone.utc)

        # Health server
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

    def _create_store(self) -> KeyValueStore:
        if self.config.cache.backend is StorageBackend.MEMORY:
            logger.warning("Using in-memory storage - queued writes will not survive a restart")
            return MemoryKeyValueStore()
        return SqliteKeyValueStore(self.config.cache.db_path)

    async def start(self) -> None:
        """Start the sync service and wait for a shutdown signal"""
        logger.info("Starting Sync Service")

        self._running = True
        await self._start_health_server()

        # First probe flips us online (if reachable), which flushes then pulls
        await self.connectivity.start()
        await self.coordinator.start()

        status = self.coordinator.get_status()
        logger.info(
            f"Sync Service started (online: {status.is_online}, pending: {status.pending_count}, "
            f"failed: {status.failed_count})",
            extra={"outlet_id": self.config.outlet.outlet_id},
        )

        self._setup_signal_handlers()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the sync service"""
        logger.info("Stopping Sync Service")

        self._running = False

        self.connectivity.stop()
        await self.coordinator.stop()
        self.coordinator.close()
        await self.repository.wait_idle()
        await self.client.close()
        await self._stop_health_server()

        logger.info("Sync Service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    # ============================================
    # HEALTH / OPERATOR API
    # ============================================

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)
        app.router.add_post("/sync", self._sync_handler)
        app.router.add_post("/auth/resume", self._auth_resume_handler)
        app.router.add_get("/mutations", self._mutations_handler)
        app.router.add_post("/mutations/{mutation_id}/requeue", self._requeue_handler)
        app.router.add_post("/mutations/{mutation_id}/retry", self._retry_handler)
        app.router.add_delete("/mutations/failed", self._clear_failed_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        self._health_runner = web.AppRunner(self.create_app())
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, "127.0.0.1", self.config.health_port)
        await site.start()

        logger.info(f"Health server started on port {self.config.health_port}")

    async def _stop_health_server(self) -> None:
        """Stop the health check HTTP server"""
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        return web.json_response({
            "status": "healthy" if self._running else "unhealthy",
            "service": "sync",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "outlet_id": self.config.outlet.outlet_id or None,
            "offline_ready": self.repository.is_offline_ready(),
            "schedulers": self.coordinator.get_scheduler_stats(),
        })

    async def _status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.coordinator.get_status().to_dict())

    async def _sync_handler(self, request: web.Request) -> web.Response:
        """Handle force sync requests"""
        result = await self.coordinator.force_sync()

        return web.json_response({
            "skipped": result.skipped,
            "reason": result.reason,
            "succeeded": result.succeeded,
            "failed": result.failed,
            "deferred": result.deferred,
            "dead_lettered": result.dead_lettered,
            "status": self.coordinator.get_status().to_dict(),
        })

    async def _auth_resume_handler(self, request: web.Request) -> web.Response:
        """Host logged in again, optionally with a new token"""
        if request.can_read_body:
            try:
                body = await request.json()
            except ValueError:
                return web.json_response({"error": "Invalid JSON body"}, status=400)
            if isinstance(body, dict) and body.get("token"):
                self.token_provider.set_token(body["token"])

        self.coordinator.resume_auth()
        return web.json_response(self.coordinator.get_status().to_dict())

    async def _mutations_handler(self, request: web.Request) -> web.Response:
        max_retries = self.outbox.max_retries
        return web.json_response({
            "mutations": [
                {**record.to_dict(), "dead": record.is_dead(max_retries)}
                for record in self.outbox.get_queue()
            ],
        })

    async def _requeue_handler(self, request: web.Request) -> web.Response:
        mutation_id = request.match_info["mutation_id"]
        try:
            record = self.coordinator.requeue(mutation_id)
        except MutationNotFoundError as e:
            return web.json_response({"error": e.message}, status=404)
        except StorageError as e:
            return web.json_response({"error": e.message}, status=500)

        return web.json_response({"mutation": record.to_dict()})

    async def _retry_handler(self, request: web.Request) -> web.Response:
        mutation_id = request.match_info["mutation_id"]
        try:
            success = await self.coordinator.retry(mutation_id)
        except MutationNotFoundError as e:
            return web.json_response({"error": e.message}, status=404)
        except ExhaustedRetriesError as e:
            return web.json_response({"error": e.message}, status=409)
        except StorageError as e:
            return web.json_response({"error": e.message}, status=500)

        return web.json_response({"success": success})

    async def _clear_failed_handler(self, request: web.Request) -> web.Response:
        try:
            removed = self.coordinator.clear_failed()
        except StorageError as e:
            return web.json_response({"error": e.message}, status=500)

        return web.json_response({"removed": removed})


async def main() -> None:
    """Main entry point"""
    service = SyncService()

    try:
        await service.start()
    finally:
        await service.stop()


def run() -> None:
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
