"""
Mutation Outbox

Durable FIFO queue of writes accepted locally but not yet confirmed by the
cloud. One queue for every write type.

Record lifecycle:
    PENDING --success--> removed
    PENDING --failure--> PENDING (retry_count + 1, waits out its backoff)
    PENDING --retry_count >= max_retries--> DEAD (kept until cleared/requeued)

Robustness Guarantees:
1. A record is removed only after the cloud confirms it
2. Only one flush pass runs at a time; a second trigger is skipped
3. Records enqueued during a pass wait for the next trigger
4. A 401 pauses the auth gate instead of burning retries
"""

import asyncio
import time
import uuid
from typing import Any, Callable

from ...common.events import Listeners
from ...common.exceptions import (
    AuthError,
    ExhaustedRetriesError,
    MutationNotFoundError,
    NetworkError,
    StorageError,
)
from ...common.logging_setup import get_service_logger, log_mutation_result
from ...common.models import FlushResult, MutationRecord, MutationType
from ...storage.kv_store import KeyValueStore
from .auth import AuthGate
from .client import CloudClient
from .connectivity import ConnectivityObserver

logger = get_service_logger("sync.outbox")

QUEUE_KEY = "outbox:queue"


class MutationOutbox:
    """
    Outbox over an injected KeyValueStore.

    Listeners receive (event, flush_result) where event is one of
    enqueued, flush_started, flush_finished, requeued, cleared.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        client: CloudClient,
        connectivity: ConnectivityObserver,
        auth: AuthGate,
        max_retries: int = 5,
        backoff_base_ms: int = 1000,
        backoff_cap_ms: int = 60000,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.kv = kv
        self.client = client
        self.connectivity = connectivity
        self.auth = auth
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.clock = clock
        self.id_factory = id_factory

        self._flush_lock = asyncio.Lock()
        self._events = Listeners("outbox")
        self._tasks: set[asyncio.Task] = set()

    def on_change(self, callback: Callable[[str, FlushResult | None], None]) -> Callable[[], None]:
        return self._events.add(callback)

    @property
    def is_flushing(self) -> bool:
        return self._flush_lock.locked()

    # ============================================
    # PERSISTENCE
    # ============================================

    def _load(self) -> list[MutationRecord]:
        raw = self.kv.get(QUEUE_KEY)
        if not isinstance(raw, list):
            return []
        return [MutationRecord.from_dict(item) for item in raw]

    def _save(self, records: list[MutationRecord]) -> None:
        self.kv.set(QUEUE_KEY, [record.to_dict() for record in records])

    def _update(self, mutation_id: str, change: Callable[[MutationRecord], None]) -> MutationRecord | None:
        """Apply change to the stored copy of one record (re-reads the queue)"""
        records = self._load()
        for record in records:
            if record.id == mutation_id:
                change(record)
                self._save(records)
                return record
        return None

    def _remove(self, mutation_id: str) -> None:
        records = self._load()
        self._save([record for record in records if record.id != mutation_id])

    # ============================================
    # QUEUE OPERATIONS
    # ============================================

    async def enqueue(self, mutation_type: MutationType | str, payload: Any) -> str:
        """
        Accept a write locally.

        Raises:
            StorageError: the record could not be persisted
        """
        record = MutationRecord(
            id=self.id_factory(),
            type=MutationType(mutation_type),
            payload=payload,
            created_at=self.clock(),
        )

        records = self._load()
        records.append(record)
        self._save(records)

        logger.info(
            f"Queued {record.type.value} ({record.id}). Queue size: {len(records)}",
            extra={"mutation_id": record.id, "mutation_type": record.type.value},
        )
        self._events.emit("enqueued", None)

        # Try to sync immediately if online
        if self.connectivity.is_online():
            self.schedule_flush()

        return record.id

    def get_queue(self) -> list[MutationRecord]:
        """All queued records in insertion order, DEAD ones included"""
        try:
            return self._load()
        except StorageError as e:
            logger.error(f"Error reading outbox: {e}")
            return []

    def get_dead_letters(self) -> list[MutationRecord]:
        return [r for r in self.get_queue() if r.is_dead(self.max_retries)]

    def pending_count(self) -> int:
        return sum(1 for r in self.get_queue() if not r.is_dead(self.max_retries))

    def failed_count(self) -> int:
        return len(self.get_dead_letters())

    def backoff_delay(self, retry_count: int) -> float:
        """Seconds a record waits after its last failed attempt"""
        if retry_count <= 0:
            return 0.0
        return min(self.backoff_cap_ms, self.backoff_base_ms * 2 ** retry_count) / 1000.0

    def _is_eligible(self, record: MutationRecord, now: float) -> bool:
        if record.is_dead(self.max_retries):
            return False
        if record.last_attempt_at is None or record.retry_count == 0:
            return True
        return now >= record.last_attempt_at + self.backoff_delay(record.retry_count)

    # ============================================
    # FLUSH
    # ============================================

    def schedule_flush(self) -> None:
        """Run flush() in the background"""
        task = asyncio.create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for background flush tasks"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait_for_flush(self) -> None:
        """Wait until the pass currently holding the flush lock has finished"""
        async with self._flush_lock:
            pass

    async def flush(self) -> FlushResult:
        """
        Submit eligible records in insertion order.

        Skipped (no-op) when a pass is already running, when offline, or
        when no usable auth token is available.
        """
        if self._flush_lock.locked():
            logger.debug("Flush already in progress - skipping")
            return FlushResult(skipped=True, reason="in_progress")

        async with self._flush_lock:
            if not self.connectivity.is_online():
                logger.debug("Offline - skipping flush")
                return FlushResult(skipped=True, reason="offline")

            token = await self.auth.get_token()
            if not token:
                return FlushResult(skipped=True, reason="no_token")

            try:
                snapshot = self._load()
            except StorageError as e:
                logger.error(f"Cannot read outbox for flush: {e}")
                return FlushResult(skipped=True, reason="storage")

            result = FlushResult()
            self._events.emit("flush_started", None)
            try:
                await self._flush_records(snapshot, token, result)
            finally:
                self._events.emit("flush_finished", result)

            if result.attempted:
                logger.info(
                    f"Flush complete. Synced: {result.succeeded}, failed: {result.failed}, "
                    f"deferred: {result.deferred}",
                    extra={"succeeded": result.succeeded, "failed": result.failed},
                )
            return result

    async def _flush_records(self, snapshot: list[MutationRecord], token: str, result: FlushResult) -> None:
        for record in snapshot:
            if record.is_dead(self.max_retries):
                continue

            if not self.connectivity.is_online():
                logger.info("Went offline during flush - stopping pass")
                break

            if not self._is_eligible(record, self.clock()):
                result.deferred += 1
                continue

            result.attempted += 1
            outcome = await self._attempt(record, token)

            if outcome == "ok":
                result.succeeded += 1
            elif outcome == "auth":
                result.auth_failed = True
                break
            else:
                result.failed += 1
                if outcome == "dead":
                    result.dead_lettered.append(record.id)

    async def _attempt(self, record: MutationRecord, token: str) -> str:
        """
        Push one record and persist the outcome.

        Returns:
            "ok", "failed", "dead", or "auth"
        """
        attempted_at = self.clock()

        try:
            await self.client.push_mutation(record, token)

        except AuthError as e:
            def note_auth(stored: MutationRecord) -> None:
                stored.last_error = str(e)
                stored.last_attempt_at = attempted_at

            self._persist_outcome(record.id, note_auth)
            self.auth.reject(token)
            logger.warning(f"{record.type.value} ({record.id}) rejected: {e}")
            return "auth"

        except Exception as e:
            if not isinstance(e, NetworkError):
                logger.error(f"Unexpected error pushing {record.id}: {e}", exc_info=True)

            def note_failure(stored: MutationRecord) -> None:
                stored.retry_count += 1
                stored.last_error = str(e)
                stored.last_attempt_at = attempted_at

            stored = self._persist_outcome(record.id, note_failure)
            retry_count = stored.retry_count if stored else record.retry_count + 1
            log_mutation_result(
                logger, record.id, record.type.value,
                success=False, retry_count=retry_count, error=str(e),
            )

            if retry_count >= self.max_retries:
                logger.error(
                    f"{record.type.value} ({record.id}) exhausted retries ({retry_count}) - parked for manual action",
                    extra={"mutation_id": record.id, "retry_count": retry_count},
                )
                return "dead"
            return "failed"

        try:
            self._remove(record.id)
        except StorageError as e:
            # Stays queued; the idempotency key makes the resend harmless
            logger.error(f"Synced {record.id} but could not dequeue it: {e}")

        log_mutation_result(logger, record.id, record.type.value, success=True)
        return "ok"

    def _persist_outcome(
        self,
        mutation_id: str,
        change: Callable[[MutationRecord], None],
    ) -> MutationRecord | None:
        try:
            return self._update(mutation_id, change)
        except StorageError as e:
            logger.error(f"Could not record outcome for {mutation_id}: {e}")
            return None

    # ============================================
    # OPERATOR ACTIONS
    # ============================================

    def _find(self, mutation_id: str) -> MutationRecord:
        for record in self._load():
            if record.id == mutation_id:
                return record
        raise MutationNotFoundError(mutation_id)

    async def retry(self, mutation_id: str) -> bool:
        """
        Attempt one record now, ignoring its backoff window.

        Returns:
            True if the record is confirmed (or already gone)

        Raises:
            MutationNotFoundError: unknown id
            ExhaustedRetriesError: record is DEAD; requeue() it first
        """
        record = self._find(mutation_id)
        if record.is_dead(self.max_retries):
            raise ExhaustedRetriesError(record.id, record.retry_count)

        if not self.connectivity.is_online():
            return False

        async with self._flush_lock:
            token = await self.auth.get_token()
            if not token:
                return False

            try:
                record = self._find(mutation_id)
            except MutationNotFoundError:
                return True

            self._events.emit("flush_started", None)
            outcome = await self._attempt(record, token)
            self._events.emit("flush_finished", None)

        return outcome == "ok"

    def requeue(self, mutation_id: str) -> MutationRecord:
        """Reset a record's retry budget; it keeps its queue position"""
        def reset(stored: MutationRecord) -> None:
            stored.retry_count = 0
            stored.last_error = None
            stored.last_attempt_at = None

        record = self._update(mutation_id, reset)
        if record is None:
            raise MutationNotFoundError(mutation_id)

        logger.info(f"Requeued {record.type.value} ({record.id})", extra={"mutation_id": record.id})
        self._events.emit("requeued", None)
        return record

    def clear_failed(self) -> int:
        """Drop DEAD records; returns how many were removed"""
        records = self._load()
        remaining = [r for r in records if not r.is_dead(self.max_retries)]
        self._save(remaining)

        removed = len(records) - len(remaining)
        logger.info(f"Cleared {removed} failed mutations")
        self._events.emit("cleared", None)
        return removed

    def clear_all(self) -> int:
        """Drop every queued record; returns how many were removed"""
        records = self._load()
        self._save([])

        logger.warning(f"Cleared all {len(records)} queued mutations")
        self._events.emit("cleared", None)
        return len(records)
