"""
Engine Data Model

Dataclasses shared by the cache and sync services.
Timestamps are epoch seconds; to_dict() renders ISO strings where the
value is shown to operators.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class MutationType(str, Enum):
    """Write operations accepted by the outbox"""
    CREATE_ORDER = "CREATE_ORDER"
    UPDATE_TABLE = "UPDATE_TABLE"
    CLOSE_TABLE = "CLOSE_TABLE"
    START_SHIFT = "START_SHIFT"
    END_SHIFT = "END_SHIFT"
    STOCK_MOVE = "STOCK_MOVE"
    CLOSE_DAY = "CLOSE_DAY"


@dataclass(frozen=True)
class OutletContext:
    """Tenant/outlet scope for remote reads"""
    tenant_id: str
    outlet_id: str


@dataclass
class CacheEntry:
    """One cached value with staleness metadata"""
    key: str
    data: Any
    cached_at: float
    expires_at: float | None = None
    version: int | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "data": self.data,
            "cached_at": self.cached_at,
            "expires_at": self.expires_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=raw["key"],
            data=raw.get("data"),
            cached_at=float(raw.get("cached_at", 0)),
            expires_at=raw.get("expires_at"),
            version=raw.get("version"),
        )


@dataclass
class MutationRecord:
    """A locally accepted write waiting for remote confirmation"""
    id: str
    type: MutationType
    payload: Any
    created_at: float
    retry_count: int = 0
    last_error: str | None = None
    last_attempt_at: float | None = None

    def is_dead(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "created_at": self.created_at,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "last_attempt_at": self.last_attempt_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "MutationRecord":
        return cls(
            id=raw["id"],
            type=MutationType(raw["type"]),
            payload=raw.get("payload"),
            created_at=float(raw["created_at"]),
            retry_count=int(raw.get("retry_count", 0)),
            last_error=raw.get("last_error"),
            last_attempt_at=raw.get("last_attempt_at"),
        )


@dataclass
class SyncStatus:
    """Derived sync state pushed to subscribers"""
    is_online: bool
    is_syncing: bool
    pending_count: int
    failed_count: int
    last_sync_at: float | None = None
    auth_paused: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_count": self.pending_count,
            "failed_count": self.failed_count,
            "last_sync_at": _iso(self.last_sync_at),
            "auth_paused": self.auth_paused,
        }


@dataclass
class ReferenceSnapshot:
    """Versioned reference data collection (menu)"""
    items: list[dict] = field(default_factory=list)
    categories: list[dict] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    cached_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "categories": self.categories,
            "metadata": self.metadata,
            "version": self.version,
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ReferenceSnapshot":
        return cls(
            items=list(raw.get("items") or []),
            categories=list(raw.get("categories") or []),
            metadata=dict(raw.get("metadata") or {}),
            version=int(raw.get("version") or 0),
            cached_at=float(raw.get("cached_at") or 0.0),
        )


@dataclass
class FlushResult:
    """Outcome of one outbox flush pass"""
    skipped: bool = False
    reason: str | None = None
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    dead_lettered: list[str] = field(default_factory=list)
    deferred: int = 0
    auth_failed: bool = False


@dataclass
class CacheStats:
    """Cache store summary"""
    count: int
    last_sync_at: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "last_sync_at": _iso(self.last_sync_at) or "Never",
        }
