"""
Configuration Dataclasses

Type-safe configuration structures for the terminal.
Loaded from a local YAML file with environment variable overrides.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .logging_setup import get_service_logger
from .models import OutletContext

logger = get_service_logger("config")

DEFAULT_DB_PATH = "/opt/posterm/data/terminal.db"


class StorageBackend(str, Enum):
    """Supported key-value storage backends"""
    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass
class CloudSettings:
    """Remote system of record"""
    url: str = ""
    token: str | None = None
    request_timeout_s: float = 15.0
    health_path: str = "/api/health"


@dataclass
class OutletSettings:
    """Which outlet this terminal serves"""
    tenant_id: str = ""
    outlet_id: str = ""

    def to_context(self) -> OutletContext:
        return OutletContext(tenant_id=self.tenant_id, outlet_id=self.outlet_id)


@dataclass
class CacheSettings:
    """Local cache settings"""
    backend: StorageBackend = StorageBackend.SQLITE
    db_path: str = DEFAULT_DB_PATH
    customers_revalidate_minutes: float = 60.0
    customers_expire_minutes: float = 24 * 60.0
    tables_revalidate_minutes: float = 1.0
    tables_expire_minutes: float = 5.0
    version_check_interval_s: float = 30.0


@dataclass
class SyncSettings:
    """Outbox and coordinator settings"""
    max_retries: int = 5
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 60000
    flush_interval_s: float = 30.0
    pull_interval_s: float = 60.0
    probe_interval_s: float = 15.0


@dataclass
class TerminalConfig:
    """Complete terminal configuration"""
    cloud: CloudSettings = field(default_factory=CloudSettings)
    outlet: OutletSettings = field(default_factory=OutletSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    health_port: int = 8090
    log_level: str = "INFO"


def _positive(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def load_terminal_config(data: dict, env: dict[str, str] | None = None) -> TerminalConfig:
    """Load TerminalConfig from dictionary (e.g., from YAML file)"""
    env = os.environ if env is None else env

    cloud_data = data.get("cloud") or {}
    cloud = CloudSettings(
        url=(env.get("POSTERM_CLOUD_URL") or cloud_data.get("url") or "").rstrip("/"),
        token=env.get("POSTERM_TOKEN") or cloud_data.get("token"),
        request_timeout_s=_positive(
            cloud_data.get("request_timeout_s", 15.0), "cloud.request_timeout_s"
        ),
        health_path=cloud_data.get("health_path", "/api/health"),
    )

    outlet_data = data.get("outlet") or {}
    outlet = OutletSettings(
        tenant_id=env.get("POSTERM_TENANT_ID") or str(outlet_data.get("tenant_id") or ""),
        outlet_id=env.get("POSTERM_OUTLET_ID") or str(outlet_data.get("outlet_id") or ""),
    )

    cache_data = data.get("cache") or {}
    try:
        backend = StorageBackend(cache_data.get("backend", "sqlite"))
    except ValueError:
        raise ConfigError(f"Unknown cache backend: {cache_data.get('backend')}")

    cache = CacheSettings(
        backend=backend,
        db_path=str(cache_data.get("db_path", DEFAULT_DB_PATH)),
        customers_revalidate_minutes=_positive(
            cache_data.get("customers_revalidate_minutes", 60.0),
            "cache.customers_revalidate_minutes",
        ),
        customers_expire_minutes=_positive(
            cache_data.get("customers_expire_minutes", 24 * 60.0),
            "cache.customers_expire_minutes",
        ),
        tables_revalidate_minutes=_positive(
            cache_data.get("tables_revalidate_minutes", 1.0),
            "cache.tables_revalidate_minutes",
        ),
        tables_expire_minutes=_positive(
            cache_data.get("tables_expire_minutes", 5.0),
            "cache.tables_expire_minutes",
        ),
        version_check_interval_s=float(cache_data.get("version_check_interval_s", 30.0)),
    )

    sync_data = data.get("sync") or {}
    max_retries = int(sync_data.get("max_retries", 5))
    if max_retries < 1:
        raise ConfigError(f"sync.max_retries must be at least 1, got {max_retries}")

    sync = SyncSettings(
        max_retries=max_retries,
        backoff_base_ms=int(_positive(sync_data.get("backoff_base_ms", 1000), "sync.backoff_base_ms")),
        backoff_cap_ms=int(_positive(sync_data.get("backoff_cap_ms", 60000), "sync.backoff_cap_ms")),
        flush_interval_s=_positive(sync_data.get("flush_interval_s", 30.0), "sync.flush_interval_s"),
        pull_interval_s=_positive(sync_data.get("pull_interval_s", 60.0), "sync.pull_interval_s"),
        probe_interval_s=_positive(sync_data.get("probe_interval_s", 15.0), "sync.probe_interval_s"),
    )

    if sync.backoff_cap_ms < sync.backoff_base_ms:
        raise ConfigError("sync.backoff_cap_ms must not be below sync.backoff_base_ms")

    return TerminalConfig(
        cloud=cloud,
        outlet=outlet,
        cache=cache,
        sync=sync,
        health_port=int(data.get("health_port", 8090)),
        log_level=str(data.get("log_level", "INFO")),
    )


def find_config_path() -> Path:
    """Find configuration file"""
    env_path = os.environ.get("POSTERM_CONFIG")
    if env_path:
        return Path(env_path)

    possible_paths = [
        Path("/etc/posterm/config.yaml"),
        Path("/opt/posterm/config.yaml"),
        Path(__file__).parent.parent.parent / "config.yaml",
    ]

    for path in possible_paths:
        if path.exists():
            return path

    return possible_paths[0]


def load_config_file(path: str | Path | None = None) -> TerminalConfig:
    """
    Load terminal configuration from a YAML file.

    A missing file yields defaults plus environment overrides so the
    terminal can still start offline with a memory-only setup.
    """
    config_path = Path(path) if path else find_config_path()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file not found: {config_path}")
        data = {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {config_path} must be a mapping")

    return load_terminal_config(data)
