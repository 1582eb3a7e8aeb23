"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- models.py - Cache entries, mutation records, sync status
- events.py - Listener registry
- scheduler.py - Periodic trigger loop
"""

from .config import (
    TerminalConfig,
    CloudSettings,
    OutletSettings,
    CacheSettings,
    SyncSettings,
    StorageBackend,
    load_terminal_config,
    load_config_file,
)
from .exceptions import (
    PosTerminalError,
    ConfigError,
    StorageError,
    SyncError,
    NetworkError,
    AuthError,
    ExhaustedRetriesError,
    MutationNotFoundError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_mutation_result,
    log_cache_write,
)
from .models import (
    CacheEntry,
    CacheStats,
    FlushResult,
    MutationRecord,
    MutationType,
    OutletContext,
    ReferenceSnapshot,
    SyncStatus,
)

__all__ = [
    # Config
    "TerminalConfig",
    "CloudSettings",
    "OutletSettings",
    "CacheSettings",
    "SyncSettings",
    "StorageBackend",
    "load_terminal_config",
    "load_config_file",
    # Exceptions
    "PosTerminalError",
    "ConfigError",
    "StorageError",
    "SyncError",
    "NetworkError",
    "AuthError",
    "ExhaustedRetriesError",
    "MutationNotFoundError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_mutation_result",
    "log_cache_write",
    # Models
    "CacheEntry",
    "CacheStats",
    "FlushResult",
    "MutationRecord",
    "MutationType",
    "OutletContext",
    "ReferenceSnapshot",
    "SyncStatus",
]
