"""
POS Terminal Sync Engine

Offline-first cache and synchronization for a restaurant POS terminal:
- storage/ - Key-value storage substrate (SQLite, in-memory)
- common/ - Config, exceptions, logging, models, scheduler
- services/cache/ - Durable cache store and read-through repository
- services/sync/ - Outbox, version negotiation, coordinator, sync service
"""

__version__ = "1.0.0"
