"""
POS Terminal Services

Service layers:
1. Cache Service - Durable local cache, stale-while-revalidate reads
2. Sync Service - Mutation outbox, version negotiation, connectivity handling
"""
