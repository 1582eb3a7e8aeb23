"""
Sync Service

Mutation outbox, version negotiation, connectivity/auth gating, the
cloud client, and the coordinator that ties them together.
"""
