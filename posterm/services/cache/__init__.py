"""
Cache Service

Durable cache store and the read-through repository built on it.
"""
