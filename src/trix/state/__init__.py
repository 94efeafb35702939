"""
Document state and its persistence.

The store keeps the canonical mapping and rewrites its backing file on every
mutation; the TTL cache is a separate mapping with background expiry.
"""

from .models import CacheEntry, MutationResult

__all__ = ["CacheEntry", "MutationResult"]
