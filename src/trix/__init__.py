"""
trix: an embedded key-value store persisted to a single (optionally
encrypted) JSON file, with an in-memory TTL cache on the side.

Modules:
- database: `Database` facade (store + cache + logs + backups)
- common: cipher, configuration, append-only logs
- state: store, TTL cache, snapshots
"""

from .common.cipher import Cipher, CipherMaterial, CryptoError, Envelope
from .common.config import StoreConfig
from .common.logbook import AppendLog
from .database import Database
from .state.cache import TTLCache
from .state.models import CacheEntry, MutationResult
from .state.store import Store

__all__ = [
    "AppendLog",
    "CacheEntry",
    "Cipher",
    "CipherMaterial",
    "CryptoError",
    "Database",
    "Envelope",
    "MutationResult",
    "Store",
    "StoreConfig",
    "TTLCache",
]
