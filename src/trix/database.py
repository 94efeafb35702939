from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Iterable, Optional

from .common.config import StoreConfig
from .common.logbook import AppendLog
from .state.cache import TTLCache
from .state.models import MutationResult
from .state.snapshot import read_backup, write_backup
from .state.store import Store

logger = logging.getLogger(__name__)


class Database:
    """
    Encrypted single-file key-value store with a TTL cache on the side.

    Usage
    - ``Database(filename="t.json", key=..., iv=...)`` or ``Database(StoreConfig(...))``.
      Keyword overrides are applied on top of a given config.
    - Store operations (`set`, `add`, `push`, ...) persist before returning and
      report a `MutationResult`.
    - With cache mode on, `fetch()` / `fetch_all()` / `all()` return the cache's
      ``{key: {"value", "expireAt"}}`` mapping instead of the store document.
      The cache is never filled from the store; use `set_cache_with_ttl`.
    - `close()` stops the sweep thread and closes log sinks.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        start_sweeper: bool = True,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = StoreConfig(**overrides)
        elif overrides:
            config = StoreConfig.model_validate({**config.model_dump(), **overrides})
        self._config = config
        self._journal = AppendLog(config.log_filename, enabled=config.logs_enabled)
        self._store = Store(
            config.filename,
            encrypt=config.encrypt,
            material=config.cipher_material(),
            journal=self._journal,
        )
        self._cache = TTLCache(
            default_ttl=config.cache_ttl,
            sweep_interval=config.sweep_interval,
            clock=clock,
            journal=self._journal,
        )
        if start_sweeper:
            self._cache.start()

    @classmethod
    def from_env(cls, **kwargs: Any) -> "Database":
        return cls(StoreConfig.from_env(), **kwargs)

    # -------- Components --------
    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store(self) -> Store:
        return self._store

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def journal(self) -> AppendLog:
        return self._journal

    def _report(self, level: int, msg: str, *args: Any) -> None:
        logger.log(level, msg, *args)
        self._journal.log(msg % args if args else msg)

    # -------- Store --------
    def load(self) -> bool:
        return self._store.load()

    def save(self) -> bool:
        return self._store.save()

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(key, default)

    def has(self, key: str) -> bool:
        return self._store.has(key)

    def set(self, key: str, value: Any) -> MutationResult:
        return self._store.set(key, value)

    def delete(self, key: str) -> MutationResult:
        return self._store.delete(key)

    def add(self, key: str, n: float) -> MutationResult:
        return self._store.add(key, n)

    def subtract(self, key: str, n: float) -> MutationResult:
        return self._store.subtract(key, n)

    def math(self, key: str, op: str, n: float) -> MutationResult:
        return self._store.math(key, op, n)

    def push(self, key: str, item: Any) -> MutationResult:
        return self._store.push(key, item)

    def push_array(self, key: str, items: Iterable[Any]) -> MutationResult:
        return self._store.push_array(key, items)

    def remove_from_array(self, key: str, items: Iterable[Any]) -> MutationResult:
        return self._store.remove_from_array(key, items)

    def reset(self) -> MutationResult:
        return self._store.reset()

    def enable_encryption(self) -> bool:
        return self._store.enable_encryption()

    def disable_encryption(self) -> bool:
        return self._store.disable_encryption()

    def rotate_key(self, key: bytes, iv: Optional[bytes] = None) -> bool:
        return self._store.rotate_key(key, iv)

    # -------- Cache --------
    @property
    def cache_enabled(self) -> bool:
        return self._cache.enabled

    def enable_cache(self) -> None:
        self._cache.enable()

    def disable_cache(self) -> None:
        self._cache.disable()

    def set_cache_with_ttl(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self._cache.set_with_ttl(key, value, ttl_seconds)

    def get_cache(self, key: str, default: Any = None) -> Any:
        return self._cache.get(key, default)

    def save_cache(self, path: os.PathLike[str] | str) -> bool:
        try:
            self._cache.dump(path)
        except (OSError, TypeError, ValueError) as ex:
            self._report(logging.ERROR, "Error saving cache to %s: %s", path, ex)
            return False
        self._report(logging.INFO, "Cache saved to %s", path)
        return True

    def load_cache(self, path: os.PathLike[str] | str) -> bool:
        try:
            count = self._cache.load(path)
        except (OSError, ValueError) as ex:
            self._report(logging.ERROR, "Error loading cache from %s: %s", path, ex)
            return False
        self._report(logging.INFO, "Loaded %d cache entries from %s", count, path)
        return True

    # -------- Reads (cache-aware) --------
    def fetch(self) -> Dict[str, Any]:
        if self._cache.enabled:
            return self._cache.entries()
        return self._store.document()

    def fetch_all(self) -> Dict[str, Any]:
        return self.fetch()

    def all(self) -> Dict[str, Any]:
        return self.fetch()

    # -------- Backups --------
    def backup(self, path: os.PathLike[str] | str) -> bool:
        """Write the current document, unencrypted, to `path`."""
        try:
            write_backup(path, self._store.document())
        except (OSError, TypeError, ValueError) as ex:
            self._report(logging.ERROR, "Error creating backup %s: %s", path, ex)
            return False
        self._report(logging.INFO, "Backup created as %s", path)
        return True

    def restore(self, path: os.PathLike[str] | str) -> bool:
        """Replace the document with a backup file and persist it."""
        try:
            document = read_backup(path)
        except (OSError, ValueError) as ex:
            self._report(logging.ERROR, "Error reading backup %s: %s", path, ex)
            return False
        return self._store.replace(document).ok

    # -------- Lifecycle --------
    def close(self) -> None:
        self._cache.stop()
        self._journal.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
