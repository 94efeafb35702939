from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .models import CacheEntry
from .snapshot import dump_cache, read_cache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_SWEEP_INTERVAL = 1.0


class TTLCache:
    """
    Key -> value mapping with per-entry expiry, independent of the Store.

    - `set_with_ttl` stamps entries with `expireAt` in epoch milliseconds.
    - A background sweep (one daemon thread per instance) evicts expired
      entries every `sweep_interval` seconds; `stop()` cancels it.
    - Reads never return an expired entry, even between sweeps.
    - `enabled` only drives read redirection in `Database`; disabling the cache
      drops every entry.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
        journal: Optional[Any] = None,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be > 0")
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._journal = journal
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._enabled = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _report(self, level: int, msg: str, *args: Any) -> None:
        logger.log(level, msg, *args)
        if self._journal is not None:
            try:
                self._journal.log(msg % args if args else msg)
            except Exception:
                logger.exception("journal sink failed")

    # -------- Toggle --------
    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        self._report(logging.INFO, "Cache enabled.")

    def disable(self) -> None:
        self._enabled = False
        self.clear()
        self._report(logging.INFO, "Cache disabled.")

    # -------- Entries --------
    def set(self, key: str, value: Any) -> None:
        """Store `value` without an expiry."""
        with self._lock:
            self._entries[key] = CacheEntry(value=value)

    def set_with_ttl(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> CacheEntry:
        """A ttl of zero or less stores an entry that is due for the next sweep."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(value=value, expire_at=self._now_ms() + int(ttl * 1000))
        with self._lock:
            self._entries[key] = entry
        self._report(logging.INFO, "Data with key %s stored in cache with TTL %s seconds", key, ttl)
        return entry

    def _live(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._now_ms()):
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._live(key)
        return default if entry is None else entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def entries(self) -> Dict[str, Dict[str, Any]]:
        """Live entries as ``{key: {"value": v, "expireAt": ts}}`` plain dicts."""
        now = self._now_ms()
        with self._lock:
            return {k: e.to_wire() for k, e in self._entries.items() if not e.is_expired(now)}

    def __len__(self) -> int:
        return len(self.entries())

    # -------- Expiration --------
    def sweep(self) -> List[str]:
        """Evict expired entries; returns the evicted keys."""
        now = self._now_ms()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        for k in expired:
            self._report(logging.INFO, "Expired cache item with key: %s", k)
        return expired

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()

        def _loop() -> None:
            while not self._stop.is_set():
                try:
                    self.sweep()
                except Exception:
                    logger.exception("cache sweep failed")
                self._stop.wait(timeout=self._sweep_interval)

        self._thread = threading.Thread(target=_loop, daemon=True, name="trix-cache-sweeper")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    # -------- Persistence --------
    def dump(self, path: os.PathLike[str] | str) -> None:
        """Write the raw entry mapping to `path` (expired entries included)."""
        with self._lock:
            raw = {k: e.to_wire() for k, e in self._entries.items()}
        dump_cache(path, raw)

    def load(self, path: os.PathLike[str] | str) -> int:
        """
        Replace the mapping with the dump at `path`. `expireAt` is kept as
        serialized, so already expired entries stay until the next sweep (reads
        skip them). Malformed entries are dropped. Returns the entry count.
        """
        raw = read_cache(path)
        loaded: Dict[str, CacheEntry] = {}
        for k, v in raw.items():
            if not isinstance(v, dict):
                logger.warning("Skipping malformed cache entry %r in %s", k, path)
                continue
            try:
                loaded[str(k)] = CacheEntry.model_validate(v)
            except ValidationError:
                logger.warning("Skipping malformed cache entry %r in %s", k, path)
        with self._lock:
            self._entries = loaded
        return len(loaded)
