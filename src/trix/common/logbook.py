"""
Append-only text logs keyed by channel name.

Each channel is a bare FileHandler fed LogRecords directly, so lines land in
`<file>` as "<ISO timestamp> <message>" without registering loggers in the
process-wide logging manager. Best-effort: failures to open or write a sink
are reported on the module logger, never raised.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "default"
DEFAULT_LOG_FILENAME = "Trix.log"


class _LineFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")


class AppendLog:
    def __init__(self, filename: os.PathLike[str] | str = DEFAULT_LOG_FILENAME, *, enabled: bool = True) -> None:
        self._path = Path(filename)
        self._channels: Dict[str, logging.FileHandler] = {}
        self._lock = threading.Lock()
        self._enabled = False
        if enabled:
            self.enable()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def channels(self) -> Dict[str, Path]:
        with self._lock:
            return {name: Path(h.baseFilename) for name, h in self._channels.items()}

    def channel_path(self, name: str) -> Path:
        if name == DEFAULT_CHANNEL:
            return self._path
        return self._path.with_name(f"{self._path.stem}.{name}{self._path.suffix or '.log'}")

    def enable(self) -> None:
        self._enabled = True
        self.create_channel(DEFAULT_CHANNEL)

    def disable(self) -> None:
        """Close every sink and forget the channel table."""
        with self._lock:
            self._enabled = False
            for handler in self._channels.values():
                handler.close()
            self._channels.clear()

    close = disable

    def create_channel(self, name: str, filename: Optional[os.PathLike[str] | str] = None) -> Optional[Path]:
        if not name:
            raise ValueError("channel name is required")
        if not self._enabled:
            return None
        with self._lock:
            existing = self._channels.get(name)
            if existing is not None:
                return Path(existing.baseFilename)
            path = Path(filename) if filename else self.channel_path(name)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            except OSError as ex:
                logger.warning("Could not open log channel %s at %s: %s", name, path, ex)
                return None
            handler.setFormatter(_LineFormatter())
            self._channels[name] = handler
            return path

    def log(self, message: str, channel: str = DEFAULT_CHANNEL) -> None:
        if not self._enabled:
            return
        handler = self._channels.get(channel)
        if handler is None:
            self.create_channel(channel)
            handler = self._channels.get(channel)
            if handler is None:
                return
        record = logging.makeLogRecord(
            {"name": __name__, "msg": message, "levelno": logging.INFO, "levelname": "INFO"}
        )
        handler.handle(record)
