"""
Point-in-time exports: store backups and cache dumps.

Backups use the same pretty JSON as an unencrypted backing file and are never
encrypted. Cache dumps are the raw `{key: {value, expireAt}}` mapping.
"""

from __future__ import annotations

import json
import math
import os
from pathlib import Path
from typing import Any, Dict


def json_safe(value: Any) -> Any:
    """Copy of `value` with inf/nan replaced by None, as JSON has no such numbers."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def dump_json(value: Any) -> str:
    return json.dumps(json_safe(value), indent=2, allow_nan=False)


def dump_document(document: Dict[str, Any]) -> str:
    return dump_json(document)


def _write_text(path: os.PathLike[str] | str, text: str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        f.write(text)
    return p


def _read_mapping(path: os.PathLike[str] | str, what: str) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"{what} at {path} is not a JSON object")
    return raw


def write_backup(path: os.PathLike[str] | str, document: Dict[str, Any]) -> Path:
    return _write_text(path, dump_document(document))


def read_backup(path: os.PathLike[str] | str) -> Dict[str, Any]:
    return _read_mapping(path, "backup")


def dump_cache(path: os.PathLike[str] | str, entries: Dict[str, Dict[str, Any]]) -> Path:
    return _write_text(path, dump_json(entries))


def read_cache(path: os.PathLike[str] | str) -> Dict[str, Any]:
    return _read_mapping(path, "cache dump")
