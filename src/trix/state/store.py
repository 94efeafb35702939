from __future__ import annotations

import json
import logging
import math as _math
import operator
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..common.cipher import Cipher, CipherMaterial, CryptoError, Envelope
from .snapshot import dump_document
from .models import (
    MutationResult,
    TYPE_MISMATCH,
    UNSUPPORTED_OPERATOR,
)

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "Trix.json"
NOT_SERIALIZABLE = "not_serializable"

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _divide(a: float, b: float) -> float:
    # IEEE semantics instead of ZeroDivisionError
    try:
        return a / b
    except ZeroDivisionError:
        if a == 0 or a != a:
            return _math.nan
        return _math.copysign(_math.inf, a) * _math.copysign(1.0, b)


OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _divide,
}


def _strict_equal(a: Any, b: Any) -> bool:
    """Equality that keeps bools apart from numbers (True != 1); int and float
    compare by value."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_strict_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_strict_equal(a[k], b[k]) for k in a)
    return type(a) is type(b) and a == b


def _normalize(value: Any) -> Any:
    """Detach `value` from the caller and coerce it to plain JSON types."""
    return json.loads(json.dumps(value))


class Store:
    """
    Canonical key -> value mapping persisted to a single file, write-through.

    - Every successful mutation rewrites the whole backing file before returning.
    - With `encrypt=True` the file holds an `Envelope` (AES-CBC of the pretty
      JSON document); otherwise the pretty JSON itself.
    - Load failures (I/O, bad envelope, wrong key, bad JSON) keep the in-memory
      document and are logged; save failures are logged and reported as False.
    - Type mismatches in arithmetic/list operations are skipped, not raised.

    `journal` is any object with ``log(message)`` (e.g. `AppendLog`); it
    receives the same diagnostic lines as the module logger.
    """

    def __init__(
        self,
        filename: os.PathLike[str] | str = DEFAULT_FILENAME,
        *,
        encrypt: bool = True,
        material: Optional[CipherMaterial] = None,
        journal: Optional[Any] = None,
        autoload: bool = True,
    ) -> None:
        self._path = Path(filename)
        self._encrypt = encrypt
        self._cipher = Cipher(material)
        self._journal = journal
        self._document: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self.last_error: Optional[Exception] = None
        if autoload:
            self.load()

    # -------- Properties --------
    @property
    def path(self) -> Path:
        return self._path

    @property
    def encrypted(self) -> bool:
        return self._encrypt

    @property
    def cipher(self) -> Cipher:
        return self._cipher

    def _report(self, level: int, msg: str, *args: Any) -> None:
        logger.log(level, msg, *args)
        if self._journal is not None:
            try:
                self._journal.log(msg % args if args else msg)
            except Exception:
                logger.exception("journal sink failed")

    # -------- Persistence --------
    def _decode(self, raw: str) -> str:
        if not self._encrypt:
            return raw
        plaintext = self._cipher.decrypt(Envelope.from_json(raw))
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise CryptoError("Decrypted payload is not UTF-8; wrong key or corrupted file") from ex

    def _encode(self, text: str) -> str:
        if not self._encrypt:
            return text
        return self._cipher.encrypt(text.encode("utf-8")).to_json()

    def _write_file(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            f.write(payload)

    def load(self) -> bool:
        """Read the backing file into memory. Returns False and keeps the current
        document when the file cannot be read, decrypted, or parsed."""
        with self._lock:
            if not self._path.exists():
                self._document = {}
                self.last_error = None
                return self.save()
            try:
                with self._path.open("r", encoding="utf-8") as f:
                    raw = f.read()
                document = json.loads(self._decode(raw))
                if not isinstance(document, dict):
                    raise ValueError("backing file root is not a JSON object")
            except (OSError, ValueError) as ex:
                # CryptoError and JSONDecodeError are both ValueErrors
                self.last_error = ex
                self._report(logging.ERROR, "Error loading data from %s: %s", self._path, ex)
                return False
            self._document = document
            self.last_error = None
            self._report(logging.DEBUG, "Data loaded from %s", self._path)
            return True

    def save(self) -> bool:
        """Serialize, encrypt if enabled, and rewrite the backing file."""
        with self._lock:
            try:
                self._write_file(self._encode(dump_document(self._document)))
            except (OSError, ValueError, TypeError) as ex:
                self.last_error = ex
                self._report(logging.ERROR, "Error saving data to %s: %s", self._path, ex)
                return False
            self._report(logging.DEBUG, "Data saved to %s", self._path)
            return True

    def _commit(self) -> MutationResult:
        return MutationResult.from_save(self.save())

    # -------- Reads --------
    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._document.get(key, default)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._document

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._document)

    def document(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._document)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._document)

    # -------- Mutations --------
    def set(self, key: str, value: Any) -> MutationResult:
        try:
            value = _normalize(value)
        except (TypeError, ValueError):
            return MutationResult.skipped(NOT_SERIALIZABLE)
        with self._lock:
            self._document[key] = value
            return self._commit()

    def delete(self, key: str) -> MutationResult:
        with self._lock:
            self._document.pop(key, None)
            return self._commit()

    def math(self, key: str, op: str, n: float) -> MutationResult:
        fn = OPERATORS.get(op)
        if fn is None:
            return MutationResult.skipped(UNSUPPORTED_OPERATOR)
        with self._lock:
            current = self._document.get(key, _MISSING)
            if not (_is_number(current) and _is_number(n)):
                return MutationResult.skipped(TYPE_MISMATCH)
            self._document[key] = fn(current, n)
            return self._commit()

    def add(self, key: str, n: float) -> MutationResult:
        return self.math(key, "+", n)

    def subtract(self, key: str, n: float) -> MutationResult:
        return self.math(key, "-", n)

    def push(self, key: str, item: Any) -> MutationResult:
        return self.push_array(key, [item])

    def push_array(self, key: str, items: Iterable[Any]) -> MutationResult:
        """Append `items`; a non-list value under `key` is replaced by [] first."""
        try:
            items = _normalize(list(items))
        except (TypeError, ValueError):
            return MutationResult.skipped(NOT_SERIALIZABLE)
        with self._lock:
            current = self._document.get(key)
            if not isinstance(current, list):
                current = []
                self._document[key] = current
            current.extend(items)
            return self._commit()

    def remove_from_array(self, key: str, items: Iterable[Any]) -> MutationResult:
        try:
            unwanted = _normalize(list(items))
        except (TypeError, ValueError):
            return MutationResult.skipped(NOT_SERIALIZABLE)
        with self._lock:
            current = self._document.get(key)
            if not isinstance(current, list):
                return MutationResult.skipped(TYPE_MISMATCH)
            self._document[key] = [
                x for x in current if not any(_strict_equal(x, u) for u in unwanted)
            ]
            return self._commit()

    def replace(self, document: Dict[str, Any]) -> MutationResult:
        """Swap in a whole document (used by restore)."""
        try:
            document = _normalize(dict(document))
        except (TypeError, ValueError):
            return MutationResult.skipped(NOT_SERIALIZABLE)
        with self._lock:
            self._document = document
            return self._commit()

    def reset(self) -> MutationResult:
        with self._lock:
            self._document = {}
            return self._commit()

    # -------- Encryption mode & key material --------
    def enable_encryption(self) -> bool:
        """Switch to encrypted mode and reload. The file is not converted."""
        with self._lock:
            self._encrypt = True
            self._report(logging.INFO, "Encryption enabled.")
            return self.load()

    def disable_encryption(self) -> bool:
        with self._lock:
            self._encrypt = False
            self._report(logging.INFO, "Encryption disabled.")
            return self.load()

    def rotate_key(self, key: bytes, iv: Optional[bytes] = None) -> bool:
        """
        Install new key material and reload.

        Ciphertext on disk is not re-encrypted: until `save()` rewrites the
        file, loads under the new key fail and the in-memory document is kept.
        Raises CryptoError for key/iv lengths that do not fit the algorithm.
        """
        with self._lock:
            self._cipher.rotate(key, iv)
            self._report(logging.INFO, "Key material rotated for %s", self._path)
            loaded = self.load()
            if not loaded and self._encrypt:
                self._report(
                    logging.WARNING,
                    "%s is still encrypted under the previous key; call save() to rewrite it",
                    self._path,
                )
            return loaded
