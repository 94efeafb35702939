from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from .cipher import DEFAULT_ALGORITHM, IV_LENGTH, CipherMaterial, CryptoError, key_length


# Environment variable names for convenience configuration
ENV_FILENAME = "TRIX_FILENAME"
ENV_ENCRYPT = "TRIX_ENCRYPT"
ENV_ALGORITHM = "TRIX_ALGORITHM"
ENV_KEY = "TRIX_KEY"
ENV_IV = "TRIX_IV"
ENV_LOGS_ENABLED = "TRIX_LOGS_ENABLED"
ENV_LOG_FILENAME = "TRIX_LOG_FILENAME"
ENV_CACHE_TTL = "TRIX_CACHE_TTL"
ENV_SWEEP_INTERVAL = "TRIX_SWEEP_INTERVAL"

_TRUTHY = {"1", "true", "yes", "on"}


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _as_bytes(value: Any, length: int) -> Any:
    # str material: hex of the exact length, else the raw UTF-8 bytes of the text
    if isinstance(value, str):
        try:
            decoded = bytes.fromhex(value)
        except ValueError:
            decoded = None
        if decoded is not None and len(decoded) == length:
            return decoded
        return value.encode("utf-8")
    if isinstance(value, bytearray):
        return bytes(value)
    return value


class StoreConfig(BaseModel):
    """
    Construction options for a `Database`.

    Fields
    - filename: backing file path.
    - encrypt: write the backing file as an AES-CBC envelope.
    - algorithm: one of aes-128-cbc, aes-192-cbc, aes-256-cbc.
    - key / iv: raw bytes, or text that is hex of the exact length or else taken
      as UTF-8 bytes; random when unset. Keep the key if the file must be
      readable by a later process.
    - logs_enabled / log_filename: append-only diagnostic log.
    - cache_ttl: default TTL (seconds) for cache entries set without one.
    - sweep_interval: seconds between cache expiration sweeps.
    """

    filename: str = "Trix.json"
    encrypt: bool = True
    algorithm: str = DEFAULT_ALGORITHM
    key: Optional[bytes] = Field(default=None, repr=False)
    iv: Optional[bytes] = Field(default=None, repr=False)
    logs_enabled: bool = False
    log_filename: str = "Trix.log"
    cache_ttl: float = Field(default=60, gt=0)
    sweep_interval: float = Field(default=1.0, gt=0)

    @field_validator("algorithm")
    @classmethod
    def _known_algorithm(cls, v: str) -> str:
        key_length(v)
        return v.lower()

    @field_validator("key", mode="before")
    @classmethod
    def _decode_key(cls, v: Any, info: ValidationInfo) -> Any:
        try:
            length = key_length(info.data.get("algorithm", DEFAULT_ALGORITHM))
        except CryptoError:
            length = key_length(DEFAULT_ALGORITHM)
        return _as_bytes(v, length)

    @field_validator("iv", mode="before")
    @classmethod
    def _decode_iv(cls, v: Any) -> Any:
        return _as_bytes(v, IV_LENGTH)

    @model_validator(mode="after")
    def _check_lengths(self) -> "StoreConfig":
        if self.key is not None and len(self.key) != key_length(self.algorithm):
            raise ValueError(f"{self.algorithm} requires a {key_length(self.algorithm)}-byte key")
        if self.iv is not None and len(self.iv) != IV_LENGTH:
            raise ValueError(f"iv must be {IV_LENGTH} bytes")
        return self

    def cipher_material(self) -> CipherMaterial:
        """Material for the Store; fills in random key/iv where unset."""
        generated = CipherMaterial.generate(self.algorithm)
        return CipherMaterial(
            key=self.key if self.key is not None else generated.key,
            iv=self.iv if self.iv is not None else generated.iv,
            algorithm=self.algorithm,
        )

    @classmethod
    def from_env(cls) -> "StoreConfig":
        encrypt = (_getenv(ENV_ENCRYPT, "true") or "").lower() in _TRUTHY
        key = _getenv(ENV_KEY)
        if encrypt and not key:
            raise RuntimeError(
                f"Missing required environment variables for an encrypted store: {ENV_KEY}"
            )
        values: dict[str, Any] = {
            "encrypt": encrypt,
            "key": key,
            "iv": _getenv(ENV_IV),
            "logs_enabled": (_getenv(ENV_LOGS_ENABLED, "false") or "").lower() in _TRUTHY,
        }
        for field, env in (
            ("filename", ENV_FILENAME),
            ("algorithm", ENV_ALGORITHM),
            ("log_filename", ENV_LOG_FILENAME),
            ("cache_ttl", ENV_CACHE_TTL),
            ("sweep_interval", ENV_SWEEP_INTERVAL),
        ):
            val = _getenv(env)
            if val is not None:
                values[field] = val
        return cls.model_validate(values)
