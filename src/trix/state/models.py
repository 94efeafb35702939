from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# MutationResult.reason values
TYPE_MISMATCH = "type_mismatch"
UNSUPPORTED_OPERATOR = "unsupported_operator"
SAVE_FAILED = "save_failed"


class CacheEntry(BaseModel):
    """
    One TTL cache slot, serialized as ``{"value": ..., "expireAt": <epoch ms>}``.

    Notes
    - `expire_at` is None for entries that never expire.
    - An entry is expired once the clock is strictly past `expire_at`.
    """

    model_config = ConfigDict(populate_by_name=True)

    value: Any = None
    expire_at: Optional[int] = Field(default=None, alias="expireAt")

    def is_expired(self, now_ms: int) -> bool:
        return self.expire_at is not None and now_ms > self.expire_at

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of a Store mutation. Mutations never raise on type mismatches;
    they report `applied=False` with a reason instead.
    """

    applied: bool
    persisted: bool = False
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.applied and self.persisted

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def skipped(cls, reason: str) -> "MutationResult":
        return cls(applied=False, persisted=False, reason=reason)

    @classmethod
    def from_save(cls, saved: bool) -> "MutationResult":
        return cls(applied=True, persisted=saved, reason=None if saved else SAVE_FAILED)
