"""
Shared building blocks for trix.

Modules:
- cipher: AES-CBC envelope encryption of whole documents
- config: `StoreConfig` construction options (pydantic, env helpers)
- logbook: append-only log channels
"""

__all__ = [
    "cipher",
    "config",
    "logbook",
]
