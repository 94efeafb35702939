from __future__ import annotations

import binascii
import json
import os
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher as _AesCipher, algorithms, modes
from pydantic import BaseModel, ConfigDict, Field, ValidationError


DEFAULT_ALGORITHM = "aes-256-cbc"
IV_LENGTH = 16

# Algorithm identifier -> key length in bytes
KEY_LENGTHS: Dict[str, int] = {
    "aes-128-cbc": 16,
    "aes-192-cbc": 24,
    "aes-256-cbc": 32,
}


class CryptoError(ValueError):
    """Raised on invalid key material, malformed envelopes, or failed decryption."""


class Envelope(BaseModel):
    """
    Wire form of an encrypted document: ``{"iv": <hex>, "encryptedData": <hex>}``.

    The iv travels with the ciphertext so a document written under an older iv
    can still be decrypted after the instance iv changes.
    """

    model_config = ConfigDict(populate_by_name=True)

    iv: str
    encrypted_data: str = Field(alias="encryptedData")

    @classmethod
    def from_json(cls, text: str) -> "Envelope":
        try:
            raw = json.loads(text)
        except ValueError as ex:
            raise CryptoError("Envelope is not valid JSON") from ex
        if not isinstance(raw, dict) or "iv" not in raw:
            raise CryptoError("Envelope is missing the iv")
        try:
            return cls.model_validate(raw)
        except ValidationError as ex:
            raise CryptoError(f"Malformed envelope: {ex}") from ex

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))


@dataclass
class CipherMaterial:
    key: bytes
    iv: bytes
    algorithm: str = DEFAULT_ALGORITHM

    @classmethod
    def generate(cls, algorithm: str = DEFAULT_ALGORITHM) -> "CipherMaterial":
        return cls(key=os.urandom(key_length(algorithm)), iv=os.urandom(IV_LENGTH), algorithm=algorithm)

    def validate(self) -> None:
        expected = key_length(self.algorithm)
        if len(self.key) != expected:
            raise CryptoError(f"{self.algorithm} requires a {expected}-byte key, got {len(self.key)}")
        if len(self.iv) != IV_LENGTH:
            raise CryptoError(f"iv must be {IV_LENGTH} bytes, got {len(self.iv)}")


def key_length(algorithm: str) -> int:
    try:
        return KEY_LENGTHS[algorithm.lower()]
    except KeyError:
        raise CryptoError(f"Unsupported algorithm: {algorithm!r}") from None


def encrypt_bytes(material: CipherMaterial, plaintext: bytes) -> Envelope:
    """AES-CBC encrypt with PKCS7 padding. Deterministic for a fixed key and iv."""
    material.validate()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = _AesCipher(algorithms.AES(material.key), modes.CBC(material.iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return Envelope(iv=material.iv.hex(), encrypted_data=ciphertext.hex())


def decrypt_bytes(material: CipherMaterial, envelope: Envelope) -> bytes:
    """Decrypt using the key from `material` and the iv carried by `envelope`."""
    try:
        iv = bytes.fromhex(envelope.iv)
        ciphertext = bytes.fromhex(envelope.encrypted_data)
    except (ValueError, binascii.Error) as ex:
        raise CryptoError("Envelope contains malformed hex") from ex

    CipherMaterial(key=material.key, iv=iv, algorithm=material.algorithm).validate()
    if not ciphertext or len(ciphertext) % (algorithms.AES.block_size // 8):
        raise CryptoError("Ciphertext is not a whole number of blocks")

    decryptor = _AesCipher(algorithms.AES(material.key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as ex:
        # Wrong key or corrupted trailing block
        raise CryptoError("Decryption failed: invalid padding") from ex


class Cipher:
    """
    Symmetric encrypt/decrypt of whole documents with a single active key/iv.

    Notes
    - The iv is reused for every `encrypt` until `rotate()` is called. This keeps
      the on-disk format stable but leaks identical plaintext prefixes (CBC).
    - CBC is unauthenticated: corrupted ciphertext may decrypt to garbage.
    """

    def __init__(self, material: Optional[CipherMaterial] = None) -> None:
        self._material = material or CipherMaterial.generate()
        self._material.validate()

    @property
    def material(self) -> CipherMaterial:
        return self._material

    @property
    def algorithm(self) -> str:
        return self._material.algorithm

    def encrypt(self, plaintext: bytes) -> Envelope:
        return encrypt_bytes(self._material, plaintext)

    def decrypt(self, envelope: Envelope) -> bytes:
        return decrypt_bytes(self._material, envelope)

    def rotate(self, key: bytes, iv: Optional[bytes] = None) -> None:
        """Install new key material. Existing ciphertext is not re-encrypted."""
        candidate = CipherMaterial(
            key=key,
            iv=iv if iv is not None else os.urandom(IV_LENGTH),
            algorithm=self._material.algorithm,
        )
        candidate.validate()
        self._material = candidate
