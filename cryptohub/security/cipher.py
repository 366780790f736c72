"""
Reversible encoding for exchange API credentials kept in the local database.

The scheme is XOR against a SHA-256 hex digest of ``"{user_id}_{SALT}"``,
with the key repeated cyclically, and the raw bytes stored as base64. It
is not authenticated and not meant to resist an attacker with the
database; it only keeps secrets from sitting in plain text. Existing rows
were written with exactly this scheme, so it must stay byte-compatible.
Call sites go through ``SecretCipher`` so a real AEAD cipher can replace
``XorSecretCipher`` later.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Protocol

import structlog

from ..errors import DecryptionFailed, InvalidInput

log = structlog.get_logger()

SALT = "cryptohub_v1_salt_2026"


class SecretCipher(Protocol):
    def encrypt(self, plaintext: str, user_id: str) -> str: ...

    def decrypt(self, ciphertext: str, user_id: str) -> str: ...


def derive_key(user_id: str, salt: str = SALT) -> bytes:
    digest = hashlib.sha256(f"{user_id}_{salt}".encode("utf-8")).hexdigest()
    return digest.encode("ascii")


def _xor(data: bytes, key: bytes) -> bytes:
    klen = len(key)
    return bytes(b ^ key[i % klen] for i, b in enumerate(data))


class XorSecretCipher:
    def __init__(self, salt: str = SALT):
        self.salt = salt

    def derive_key(self, user_id: str) -> bytes:
        return derive_key(user_id, self.salt)

    def encrypt(self, plaintext: str, user_id: str) -> str:
        if not plaintext or not user_id:
            raise InvalidInput("Invalid input for encryption")
        raw = _xor(plaintext.encode("utf-8"), self.derive_key(user_id))
        return base64.b64encode(raw).decode("ascii")

    def decrypt(self, ciphertext: str, user_id: str) -> str:
        if not ciphertext or not user_id:
            raise InvalidInput("Invalid input for decryption")
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            log.error("secret_decrypt_failed", err=str(exc))
            raise DecryptionFailed("Failed to decrypt data") from exc
        # A wrong user_id produces garbage bytes; decode them rather than fail.
        return _xor(raw, self.derive_key(user_id)).decode("utf-8", errors="replace")


_default_cipher: SecretCipher = XorSecretCipher()


def encrypt(plaintext: str, user_id: str, cipher: SecretCipher | None = None) -> str:
    return (cipher or _default_cipher).encrypt(plaintext, user_id)


def decrypt(ciphertext: str, user_id: str, cipher: SecretCipher | None = None) -> str:
    return (cipher or _default_cipher).decrypt(ciphertext, user_id)


def encrypt_credential_set(
    api_key: str,
    api_secret: str,
    passphrase: str | None,
    user_id: str,
    cipher: SecretCipher | None = None,
) -> dict:
    out = {
        "api_key_encrypted": encrypt(api_key, user_id, cipher),
        "api_secret_encrypted": encrypt(api_secret, user_id, cipher),
    }
    if passphrase:
        out["api_passphrase_encrypted"] = encrypt(passphrase, user_id, cipher)
    return out


def decrypt_credential_set(
    api_key_encrypted: str,
    api_secret_encrypted: str,
    api_passphrase_encrypted: str | None,
    user_id: str,
    cipher: SecretCipher | None = None,
) -> dict:
    out = {
        "api_key": decrypt(api_key_encrypted, user_id, cipher),
        "api_secret": decrypt(api_secret_encrypted, user_id, cipher),
    }
    if api_passphrase_encrypted:
        out["passphrase"] = decrypt(api_passphrase_encrypted, user_id, cipher)
    return out
