"""Nested-HMAC key derivation used by the VMess AEAD header."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from typing import Protocol

BLOCK_SIZE = 64
KDF_ROOT_KEY = b"VMess AEAD KDF"
CMD_KEY_SALT = b"c48619fe-8f02-49e0-b9e9-edf763e17e21"


class _Hasher(Protocol):
    def copy(self) -> _Hasher: ...

    def update(self, data: bytes) -> None: ...

    def digest(self) -> bytes: ...


class RecursiveHash:
    """An HMAC construction over any hasher, including another RecursiveHash."""

    def __init__(self, key: bytes, base: _Hasher) -> None:
        key = bytes(key)
        if len(key) > BLOCK_SIZE:
            raise ValueError(f"key longer than {BLOCK_SIZE} bytes")
        padded = key.ljust(BLOCK_SIZE, b"\x00")
        self._ipad = bytes(b ^ 0x36 for b in padded)
        self._opad = bytes(b ^ 0x5C for b in padded)
        self._inner = base.copy()
        self._inner.update(self._ipad)
        self._outer = base

    def copy(self) -> RecursiveHash:
        """Return an independent copy of the current state."""
        clone = object.__new__(RecursiveHash)
        clone._ipad = self._ipad
        clone._opad = self._opad
        clone._inner = self._inner.copy()
        clone._outer = self._outer.copy()
        return clone

    def update(self, data: bytes) -> None:
        self._inner.update(bytes(data))

    def digest(self) -> bytes:
        """Return the 32-byte digest without altering the state."""
        inner_result = self._inner.digest()
        outer = self._outer.copy()
        outer.update(self._opad)
        outer.update(inner_result)
        return outer.digest()


def kdf(key: bytes, path: Iterable[bytes]) -> bytes:
    """Derive a 32-byte key from ``key`` along the salt ``path``."""
    current: _Hasher = RecursiveHash(KDF_ROOT_KEY, hashlib.sha256())
    for salt in path:
        current = RecursiveHash(salt, current)
    current.update(bytes(key))
    return current.digest()


def vmess_cmd_key(uuid_bytes: bytes) -> bytes:
    """Return the MD5-based command key for a user id."""
    return hashlib.md5(bytes(uuid_bytes) + CMD_KEY_SALT).digest()