"""Parsing of the target address and port shared by the supported protocols."""

from __future__ import annotations

import ipaddress
from typing import Protocol


class AddressError(ValueError):
    """Raised when an address field has an unknown type."""


class _AsyncByteReader(Protocol):
    async def read_exact(self, n: int) -> bytes: ...

    async def read_u8(self) -> int: ...


class BytesReader:
    """An in-memory reader with the same async read interface as a stream."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> bytes:
        return self._data[self._pos:]

    async def read_exact(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise EOFError(f"expected {n} bytes, {len(self._data) - self._pos} available")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    async def read_u8(self) -> int:
        return (await self.read_exact(1))[0]


def _format_ipv6(raw: bytes) -> str:
    addr = ipaddress.IPv6Address(raw)
    mapped = addr.ipv4_mapped
    if mapped is not None:
        return f"::ffff:{mapped}"
    return str(addr)


async def parse_addr(reader: _AsyncByteReader) -> str:
    """Read a typed address: 1 = IPv4, 2 or 3 = domain name, 4 = IPv6."""
    kind = await reader.read_u8()
    if kind == 1:
        return str(ipaddress.IPv4Address(await reader.read_exact(4)))
    if kind in (2, 3):
        length = await reader.read_u8()
        return (await reader.read_exact(length)).decode("utf-8", errors="replace")
    if kind == 4:
        return _format_ipv6(await reader.read_exact(16))
    raise AddressError("invalid address")


async def parse_port(reader: _AsyncByteReader) -> int:
    """Read a big-endian 16-bit port."""
    return int.from_bytes(await reader.read_exact(2), "big")