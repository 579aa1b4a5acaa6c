"""VLESS request parsing and handling."""

from __future__ import annotations

import dataclasses
import uuid
from typing import Any

from sirenproxy.addressing import parse_addr, parse_port

TCP_COMMAND = 1
RESPONSE_HEADER = b"\x00\x00"


@dataclasses.dataclass(frozen=True)
class VlessRequest:
    """The header of a VLESS request."""

    version: int
    user_id: uuid.UUID
    addons: bytes
    command: int
    port: int
    address: str

    @property
    def is_tcp(self) -> bool:
        return self.command == TCP_COMMAND


async def read_vless_request(stream: Any) -> VlessRequest:
    """Read a VLESS request header from ``stream``."""
    version = await stream.read_u8()
    user_id = uuid.UUID(bytes=await stream.read_exact(16))
    addons = await stream.read_exact(await stream.read_u8())
    command = await stream.read_u8()
    port = await parse_port(stream)
    address = await parse_addr(stream)
    return VlessRequest(version, user_id, addons, command, port, address)


async def process_vless(stream: Any) -> None:
    """Handle a VLESS connection: parse the header, answer and relay."""
    request = await read_vless_request(stream)
    if request.is_tcp:
        await stream.write(RESPONSE_HEADER)
    await stream.dispatch_outbound(request.address, request.port, request.is_tcp)