"""Trojan request parsing and handling."""

from __future__ import annotations

import dataclasses
from typing import Any

from sirenproxy.addressing import parse_addr, parse_port

TCP_COMMAND = 1
USER_ID_LENGTH = 56


@dataclasses.dataclass(frozen=True)
class TrojanRequest:
    """The header of a Trojan request."""

    user_id: bytes
    command: int
    address: str
    port: int

    @property
    def is_tcp(self) -> bool:
        return self.command == TCP_COMMAND


async def read_trojan_request(stream: Any) -> TrojanRequest:
    """Read a Trojan request header; the user id is taken but not checked."""
    user_id = await stream.read_exact(USER_ID_LENGTH)
    await stream.read_u16()  # CRLF
    command = await stream.read_u8()
    address = await parse_addr(stream)
    port = await parse_port(stream)
    await stream.read_u16()  # CRLF
    return TrojanRequest(user_id, command, address, port)


async def process_trojan(stream: Any) -> None:
    """Handle a Trojan connection: parse the header and relay."""
    request = await read_trojan_request(stream)
    await stream.dispatch_outbound(request.address, request.port, request.is_tcp)