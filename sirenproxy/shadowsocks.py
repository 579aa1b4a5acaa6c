"""Shadowsocks (plain, unencrypted header) handling."""

from __future__ import annotations

from typing import Any

from sirenproxy.addressing import parse_addr, parse_port


async def process_shadowsocks(stream: Any) -> None:
    """Read the target address and port, then relay over TCP.

    UDP cannot be told apart from TCP in this header, so TCP is always used.
    """
    address = await parse_addr(stream)
    port = await parse_port(stream)
    await stream.dispatch_outbound(address, port, True)