"""The proxy stream over a websocket: protocol detection, buffering and relaying."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Protocol as _TypingProtocol

from sirenproxy import dns
from sirenproxy.config import Config

logger = logging.getLogger(__name__)

MAX_WEBSOCKET_SIZE = 128 * 1024
MAX_BUFFER_SIZE = 4 * 1024 * 1024
PEEK_LENGTH = 62
COPY_CHUNK = 64 * 1024
UDP_READ_SIZE = 65535


class ProxyError(Exception):
    """Raised when a tunnel cannot be served."""


class Protocol(enum.Enum):
    VLESS = "vless"
    SHADOWSOCKS = "shadowsocks"
    TROJAN = "trojan"
    VMESS = "vmess"


class WebSocketLike(_TypingProtocol):
    async def receive(self) -> bytes | None: ...

    async def send(self, data: bytes) -> None: ...

    async def close(self, code: int, reason: str) -> None: ...


def is_vless(buffer: bytes) -> bool:
    return len(buffer) > 0 and buffer[0] == 0


def is_shadowsocks(buffer: bytes) -> bool:
    if not buffer:
        return False
    kind = buffer[0]
    if kind == 1:
        return len(buffer) >= 7 and int.from_bytes(buffer[5:7], "big") != 0
    if kind == 3:
        if len(buffer) < 2:
            return False
        end = 2 + buffer[1]
        return len(buffer) >= end + 2 and int.from_bytes(buffer[end:end + 2], "big") != 0
    if kind == 4:
        return len(buffer) >= 19 and int.from_bytes(buffer[17:19], "big") != 0
    return False


def is_trojan(buffer: bytes) -> bool:
    return len(buffer) > 57 and buffer[56] == 13 and buffer[57] == 10


def is_vmess(buffer: bytes) -> bool:
    return len(buffer) > 0


def detect_protocol(buffer: bytes) -> Protocol:
    """Guess the protocol from the first bytes of a connection."""
    if is_vless(buffer):
        return Protocol.VLESS
    if is_shadowsocks(buffer):
        return Protocol.SHADOWSOCKS
    if is_trojan(buffer):
        return Protocol.TROJAN
    if is_vmess(buffer):
        return Protocol.VMESS
    raise ProxyError("protocol not implemented")


class ProxyStream:
    """A byte stream read from websocket messages and written back to them."""

    def __init__(self, config: Config, ws: WebSocketLike) -> None:
        self.config = config
        self.ws = ws
        self.buffer = bytearray()

    async def _next_message(self) -> bytes | None:
        try:
            return await self.ws.receive()
        except ProxyError:
            raise
        except Exception as exc:
            raise ProxyError(str(exc)) from exc

    async def fill_buffer_until(self, n: int) -> None:
        while len(self.buffer) < n:
            data = await self._next_message()
            if data is None:
                break
            self.buffer += data

    def peek_buffer(self, n: int) -> bytes:
        return bytes(self.buffer[:n])

    async def read(self, n: int) -> bytes:
        """Return up to ``n`` bytes; an empty result means the peer closed."""
        while not self.buffer:
            data = await self._next_message()
            if data is None:
                return b""
            if len(data) > MAX_WEBSOCKET_SIZE:
                raise ProxyError("websocket buffer too long")
            self.buffer += data
        chunk = bytes(self.buffer[:n])
        del self.buffer[:n]
        return chunk

    async def read_exact(self, n: int) -> bytes:
        parts = bytearray()
        while len(parts) < n:
            chunk = await self.read(n - len(parts))
            if not chunk:
                raise EOFError(f"expected {n} bytes, got {len(parts)}")
            parts += chunk
        return bytes(parts)

    async def read_u8(self) -> int:
        return (await self.read_exact(1))[0]

    async def read_u16(self) -> int:
        return int.from_bytes(await self.read_exact(2), "big")

    async def write(self, data: bytes) -> int:
        try:
            await self.ws.send(bytes(data))
        except Exception as exc:
            raise ProxyError(str(exc)) from exc
        return len(data)

    async def close(self) -> None:
        try:
            await self.ws.close(1000, "shutdown")
        except Exception as exc:
            raise ProxyError(str(exc)) from exc

    async def process(self) -> None:
        """Detect the protocol of the connection and serve it."""
        from sirenproxy.shadowsocks import process_shadowsocks
        from sirenproxy.trojan import process_trojan
        from sirenproxy.vless import process_vless
        from sirenproxy.vmess import process_vmess

        await self.fill_buffer_until(PEEK_LENGTH)
        peeked = self.peek_buffer(PEEK_LENGTH)
        if len(peeked) < PEEK_LENGTH // 2:
            raise ProxyError("not enough buffer")
        protocol = detect_protocol(peeked)
        logger.info("%s detected!", protocol.value)
        handlers = {
            Protocol.VLESS: process_vless,
            Protocol.SHADOWSOCKS: process_shadowsocks,
            Protocol.TROJAN: process_trojan,
            Protocol.VMESS: process_vmess,
        }
        await handlers[protocol](self)

    async def handle_tcp_outbound(self, addr: str, port: int) -> tuple[int, int]:
        """Relay between the websocket and ``addr:port``; return bytes up and down."""
        try:
            reader, writer = await asyncio.open_connection(addr, port)
        except OSError as exc:
            raise ProxyError(str(exc)) from exc

        async def upstream() -> int:
            total = 0
            while data := await self.read(COPY_CHUNK):
                writer.write(data)
                await writer.drain()
                total += len(data)
            if writer.can_write_eof():
                writer.write_eof()
            return total

        async def downstream() -> int:
            total = 0
            while data := await reader.read(COPY_CHUNK):
                await self.write(data)
                total += len(data)
            await self.close()
            return total

        try:
            up, down = await asyncio.gather(upstream(), downstream())
        except ProxyError:
            raise
        except (OSError, EOFError) as exc:
            raise ProxyError(str(exc)) from exc
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
        logger.info("copied data from %s:%s, up: %d and dl: %d", addr, port, up, down)
        return up, down

    async def handle_udp_outbound(self) -> None:
        data = await self.read(UDP_READ_SIZE)
        try:
            await dns.doh(data)
        except Exception:
            return
        await self.write(data)

    async def dispatch_outbound(self, addr: str, port: int, is_tcp: bool) -> None:
        """Relay to the target, then to the configured fallback proxy."""
        if not is_tcp:
            try:
                await self.handle_udp_outbound()
            except Exception as exc:
                logger.error("error handling udp: %s", exc)
            return
        for target_addr, target_port in (
            (addr, port),
            (self.config.proxy_addr, self.config.proxy_port),
        ):
            try:
                await self.handle_tcp_outbound(target_addr, target_port)
            except Exception as exc:
                logger.error("error handling tcp: %s", exc)