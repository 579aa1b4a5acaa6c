import asyncio
import uuid

import pytest

from sirenproxy.config import Config
from sirenproxy.conn import (
    MAX_WEBSOCKET_SIZE,
    Protocol,
    ProxyError,
    ProxyStream,
    detect_protocol,
    is_shadowsocks,
    is_trojan,
    is_vless,
    is_vmess,
)


class FakeWs:
    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []
        self.closed = []

    async def receive(self):
        if self.messages:
            return self.messages.pop(0)
        return None

    async def send(self, data):
        self.sent.append(data)

    async def close(self, code, reason):
        self.closed.append((code, reason))


def make_config(port=1):
    return Config(
        uuid=uuid.UUID(int=0),
        proxy_addr="127.0.0.1",
        main_page_url="http://localhost/",
        proxy_kv_url="http://localhost/kv",
        proxy_port=port,
    )


def test_is_vless():
    assert is_vless(b"\x00abc")
    assert not is_vless(b"\x01abc")
    assert not is_vless(b"")


def test_is_shadowsocks_variants():
    assert is_shadowsocks(bytes([1, 1, 2, 3, 4, 0, 80]))
    assert not is_shadowsocks(bytes([1, 1, 2, 3, 4, 0, 0]))
    assert is_shadowsocks(bytes([3, 3]) + b"abc" + b"\x01\xbb")
    assert not is_shadowsocks(bytes([3, 5]) + b"abc")
    assert is_shadowsocks(bytes([4]) + bytes(16) + b"\x00\x35")
    assert not is_shadowsocks(bytes([9, 1, 2]))


def test_is_trojan_and_vmess():
    buf = bytes([0x61] * 56) + b"\r\n" + b"x"
    assert is_trojan(buf)
    assert not is_trojan(buf[:57])
    assert is_vmess(b"x")
    assert not is_vmess(b"")


def test_detect_protocol():
    assert detect_protocol(b"\x00" * 40) is Protocol.VLESS
    assert detect_protocol(bytes([0x61] * 56) + b"\r\nxx") is Protocol.TROJAN
    assert detect_protocol(bytes([0x99] * 40)) is Protocol.VMESS
    with pytest.raises(ProxyError):
        detect_protocol(b"")


@pytest.mark.asyncio
async def test_buffer_and_reads():
    ws = FakeWs([b"\x01\x02", b"\x03\x04\x05"])
    stream = ProxyStream(make_config(), ws)
    await stream.fill_buffer_until(4)
    assert stream.peek_buffer(3) == b"\x01\x02\x03"
    assert await stream.read_u8() == 1
    assert await stream.read_u16() == 0x0203
    assert await stream.read_exact(2) == b"\x04\x05"
    assert await stream.read(10) == b""
    with pytest.raises(EOFError):
        await stream.read_exact(1)


@pytest.mark.asyncio
async def test_oversized_message_rejected():
    stream = ProxyStream(make_config(), FakeWs([bytes(MAX_WEBSOCKET_SIZE + 1)]))
    with pytest.raises(ProxyError):
        await stream.read(10)


@pytest.mark.asyncio
async def test_write_and_close():
    ws = FakeWs([])
    stream = ProxyStream(make_config(), ws)
    assert await stream.write(b"abc") == 3
    await stream.close()
    assert ws.sent == [b"abc"]
    assert ws.closed == [(1000, "shutdown")]


@pytest.mark.asyncio
async def test_process_needs_enough_bytes():
    stream = ProxyStream(make_config(), FakeWs([b"\x00" * 10]))
    with pytest.raises(ProxyError, match="not enough buffer"):
        await stream.process()


async def _echo_server():
    async def handle(reader, writer):
        data = await reader.read()
        writer.write(data)
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


@pytest.mark.asyncio
async def test_tcp_outbound_relays_both_ways():
    server, port = await _echo_server()
    async with server:
        ws = FakeWs([b"hello"])
        stream = ProxyStream(make_config(), ws)
        up, down = await stream.handle_tcp_outbound("127.0.0.1", port)
    assert (up, down) == (5, 5)
    assert ws.sent == [b"hello"]
    assert ws.closed == [(1000, "shutdown")]


@pytest.mark.asyncio
async def test_process_vless_end_to_end():
    server, port = await _echo_server()
    header = (
        b"\x00" + bytes(16) + b"\x00" + b"\x01" + port.to_bytes(2, "big")
        + b"\x01" + bytes([127, 0, 0, 1])
    )
    payload = b"hello world!"
    async with server:
        ws = FakeWs([header + payload])
        stream = ProxyStream(make_config(), ws)
        await stream.process()
    assert ws.sent == [b"\x00\x00", payload]