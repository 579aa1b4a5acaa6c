import asyncio
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from sirenproxy.dns import DnsQueryError, doh


def _app(delay=0.0, prefix=b""):
    seen = []

    async def handler(request):
        seen.append(
            (request.headers.get("Content-Type"), request.headers.get("Accept"))
        )
        body = await request.read()
        if delay:
            await asyncio.sleep(delay)
        return web.Response(body=prefix + body)

    app = web.Application()
    app.router.add_post("/dns-query", handler)
    return app, seen


def _closed_port_url():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}/dns-query"


@pytest.mark.asyncio
async def test_doh_returns_response_body_and_sends_headers():
    app, seen = _app()
    async with TestServer(app) as server:
        url = str(server.make_url("/dns-query"))
        result = await doh(b"\x12\x34query", resolvers=[url], timeout=5)
    assert result == b"\x12\x34query"
    assert seen == [("application/dns-message", "application/dns-message")]


@pytest.mark.asyncio
async def test_doh_fastest_resolver_wins():
    fast_app, _ = _app(prefix=b"fast:")
    slow_app, _ = _app(delay=1.0, prefix=b"slow:")
    async with TestServer(fast_app) as fast, TestServer(slow_app) as slow:
        result = await doh(
            b"q",
            resolvers=[str(slow.make_url("/dns-query")), str(fast.make_url("/dns-query"))],
            timeout=5,
        )
    assert result == b"fast:q"


@pytest.mark.asyncio
async def test_doh_timeout_raises():
    app, _ = _app(delay=2.0)
    async with TestServer(app) as server:
        with pytest.raises(DnsQueryError, match="timeout"):
            await doh(b"q", resolvers=[str(server.make_url("/dns-query"))], timeout=0.2)


@pytest.mark.asyncio
async def test_doh_connection_failure_raises():
    url = _closed_port_url()
    with pytest.raises(DnsQueryError, match="Failed to send request"):
        await doh(b"q", resolvers=[url], timeout=5)


@pytest.mark.asyncio
async def test_doh_requires_resolvers():
    with pytest.raises(ValueError):
        await doh(b"q", resolvers=[], timeout=1)