"""HTTP front end: serves the main page and upgrades tunnel requests."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import time
from collections.abc import Callable, Mapping, Sequence

import aiohttp
from aiohttp import web

from sirenproxy.config import Config
from sirenproxy.conn import ProxyError, ProxyStream

logger = logging.getLogger(__name__)

PROXYIP_PATTERN = re.compile(r"(.+?)[:=-](\d{1,5})")
PROXYKV_PATTERN = re.compile(r"([a-zA-Z]{2})(,[a-zA-Z]{2})*")
PROXY_KV_KEY = "proxy_kv"
PROXY_KV_TTL = 60 * 60 * 6

_CONFIG_KEY = web.AppKey("config", Config)


class TtlStore:
    """A small in-memory key-value store whose entries expire."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires = entry
        if self._clock() >= expires:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: str, ttl: float) -> None:
        self._entries[key] = (value, self._clock() + ttl)


_STORE_KEY = web.AppKey("store", TtlStore)


def parse_proxy_target(proxyip: str) -> tuple[str, int] | None:
    """Split ``host:port`` (or ``=``/``-`` separated) into its parts."""
    match = PROXYIP_PATTERN.fullmatch(proxyip)
    if match is None:
        return None
    port = int(match.group(2))
    if port > 0xFFFF:
        raise ValueError(f"Invalid port number: {match.group(2)}")
    return match.group(1), port


def is_country_list(proxyip: str) -> bool:
    return PROXYKV_PATTERN.fullmatch(proxyip) is not None


def choose_proxy(
    proxyip: str, proxy_kv: Mapping[str, Sequence[str]], rand_byte: int
) -> str:
    """Pick a proxy from a comma-separated list of country codes."""
    codes = proxyip.upper().split(",")
    code = codes[rand_byte % len(codes)]
    candidates = proxy_kv[code]
    return candidates[rand_byte % len(candidates)]


async def _fetch_page(url: str) -> web.Response:
    async with aiohttp.ClientSession() as session:
        async with session.get(url) as response:
            text = await response.text()
    return web.Response(text=text, content_type="text/html")


async def _load_proxy_kv(config: Config, store: TtlStore) -> dict:
    raw = store.get(PROXY_KV_KEY) or ""
    if not raw:
        logger.info("getting proxy kv from remote...")
        async with aiohttp.ClientSession() as session:
            async with session.get(config.proxy_kv_url) as response:
                if response.status != 200:
                    raise web.HTTPInternalServerError(
                        text=f"error getting proxy kv: {response.status}"
                    )
                raw = await response.text()
        store.put(PROXY_KV_KEY, raw, PROXY_KV_TTL)
    return json.loads(raw)


class _AiohttpSocket:
    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    async def receive(self) -> bytes | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise ProxyError(str(self._ws.exception()))
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None

    async def send(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def close(self, code: int, reason: str) -> None:
        await self._ws.close(code=code, message=reason.encode())


def _request_config(request: web.Request) -> Config:
    config = request.app[_CONFIG_KEY]
    return config.with_proxy(request.url.host or "", config.proxy_port)


async def _front(request: web.Request) -> web.StreamResponse:
    return await _fetch_page(request.app[_CONFIG_KEY].main_page_url)


async def _tunnel(request: web.Request) -> web.StreamResponse:
    config = _request_config(request)
    proxyip = request.match_info["proxyip"]
    if is_country_list(proxyip):
        proxy_kv = await _load_proxy_kv(config, request.app[_STORE_KEY])
        proxyip = choose_proxy(proxyip, proxy_kv, os.urandom(1)[0])

    target = parse_proxy_target(proxyip)
    if request.headers.get("Upgrade", "") == "websocket" and target is not None:
        config = config.with_proxy(*target)
        ws = web.WebSocketResponse(max_msg_size=0)
        await ws.prepare(request)
        try:
            await ProxyStream(config, _AiohttpSocket(ws)).process()
        except Exception as exc:
            logger.error("[tunnel]: %s", exc)
        if not ws.closed:
            await ws.close()
        return ws
    return await _fetch_page(config.main_page_url)


def create_app(config: Config) -> web.Application:
    """Build the web application serving the given configuration."""
    app = web.Application()
    app[_CONFIG_KEY] = config
    app[_STORE_KEY] = TtlStore()
    app.router.add_get("/", _front)
    app.router.add_get("/aioproxybot/cc/{proxyip}", _tunnel)
    app.router.add_get("/aioproxybot/{proxyip}", _tunnel)
    app.router.add_get("/{proxyip}", _tunnel)
    return app


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Serve the websocket tunnel.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    config = Config.from_env(os.environ, args.host)
    web.run_app(create_app(config), host=args.host, port=args.port)


if __name__ == "__main__":
    main()