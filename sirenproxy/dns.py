"""DNS-over-HTTPS forwarding that races several resolvers."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import aiohttp

DEFAULT_RESOLVERS = (
    "https://1.1.1.1/dns-query",
    "https://8.8.8.8/dns-query",
)
DEFAULT_TIMEOUT = 5.0

_HEADERS = {
    "Content-Type": "application/dns-message",
    "Accept": "application/dns-message",
}


class DnsQueryError(Exception):
    """Raised when no resolver answered in time or a request failed."""


async def _doh_request(session: aiohttp.ClientSession, url: str, body: bytes) -> bytes:
    try:
        response = await session.post(url, data=body, headers=_HEADERS)
    except aiohttp.ClientError as exc:
        raise DnsQueryError(f"Failed to send request to {url}") from exc
    try:
        async with response:
            return await response.read()
    except aiohttp.ClientError as exc:
        raise DnsQueryError(f"Failed to read response from {url}") from exc


async def doh(
    query: bytes,
    resolvers: Sequence[str] = DEFAULT_RESOLVERS,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """Send a wire-format DNS query to every resolver and return the first reply.

    The first request to finish decides the outcome, whether it succeeded or
    failed; if none finishes within ``timeout`` seconds a
    :class:`DnsQueryError` is raised.
    """
    if not resolvers:
        raise ValueError("at least one resolver is required")
    body = bytes(query)
    async with aiohttp.ClientSession() as session:
        tasks = [
            asyncio.create_task(_doh_request(session, url, body)) for url in resolvers
        ]
        try:
            done, _pending = await asyncio.wait(
                tasks, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        if not done:
            raise DnsQueryError(f"DNS query timeout after {timeout:g} seconds")
        winner = next(task for task in tasks if task in done)
        return winner.result()