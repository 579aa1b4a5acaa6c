"""Runtime configuration for the tunnel endpoint."""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Mapping

DEFAULT_PROXY_PORT = 443


def _require(environ: Mapping[str, str], name: str) -> str:
    try:
        return str(environ[name])
    except KeyError:
        raise KeyError(f"missing environment variable {name!r}") from None


@dataclasses.dataclass(frozen=True)
class Config:
    """Settings shared by every request handled by the service."""

    uuid: uuid.UUID
    proxy_addr: str
    main_page_url: str
    proxy_kv_url: str
    proxy_port: int = DEFAULT_PROXY_PORT

    @classmethod
    def from_env(cls, environ: Mapping[str, str], host: str) -> Config:
        """Build a configuration from environment variables and the request host.

        An unparsable ``UUID`` falls back to the nil UUID; missing variables
        raise :class:`KeyError`.
        """
        raw_uuid = _require(environ, "UUID")
        try:
            parsed = uuid.UUID(raw_uuid.strip())
        except ValueError:
            parsed = uuid.UUID(int=0)
        return cls(
            uuid=parsed,
            proxy_addr=host,
            main_page_url=_require(environ, "MAIN_PAGE_URL"),
            proxy_kv_url=_require(environ, "PROXY_KV_URL"),
        )

    def with_proxy(self, addr: str, port: int) -> Config:
        """Return a copy that uses ``addr:port`` as the fallback proxy."""
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"invalid port number: {port}")
        return dataclasses.replace(self, proxy_addr=addr, proxy_port=port)