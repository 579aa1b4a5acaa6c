# sirenproxy

An asyncio WebSocket tunnel server built on aiohttp. A client opens a
WebSocket to it; sirenproxy peeks at the first bytes received to decide
which protocol is being spoken — VLESS, Shadowsocks (plain header),
Trojan or VMess (AEAD header) — parses the request header and relays the
stream to the requested TCP target. When that relay ends or fails, it
relays once more to a fallback address taken from the request path.

Requests that are not WebSocket upgrades get the HTML of a configured main
page instead.

## Installation

```
pip install sirenproxy
```

For running the test suite:

```
pip install "sirenproxy[test]"
pytest
```

## Running the server

Configuration comes from the environment:

| Variable        | Meaning                                                                  |
|-----------------|--------------------------------------------------------------------------|
| `UUID`          | User id from which the VMess keys are derived; an invalid value becomes the nil UUID |
| `MAIN_PAGE_URL` | Page fetched and returned for `/` and for non-WebSocket requests         |
| `PROXY_KV_URL`  | JSON document mapping two-letter country codes to lists of relay addresses |

All three must be set; a missing one raises `KeyError` at start-up.

Then start it:

```
sirenproxy
```

Options:

- `--host` — address to listen on (default `0.0.0.0`)
- `--port` — port to listen on (default `8080`)

Log messages go to the standard `logging` module at INFO level.

## Routes

- `/` — returns the main page.
- `/{proxyip}`, `/aioproxybot/{proxyip}`, `/aioproxybot/cc/{proxyip}` —
  WebSocket tunnel endpoints.

`proxyip` names the fallback relay. It is either a host and port separated
by `:`, `=` or `-` (for example `relay.example.com-443`), or a
comma-separated list of two-letter country codes (for example `sg,jp`).
For a country list, the relay table is fetched from `PROXY_KV_URL`, kept in
memory for six hours, and a single random byte picks first a country from
the list and then an address from that country's entry.

A tunnel is opened only when the request asks for a WebSocket upgrade and
`proxyip` resolves to a host and port; otherwise the main page is returned.

## Protocol handling

- **VLESS** — the first byte is `0`. The header is parsed, a two-byte
  response header is sent for TCP requests, then the stream is relayed.
- **Shadowsocks** — the first byte is an address type (1, 3 or 4) followed
  by a non-zero port. Always relayed over TCP.
- **Trojan** — bytes 56 and 57 are CRLF. The 56-byte user id is read but
  not checked.
- **VMess** — anything else. The AEAD header is decrypted with keys derived
  from `UUID`, only version 1 is accepted, and an encrypted response
  header is sent before relaying.

Fewer than 31 bytes in the first messages ends the connection. A single
WebSocket message larger than 128 KiB read during relaying is an error.

## Library use

```python
import os
import uuid

from sirenproxy.app import choose_proxy, create_app, parse_proxy_target
from sirenproxy.config import Config
from sirenproxy.conn import Protocol, detect_protocol
from sirenproxy.hashing import kdf, vmess_cmd_key

config = Config.from_env(os.environ, "proxy.example.com")
app = create_app(config)                        # an aiohttp web.Application

parse_proxy_target("relay.example.com:8443")    # ("relay.example.com", 8443)
choose_proxy("sg,jp", {"SG": ["a:1"], "JP": ["b:2"]}, 1)   # "b:2"

key = vmess_cmd_key(uuid.uuid4().bytes)
subkey = kdf(key, [b"AES Auth ID Encryption"])  # 32 bytes

detect_protocol(b"\x00" + bytes(40)) is Protocol.VLESS      # True
```

Other pieces:

- `sirenproxy.addressing` — `parse_addr` and `parse_port` read the shared
  address/port fields from any object with async `read_exact` and
  `read_u8`; `BytesReader` provides that over bytes in memory.
- `sirenproxy.vless`, `sirenproxy.trojan`, `sirenproxy.vmess` — request
  dataclasses and the functions that read them
  (`read_vless_request`, `read_trojan_request`, `aead_decrypt`,
  `parse_command`, `encrypt_response_header`).
- `sirenproxy.conn.ProxyStream` — a byte stream over any object with async
  `receive`, `send` and `close`, with `process()` to detect and serve a
  connection.
- `sirenproxy.dns.doh` — posts a wire-format DNS query to several
  DNS-over-HTTPS resolvers at once and returns the first reply, raising
  `DnsQueryError` on failure or timeout.
- `sirenproxy.app.TtlStore` — the in-memory expiring store used for the
  relay table.

## What it does not do

- No client authentication: VLESS and Trojan user ids are read but never
  compared, and Shadowsocks headers are taken unencrypted.
- UDP requests (VLESS, Trojan, VMess) are not relayed as UDP: one chunk is
  read and sent to the DNS-over-HTTPS resolvers, and if a resolver answers,
  that same chunk — not the resolver's reply — is written back.
- The relay table cache lives in memory per process and is lost on restart.