"""VMess AEAD request decoding and response header encoding."""

from __future__ import annotations

import dataclasses
import hashlib
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sirenproxy.addressing import BytesReader, parse_addr, parse_port
from sirenproxy.hashing import kdf, vmess_cmd_key

KDFSALT_VMESS_HEADER_PAYLOAD_LENGTH_AEAD_KEY = b"VMess Header AEAD Key_Length"
KDFSALT_VMESS_HEADER_PAYLOAD_LENGTH_AEAD_IV = b"VMess Header AEAD Nonce_Length"
KDFSALT_VMESS_HEADER_PAYLOAD_AEAD_KEY = b"VMess Header AEAD Key"
KDFSALT_VMESS_HEADER_PAYLOAD_AEAD_IV = b"VMess Header AEAD Nonce"
KDFSALT_AEAD_RESP_HEADER_LEN_KEY = b"AEAD Resp Header Len Key"
KDFSALT_AEAD_RESP_HEADER_LEN_IV = b"AEAD Resp Header Len IV"
KDFSALT_AEAD_RESP_HEADER_KEY = b"AEAD Resp Header Key"
KDFSALT_AEAD_RESP_HEADER_IV = b"AEAD Resp Header IV"

TCP_COMMAND = 0x01
TAG_LENGTH = 16
RESPONSE_HEADER_LENGTH = 4


class VmessError(Exception):
    """Raised when a VMess header cannot be decrypted or is malformed."""


class _Config(Protocol):
    @property
    def uuid(self): ...


class _Stream(Protocol):
    config: _Config

    async def read_exact(self, n: int) -> bytes: ...

    async def read_u8(self) -> int: ...

    async def write(self, data: bytes) -> int: ...

    async def dispatch_outbound(self, addr: str, port: int, is_tcp: bool) -> None: ...


@dataclasses.dataclass(frozen=True)
class VmessRequest:
    """The decrypted command section of a VMess request."""

    version: int
    iv: bytes
    key: bytes
    options: bytes
    command: int
    port: int
    address: str

    @property
    def is_tcp(self) -> bool:
        return self.command == TCP_COMMAND


def _open(key: bytes, nonce: bytes, data: bytes, aad: bytes) -> bytes:
    try:
        return AESGCM(key).decrypt(nonce, data, aad)
    except InvalidTag as exc:
        raise VmessError("aead decryption failed") from exc


async def aead_decrypt(stream: _Stream, uuid_bytes: bytes) -> bytes:
    """Read and decrypt the AEAD-sealed command section from ``stream``."""
    cmd_key = vmess_cmd_key(uuid_bytes)
    auth_id = await stream.read_exact(16)
    sealed_length = await stream.read_exact(18)
    nonce = await stream.read_exact(8)

    length_key = kdf(cmd_key, [KDFSALT_VMESS_HEADER_PAYLOAD_LENGTH_AEAD_KEY, auth_id, nonce])[:16]
    length_nonce = kdf(cmd_key, [KDFSALT_VMESS_HEADER_PAYLOAD_LENGTH_AEAD_IV, auth_id, nonce])[:12]
    length_bytes = _open(length_key, length_nonce, sealed_length, auth_id)
    if len(length_bytes) < 2:
        raise VmessError("header length field too short")
    header_length = int.from_bytes(length_bytes[:2], "big")

    sealed_payload = await stream.read_exact(header_length + TAG_LENGTH)
    payload_key = kdf(cmd_key, [KDFSALT_VMESS_HEADER_PAYLOAD_AEAD_KEY, auth_id, nonce])[:16]
    payload_nonce = kdf(cmd_key, [KDFSALT_VMESS_HEADER_PAYLOAD_AEAD_IV, auth_id, nonce])[:12]
    return _open(payload_key, payload_nonce, sealed_payload, auth_id)


async def parse_command(payload: bytes) -> VmessRequest:
    """Parse a decrypted command section; only version 1 is accepted."""
    reader = BytesReader(payload)
    version = await reader.read_u8()
    if version != 1:
        raise VmessError("invalid version")
    iv = await reader.read_exact(16)
    key = await reader.read_exact(16)
    options = await reader.read_exact(4)
    command = await reader.read_u8()
    port = await parse_port(reader)
    address = await parse_addr(reader)
    return VmessRequest(
        version=version,
        iv=iv,
        key=key,
        options=options,
        command=command,
        port=port,
        address=address,
    )


def encrypt_response_header(request: VmessRequest) -> tuple[bytes, bytes]:
    """Return the sealed response length and the sealed response header."""
    resp_key = hashlib.sha256(request.key).digest()[:16]
    resp_iv = hashlib.sha256(request.iv).digest()[:16]

    length_key = kdf(resp_key, [KDFSALT_AEAD_RESP_HEADER_LEN_KEY])[:16]
    length_iv = kdf(resp_iv, [KDFSALT_AEAD_RESP_HEADER_LEN_IV])[:12]
    sealed_length = AESGCM(length_key).encrypt(
        length_iv, RESPONSE_HEADER_LENGTH.to_bytes(2, "big"), None
    )

    header_key = kdf(resp_key, [KDFSALT_AEAD_RESP_HEADER_KEY])[:16]
    header_iv = kdf(resp_iv, [KDFSALT_AEAD_RESP_HEADER_IV])[:12]
    header = bytes([request.options[0], 0x00, 0x00, 0x00])
    sealed_header = AESGCM(header_key).encrypt(header_iv, header, None)
    return sealed_length, sealed_header


async def process_vmess(stream: _Stream) -> None:
    """Handle a VMess connection: decrypt, answer and relay."""
    payload = await aead_decrypt(stream, stream.config.uuid.bytes)
    request = await parse_command(payload)
    for chunk in encrypt_response_header(request):
        await stream.write(chunk)
    await stream.dispatch_outbound(request.address, request.port, request.is_tcp)