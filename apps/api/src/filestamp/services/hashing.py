from __future__ import annotations

import binascii
import hashlib
from pathlib import Path
from typing import BinaryIO, Union

from eth_utils import is_address, to_checksum_address

from filestamp.core.errors import InvalidInput

HEX_0X = ("0x", "0X")
CHUNK_SIZE = 1024 * 1024

BytesLike = Union[bytes, bytearray, memoryview]


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _salt(file_hex: str, pin: str | None) -> str:
    # PIN is appended to the hex text of the first digest, not its raw bytes
    if not pin:
        return file_hex
    return _sha256_hex((file_hex + pin).encode("utf-8"))


def fingerprint(data: BytesLike | BinaryIO, pin: str | None = None) -> str:
    """
    SHA-256 fingerprint of raw file bytes as 64 lowercase hex chars.

    With a non-empty ``pin`` the result is sha256(hex(sha256(data)) + pin),
    so the same file stamped with a PIN cannot be verified without it.
    Accepts bytes-like objects or a readable binary stream.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return _salt(_sha256_hex(bytes(data)), pin)

    read = getattr(data, "read", None)
    if not callable(read):
        raise InvalidInput(f"file content must be bytes or a binary stream, got {type(data).__name__}")

    h = hashlib.sha256()
    try:
        for chunk in iter(lambda: read(CHUNK_SIZE), b""):
            if not isinstance(chunk, (bytes, bytearray)):
                raise InvalidInput("file stream must be opened in binary mode")
            h.update(chunk)
    except OSError as e:
        raise InvalidInput(f"file is not readable: {e}") from e
    return _salt(h.hexdigest(), pin)


def fingerprint_file(path: str | Path, pin: str | None = None) -> str:
    p = Path(path)
    try:
        with p.open("rb") as f:
            return fingerprint(f, pin)
    except OSError as e:
        raise InvalidInput(f"cannot read {p}: {e}") from e


def resolve_fingerprint(data: BytesLike, pin: str | None = None, precomputed: str | None = None) -> str:
    # a client that hashed locally (e.g. with its PIN) sends the result instead
    if precomputed:
        return normalize_fingerprint(precomputed)
    return fingerprint(data, pin)


def normalize_fingerprint(value: str, *, name: str = "fileHash") -> str:
    """Lowercase 64-hex without 0x; raises InvalidInput otherwise."""
    return to_bytes32(value, name=name).hex()


def to_bytes32(value: str | bytes, *, name: str = "fileHash") -> bytes:
    """Accepts hex with or without 0x, validates 32 bytes, returns bytes32."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        val = (value or "").strip()
        if val.startswith(HEX_0X):
            val = val[2:]
        try:
            raw = binascii.unhexlify(val)
        except (binascii.Error, ValueError) as e:
            raise InvalidInput(f"{name} must be hex: {e}") from e
    if len(raw) != 32:
        raise InvalidInput(f"{name} must be 32 bytes (64 hex chars); got {len(raw)} bytes")
    return raw


def to_hex32(value: bytes | str) -> str:
    """0x-prefixed lowercase form used on the wire."""
    return "0x" + to_bytes32(value).hex()


def normalize_address(value: str, *, name: str = "address") -> str:
    """Case-insensitive hex address in, EIP-55 checksummed address out."""
    v = (value or "").strip()
    if not v.startswith(HEX_0X):
        raise InvalidInput(f"Invalid {name} format: must start with 0x")
    # checksum is not enforced on input; lowercasing sidesteps is_address' mixed-case check
    candidate = "0x" + v[2:].lower()
    if not is_address(candidate):
        raise InvalidInput(f"Invalid {name} format: {value!r}")
    return to_checksum_address(candidate)
