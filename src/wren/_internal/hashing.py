"""Content hashes shared with the client runtime.

``djb2`` must produce the same digest the browser computes over the same
strings, so it works on UTF-16 code units with 32-bit wraparound.
"""

import base64
import hashlib
import secrets

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_DIGITS[rem])
    return "".join(reversed(out))


def djb2(*values: str | bytes) -> str:
    """Hash strings/bytes right-to-left with djb2-xor, base36 encoded."""
    h = 5381
    for value in values:
        if isinstance(value, str):
            raw = value.encode("utf-16-le")
            units = [raw[i] | (raw[i + 1] << 8) for i in range(0, len(raw), 2)]
        else:
            units = list(value)
        for unit in reversed(units):
            h = ((h * 33) ^ unit) & 0xFFFFFFFF
    return _base36(h)


def sha256_base64(content: str) -> str:
    """Base64 SHA-256 of the UTF-8 encoding of *content*, as CSP expects."""
    return base64.b64encode(hashlib.sha256(content.encode("utf-8")).digest()).decode("ascii")


def etag_for(body: bytes) -> str:
    """Quoted strong ETag for a fully-buffered body."""
    return f'"{hashlib.sha256(body).hexdigest()[:20]}"'


def generate_nonce() -> str:
    """A base64 nonce from 16 random bytes."""
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")
