"""Cookie header parsing and ``Set-Cookie`` serialization.

The read side (``parse_cookies``) and the write side (``SetCookie``,
``parse_set_cookie``) live together so the cookie jar and the sub-fetch
proxy agree on one encoding.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime
from urllib.parse import quote, unquote

type Codec = Callable[[str], str]

# encodeURIComponent leaves these unescaped
_COMPONENT_SAFE = "!'()*-._~"


def encode_component(value: str) -> str:
    """Percent-encode a cookie value the way browsers' scripts expect."""
    return quote(value, safe=_COMPONENT_SAFE)


def decode_component(value: str) -> str:
    """Inverse of ``encode_component``; invalid escapes are left as-is."""
    return unquote(value) if "%" in value else value


def parse_cookies(header: str, decode: Codec = decode_component) -> dict[str, str]:
    """Parse a ``Cookie`` header value into a name-value dict.

    The first occurrence of a name wins. Quoted values are unquoted, then
    passed through *decode*. Returns an empty dict for an empty header.
    """
    if not header:
        return {}
    cookies: dict[str, str] = {}
    for pair in header.split(";"):
        key, sep, value = pair.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in cookies:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        try:
            cookies[key] = decode(value)
        except ValueError:
            cookies[key] = value
    return cookies


@dataclass(frozen=True, slots=True)
class SetCookie:
    """A ``Set-Cookie`` directive.

    ``encode`` transforms the value when serializing; ``None`` means
    ``encode_component``.
    """

    name: str
    value: str
    path: str | None = "/"
    domain: str | None = None
    max_age: int | None = None
    expires: datetime | None = None
    secure: bool = False
    httponly: bool = True
    samesite: str | None = "lax"
    encode: Codec | None = None

    def with_options(self, **options: object) -> SetCookie:
        """Return a copy with the given options replaced."""
        return replace(self, **options)  # type: ignore[arg-type]

    def to_header_value(self) -> str:
        """Serialize to a ``Set-Cookie`` header value string."""
        encode = self.encode or encode_component
        parts = [f"{self.name}={encode(self.value)}"]
        if self.max_age is not None:
            parts.append(f"Max-Age={int(self.max_age)}")
        if self.domain:
            parts.append(f"Domain={self.domain}")
        if self.path:
            parts.append(f"Path={self.path}")
        if self.expires is not None:
            parts.append(f"Expires={format_datetime(self.expires, usegmt=True)}")
        if self.httponly:
            parts.append("HttpOnly")
        if self.secure:
            parts.append("Secure")
        if self.samesite:
            parts.append(f"SameSite={self.samesite.capitalize()}")
        return "; ".join(parts)


def parse_set_cookie(header_value: str) -> SetCookie:
    """Parse one ``Set-Cookie`` header value back into a ``SetCookie``.

    The value is decoded; re-serializing encodes it again.
    """
    first, *attributes = header_value.split(";")
    name, _, value = first.partition("=")
    options: dict[str, object] = {
        "path": None,
        "httponly": False,
        "samesite": None,
    }
    for attribute in attributes:
        key, _, attr_value = attribute.strip().partition("=")
        key = key.lower()
        if key == "path":
            options["path"] = attr_value
        elif key == "domain":
            options["domain"] = attr_value
        elif key == "max-age":
            try:
                options["max_age"] = int(attr_value)
            except ValueError:
                continue
        elif key == "expires":
            try:
                options["expires"] = parsedate_to_datetime(attr_value)
            except (TypeError, ValueError):
                continue
        elif key == "secure":
            options["secure"] = True
        elif key == "httponly":
            options["httponly"] = True
        elif key == "samesite":
            options["samesite"] = attr_value.lower()
    return SetCookie(name=name.strip(), value=decode_component(value.strip()), **options)  # type: ignore[arg-type]
