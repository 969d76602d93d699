"""Pathname helpers: decoding, trailing slashes and the data-request suffix."""

import re
from collections.abc import Mapping
from typing import Literal
from urllib.parse import unquote

type TrailingSlash = Literal["never", "always", "ignore"]

DATA_SUFFIX = "/__data.json"
INVALIDATED_PARAM = "x-sveltekit-invalidated"

# decodeURI leaves escapes for these characters in place
_RESERVED = frozenset(";/?:@&=+$,#")
_ESCAPE_RUN = re.compile(r"(?:%[0-9A-Fa-f]{2})+")


def normalize_path(path: str, trailing_slash: TrailingSlash) -> str:
    """Apply a trailing-slash policy to *path*. The root path is untouched."""
    if path == "/" or trailing_slash == "ignore":
        return path
    if trailing_slash == "never":
        return path[:-1] if path.endswith("/") else path
    if trailing_slash == "always" and not path.endswith("/"):
        return path + "/"
    return path


def _decode_run(run: str) -> str:
    raw = bytes(int(run[i + 1 : i + 3], 16) for i in range(0, len(run), 3))
    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        msg = f"Malformed URI sequence: {run}"
        raise ValueError(msg) from exc
    # put back escapes for reserved characters, one per original escape
    out = []
    pos = 0
    for ch in decoded:
        width = len(ch.encode("utf-8")) * 3
        out.append(run[pos : pos + width] if ch in _RESERVED else ch)
        pos += width
    return "".join(out)


def decode_uri(value: str) -> str:
    """Decode percent-escapes except those for reserved URI characters.

    Raises ``ValueError`` for a stray ``%`` or escapes that are not UTF-8.
    """
    out = []
    pos = 0
    for match in _ESCAPE_RUN.finditer(value):
        chunk = value[pos : match.start()]
        if "%" in chunk:
            msg = f"Malformed URI: {value}"
            raise ValueError(msg)
        out.append(chunk)
        out.append(_decode_run(match.group()))
        pos = match.end()
    tail = value[pos:]
    if "%" in tail:
        msg = f"Malformed URI: {value}"
        raise ValueError(msg)
    out.append(tail)
    return "".join(out)


def decode_pathname(pathname: str) -> str:
    """Decode a request path, keeping ``%25`` so literal percents survive."""
    return "%25".join(decode_uri(part) for part in pathname.split("%25"))


def decode_params(params: Mapping[str, str]) -> dict[str, str]:
    """Fully decode each route parameter value.

    Raises ``ValueError`` when a value holds a malformed escape.
    """
    decoded: dict[str, str] = {}
    for key, value in params.items():
        if _ESCAPE_RUN.sub("", value).count("%"):
            msg = f"Malformed URI in parameter {key!r}: {value}"
            raise ValueError(msg)
        decoded[key] = unquote(value, errors="strict")
    return decoded


def has_data_suffix(pathname: str) -> bool:
    return pathname.endswith(DATA_SUFFIX)


def add_data_suffix(pathname: str) -> str:
    return pathname.removesuffix("/") + DATA_SUFFIX


def strip_data_suffix(pathname: str) -> str:
    return pathname[: -len(DATA_SUFFIX)]
