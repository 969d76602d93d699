"""Content negotiation over ``Accept`` and ``Content-Type`` headers."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from wren.http.forms import FORM_CONTENT_TYPES
from wren.http.request import Request

_MEDIA_RANGE = re.compile(r"([^/]+)/([^;]+)(?:;q=([0-9.]+))?")


@dataclass(frozen=True, slots=True)
class _MediaRange:
    type: str
    subtype: str
    q: float
    i: int


def _sort_key(part: _MediaRange) -> tuple[float, bool, bool, int]:
    return (-part.q, part.subtype == "*", part.type == "*", part.i)


def negotiate(accept: str, types: Sequence[str]) -> str | None:
    """Pick the entry of *types* the client prefers, or ``None``.

    Quality values rank first; at equal quality, specific types beat
    wildcards, then earlier entries beat later ones.
    """
    parts = []
    for i, media_range in enumerate(accept.split(",")):
        match = _MEDIA_RANGE.search(media_range.strip())
        if match:
            type_, subtype, q = match[1].strip(), match[2].strip(), match[3]
            try:
                quality = float(q) if q is not None else 1.0
            except ValueError:
                continue
            parts.append(_MediaRange(type_, subtype, quality, i))
    parts.sort(key=_sort_key)

    accepted = None
    best = len(parts)
    for mimetype in types:
        type_, _, subtype = mimetype.partition("/")
        for priority, part in enumerate(parts):
            if priority >= best:
                break
            if part.type in (type_, "*") and part.subtype in (subtype, "*"):
                accepted, best = mimetype, priority
                break
    return accepted


def is_content_type(request: Request, *types: str) -> bool:
    """Whether the request body's media type is one of *types*."""
    content_type = (request.content_type or "").split(";", 1)[0].strip().lower()
    return content_type in types


def is_form_content_type(request: Request) -> bool:
    return is_content_type(request, *FORM_CONTENT_TYPES)
