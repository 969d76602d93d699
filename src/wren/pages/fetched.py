"""Responses fetched during universal load, replayed into the document.

The client runtime would otherwise repeat every ``fetch`` a universal load
made during server rendering. Each recorded response is written into the
page as an inert ``<script type="application/json" data-sveltekit-fetched>``
element the client reads instead of going to the network.
"""

import json
import re
from dataclasses import dataclass

from wren._internal.hashing import djb2
from wren.hooks import HeaderFilter
from wren.security.csp import escape_html_attr
from wren.server.fetch import FetchResponse

_UNSAFE = {"<": "\\u003C", "\u2028": "\\u2028", "\u2029": "\\u2029"}
_UNSAFE_PATTERN = re.compile("[<\u2028\u2029]")
_S_MAXAGE = re.compile(r"s-maxage=(\d+)")
_MAX_AGE = re.compile(r"max-age=(\d+)")


@dataclass(slots=True)
class Fetched:
    """One response read by a universal load while rendering."""

    url: str
    method: str
    response: FetchResponse
    response_body: str
    request_body: str | bytes | None = None
    request_headers: tuple[tuple[str, str], ...] | None = None


def _script_safe(text: str) -> str:
    return _UNSAFE_PATTERN.sub(lambda m: _UNSAFE[m.group(0)], text)


def serialize_data(fetched: Fetched, header_filter: HeaderFilter, prerendering: bool = False) -> str:
    """The ``<script>`` element carrying *fetched* for the client."""
    headers: dict[str, str] = {}
    cache_control = None
    age = None
    vary = False

    for name, value in fetched.response.headers.pairs():
        if header_filter(name, value):
            headers[name] = value
        if name == "cache-control":
            cache_control = value
        elif name == "age":
            age = value
        elif name == "vary":
            vary = True

    payload = {
        "status": fetched.response.status,
        "statusText": "",
        "headers": headers,
        "body": fetched.response_body,
    }
    safe_payload = _script_safe(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))

    attrs = [
        'type="application/json"',
        "data-sveltekit-fetched",
        f"data-url={escape_html_attr(fetched.url)}",
    ]

    if fetched.request_headers or fetched.request_body:
        values: list[str | bytes] = []
        if fetched.request_headers:
            pairs = sorted((name.lower(), value) for name, value in fetched.request_headers)
            values.append(",".join(f"{name},{value}" for name, value in pairs))
        if fetched.request_body:
            values.append(fetched.request_body)
        attrs.append(f'data-hash="{djb2(*values)}"')

    # responses with a vary header are never cached client-side
    if not prerendering and fetched.method == "GET" and cache_control and not vary:
        match = _S_MAXAGE.search(cache_control) or _MAX_AGE.search(cache_control)
        if match:
            ttl = int(match.group(1)) - int(age or "0")
            attrs.append(f'data-ttl="{ttl}"')

    return f"<script {' '.join(attrs)}>{safe_payload}</script>"
