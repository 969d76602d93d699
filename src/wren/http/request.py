"""Immutable HTTP request.

Frozen metadata with async body access. Requests arrive from the ASGI
shell (``from_asgi``) or are built in-process by the sub-fetch proxy
(``build``); the pipeline treats both the same way.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from wren._internal.asgi import Receive
from wren.http.headers import Headers
from wren.http.url import URL

if TYPE_CHECKING:
    from wren.http.forms import FormData


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Metadata (method, URL, headers) is frozen at creation. The body is
    read asynchronously via ``.body()``, ``.text()``, ``.json()``, ``.form()``
    and cached after the first read.
    """

    method: str
    url: URL
    headers: Headers
    client: tuple[str, int] | None = None

    # Fetch options; only meaningful for sub-requests made during load
    mode: str = "cors"
    credentials: str = "same-origin"

    # Private: ASGI receive callable, or None when the body was given up front
    _receive: Receive | None = field(default=None, repr=False, compare=False)

    # Private: mutable cache for body and parsed form data
    # (dict contents are mutable even though the field reference is frozen)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def path(self) -> str:
        """The percent-encoded request path."""
        return self.url.path

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def has_body(self) -> bool:
        """Whether the request carries (or may carry) a body."""
        if "_body" in self._cache:
            return bool(self._cache["_body"])
        return "content-length" in self.headers or "transfer-encoding" in self.headers

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body.

        Result is cached: the ASGI receive is consumed once, then
        the same bytes are returned on subsequent calls.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        if self._receive is None:
            return
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def json(self) -> Any:
        """Parse the body as JSON."""
        return json_module.loads(await self.body())

    async def text(self) -> str:
        """Read the body as text (UTF-8)."""
        raw = await self.body()
        return raw.decode("utf-8")

    async def form(self) -> FormData:
        """Parse the body as form data (URL-encoded, multipart or text/plain).

        Result is cached: the body is read and parsed once, then the same
        ``FormData`` is returned on subsequent calls.
        """
        if "_form" in self._cache:
            return self._cache["_form"]

        from wren.http.forms import parse_form_data

        ct = self.content_type or "application/x-www-form-urlencoded"
        result = await parse_form_data(await self.body(), ct)
        self._cache["_form"] = result
        return result

    # -- Derivation --

    def with_url(self, url: URL) -> Request:
        """Return the same request addressed to *url*, sharing the body cache."""
        return replace(self, url=url)

    def with_headers(self, headers: Headers) -> Request:
        """Return the same request with *headers*, sharing the body cache."""
        return replace(self, headers=headers)

    # -- Factories --

    @classmethod
    def build(
        cls,
        method: str,
        url: URL | str,
        *,
        headers: Mapping[str, str] | Iterable[tuple[str, str]] = (),
        body: bytes | str | None = None,
        mode: str = "cors",
        credentials: str = "same-origin",
    ) -> Request:
        """Create a request in-process with its body given up front."""
        if isinstance(url, str):
            url = URL.parse(url)
        if isinstance(body, str):
            body = body.encode("utf-8")
        request = cls(
            method=method.upper(),
            url=url,
            headers=Headers.from_pairs(headers),
            mode=mode,
            credentials=credentials,
        )
        request._cache["_body"] = body or b""
        return request

    @classmethod
    def from_asgi(cls, scope: Mapping[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        headers = Headers(tuple(scope.get("headers", ())))
        scheme = scope.get("scheme", "http")
        host = headers.get("host")
        if host is None:
            server = scope.get("server")
            if server:
                name, port = server[0], server[1]
                default = 443 if scheme == "https" else 80
                host = name if port in (None, default) else f"{name}:{port}"
            else:
                host = "localhost"
        raw_path = scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1").partition("?")[0]
        else:
            path = quote(scope.get("path", "/"), safe="/%:@!$&'()*+,;=~")
        root_path = scope.get("root_path", "")
        if root_path and not path.startswith(root_path):
            path = root_path + path
        client = scope.get("client")
        return cls(
            method=scope["method"],
            url=URL(
                scheme=scheme,
                host=host.lower(),
                path=path or "/",
                query=scope.get("query_string", b"").decode("latin-1"),
            ),
            headers=headers,
            client=tuple(client) if client else None,
            _receive=receive,
        )
