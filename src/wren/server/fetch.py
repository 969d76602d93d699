"""The sub-fetch proxy behind ``event.fetch``.

Same-origin requests never touch the network: they are answered by running
the app's own pipeline in-process, one level deeper, with the caller's
cookies and authorization forwarded. Cookies the sub-response sets are
replayed into the outer request's jar. Static assets from the manifest
are read straight from the host. Cross-origin requests go out through
``httpx``.
"""

from __future__ import annotations

import json as json_module
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

import httpx

from wren._internal.invoke import invoke
from wren.http.cookies import parse_set_cookie
from wren.http.headers import Headers
from wren.http.request import Request
from wren.http.response import AnyResponse, Response, StreamingResponse
from wren.http.url import URL
from wren.server.state import RequestState, ServerOptions

if TYPE_CHECKING:
    from wren.manifest import Manifest
    from wren.server.event import RequestEvent

logger = logging.getLogger("wren.fetch")

type HeadersInit = Mapping[str, str] | Iterable[tuple[str, str]]
type Fetch = Callable[..., Awaitable[FetchResponse]]


class FetchResponse:
    """A response obtained through ``event.fetch``.

    The body is read at most once and cached, so ``text()``, ``json()`` and
    ``read()`` may be mixed freely.
    """

    __slots__ = ("_body", "_stream", "headers", "status", "url")

    def __init__(
        self,
        status: int,
        headers: Headers,
        *,
        url: str = "",
        body: bytes | None = None,
        stream: StreamingResponse | None = None,
    ) -> None:
        self.status = status
        self.headers = headers
        self.url = url
        self._body = body
        self._stream = stream

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def read(self) -> bytes:
        if self._body is None:
            if self._stream is None:
                self._body = b""
            else:
                self._body = await self._stream.read()
                self._stream = None
        return self._body

    async def text(self) -> str:
        return (await self.read()).decode("utf-8")

    async def json(self) -> Any:
        return json_module.loads(await self.text())

    def with_body(self, body: bytes) -> FetchResponse:
        """Same status and headers, different body."""
        return FetchResponse(self.status, self.headers, url=self.url, body=body)

    @classmethod
    def from_response(cls, response: AnyResponse, url: str = "") -> FetchResponse:
        if isinstance(response, StreamingResponse):
            return cls(response.status, response.header_map, url=url, stream=response)
        return cls(response.status, response.header_map, url=url, body=response.body_bytes)

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> FetchResponse:
        return cls(
            response.status_code,
            Headers.from_pairs(response.headers.multi_items()),
            url=str(response.url),
            body=response.content,
        )

    def __repr__(self) -> str:
        return f"FetchResponse({self.status}, {self.url!r})"


def to_request(
    resource: str | URL | Request,
    base: URL,
    *,
    method: str | None = None,
    headers: HeadersInit | None = None,
    body: bytes | str | None = None,
    mode: str | None = None,
    credentials: str | None = None,
) -> Request:
    """Normalize ``fetch`` arguments into a ``Request`` resolved against *base*."""
    if isinstance(resource, Request):
        request = resource
        if headers is not None:
            request = request.with_headers(Headers.from_pairs(headers))
        return request
    url = resource if isinstance(resource, URL) else URL.parse(resource, base)
    return Request.build(
        method or "GET",
        url,
        headers=headers or (),
        body=body,
        mode=mode or "cors",
        credentials=credentials or "same-origin",
    )


def _set_header(request: Request, name: str, value: str | None) -> Request:
    pairs = [(n, v) for n, v in request.headers.pairs() if n != name]
    if value is not None:
        pairs.append((name, value))
    return request.with_headers(Headers.from_pairs(pairs))


async def fetch_external(request: Request) -> FetchResponse:
    logger.debug("cross-origin fetch %s %s", request.method, request.url)
    async with httpx.AsyncClient() as client:
        upstream = await client.request(
            request.method,
            str(request.url),
            headers=request.headers.pairs(),
            content=await request.body() or None,
        )
    return FetchResponse.from_httpx(upstream)


def create_fetch(
    event: RequestEvent,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
) -> Fetch:
    """Build the ``fetch`` function bound to *event*."""
    from wren.server.respond import respond

    async def proxied(request: Request) -> FetchResponse:
        url = request.url
        same_origin = url.origin == event.url.origin

        if request.headers.get("origin") is None:
            request = _set_header(request, "origin", event.url.origin)
        if request.method in ("GET", "HEAD") and (
            same_origin or request.mode == "no-cors"
        ):
            request = _set_header(request, "origin", None)

        if not same_origin:
            # cookies only follow requests to subdomains of the current host
            if f".{url.hostname}".endswith(f".{event.url.hostname}") and request.credentials != "omit":
                cookie = event.cookies.header_for(url, request.headers.get("cookie"))
                if cookie:
                    request = _set_header(request, "cookie", cookie)
            return await fetch_external(request)

        paths = options.config.paths
        prefix = paths.assets or paths.base
        decoded = unquote(url.path)
        filename = (decoded[len(prefix) :] if prefix and decoded.startswith(prefix) else decoded)[1:]
        filename_html = f"{filename}/index.html"
        asset = manifest.assets.get(filename)
        if asset is not None or filename_html in manifest.assets:
            if state.read is not None:
                file = filename if asset is not None else filename_html
                content_type = asset.content_type if asset is not None else "text/html"
                body = await invoke(state.read, file)
                return FetchResponse(
                    200,
                    Headers.from_pairs({"content-type": content_type}),
                    url=str(url),
                    body=body,
                )
            return await fetch_external(request)

        if request.credentials != "omit":
            cookie = event.cookies.header_for(url, request.headers.get("cookie"))
            if cookie:
                request = _set_header(request, "cookie", cookie)
            authorization = event.request.headers.get("authorization")
            if authorization and "authorization" not in request.headers:
                request = _set_header(request, "authorization", authorization)

        if "accept" not in request.headers:
            request = _set_header(request, "accept", "*/*")
        if "accept-language" not in request.headers:
            language = event.request.headers.get("accept-language")
            if language:
                request = _set_header(request, "accept-language", language)

        response = await respond(request, options, manifest, state.nested())
        for value in response.header_map.get_list("set-cookie"):
            event.cookies.add(parse_set_cookie(value))
        return FetchResponse.from_response(response, str(url))

    async def inner_fetch(resource: str | URL | Request, **init: Any) -> FetchResponse:
        return await proxied(to_request(resource, event.url, **init))

    async def fetch(resource: str | URL | Request, **init: Any) -> FetchResponse:
        request = to_request(resource, event.url, **init)
        return await invoke(options.hooks.handle_fetch, event, request, inner_fetch)

    return fetch
