"""Running one node's server and universal ``load`` functions.

Server loads get instrumented views of ``params``, ``route`` and ``url``:
reading them marks the node's ``Uses`` record so the client knows which
navigations must re-run it. Universal loads get a ``fetch`` that mimics
what the browser would allow (CORS, ``no-cors`` bodies, readable headers)
and records every response body it reads for replay in the document.
"""

from __future__ import annotations

import inspect
import json as json_module
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import anyio

from wren._internal.invoke import invoke
from wren.http.headers import Headers
from wren.http.query import QueryParams
from wren.http.request import Request
from wren.http.url import URL
from wren.pages.fetched import Fetched
from wren.pages.types import Node, ServerData, Uses
from wren.server.state import PrerenderDependency, RequestState

if TYPE_CHECKING:
    from wren.hooks import ResolveOptions
    from wren.server.cookies import CookieJar
    from wren.server.event import RequestEvent
    from wren.server.fetch import FetchResponse

type Parent = Callable[[], Awaitable[dict[str, Any]]]


async def unwrap_awaitables(data: Any) -> Any:
    """Await the top-level values of a load result concurrently.

    Nested awaitables are left alone; they are streamed to the client as
    deferred values. The first failure, in completion order, is re-raised.
    """
    if not isinstance(data, dict) or not any(inspect.isawaitable(v) for v in data.values()):
        return data

    resolved: dict[str, Any] = {}
    failures: list[BaseException] = []

    async def resolve(key: str, value: Any) -> None:
        try:
            resolved[key] = await value if inspect.isawaitable(value) else value
        except Exception as exc:
            failures.append(exc)

    async with anyio.create_task_group() as tg:
        for key, value in data.items():
            tg.start_soon(resolve, key, value)
    if failures:
        raise failures[0]
    return {key: resolved[key] for key in data}


# -- Instrumented inputs --


class TrackedURL:
    """The request URL as a server load sees it.

    Reading anything that changes between navigations (path, query, href)
    calls *on_read*. The fragment never reaches the server, so reading it
    raises; while prerendering the query is off limits too.
    """

    __slots__ = ("_on_read", "_search_disabled", "_url")

    def __init__(self, url: URL, on_read: Callable[[], None], *, search_disabled: bool = False) -> None:
        self._url = url
        self._on_read = on_read
        self._search_disabled = search_disabled

    # Stable for the life of the page: untracked

    @property
    def scheme(self) -> str:
        return self._url.scheme

    @property
    def host(self) -> str:
        return self._url.host

    @property
    def hostname(self) -> str:
        return self._url.hostname

    @property
    def port(self) -> int | None:
        return self._url.port

    @property
    def origin(self) -> str:
        return self._url.origin

    # Tracked

    @property
    def path(self) -> str:
        self._on_read()
        return self._url.path

    @property
    def href(self) -> str:
        self._on_read()
        return self._url.href

    @property
    def search(self) -> str:
        self._check_search("search")
        self._on_read()
        return self._url.search

    @property
    def query_params(self) -> QueryParams:
        self._check_search("query_params")
        self._on_read()
        return self._url.query_params

    @property
    def hash(self) -> str:
        msg = "Cannot access event.url.hash. Consider using `page.url.hash` inside a component instead"
        raise RuntimeError(msg)

    fragment = hash

    def _check_search(self, name: str) -> None:
        if self._search_disabled:
            msg = f"Cannot access url.{name} on a page with prerendering enabled"
            raise RuntimeError(msg)

    def __str__(self) -> str:
        return self.href

    def __repr__(self) -> str:
        return f"TrackedURL({self._url.href!r})"


class TrackedParams(Mapping[str, str]):
    """Route params that report which names were read."""

    __slots__ = ("_on_read", "_params")

    def __init__(self, params: Mapping[str, str], on_read: Callable[[str], None]) -> None:
        self._params = params
        self._on_read = on_read

    def __getitem__(self, key: str) -> str:
        self._on_read(key)
        return self._params[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"TrackedParams({dict(self._params)!r})"


class TrackedRoute:
    __slots__ = ("_id", "_on_read")

    def __init__(self, route_id: str | None, on_read: Callable[[], None]) -> None:
        self._id = route_id
        self._on_read = on_read

    @property
    def id(self) -> str | None:
        self._on_read()
        return self._id


def _resource_url(resource: str | URL | Request, base: URL) -> URL:
    if isinstance(resource, Request):
        return resource.url
    if isinstance(resource, URL):
        return resource
    return URL.parse(resource, base)


# -- Load events --


class ServerLoadEvent:
    """The argument of a server ``load`` function.

    Usage::

        async def load(event):
            post = await db.get_post(event.params["id"])
            event.depends("app:posts")
            return {"post": post, "layout": await event.parent()}
    """

    __slots__ = ("_event", "_parent", "_uses", "params", "route", "url")

    def __init__(self, event: RequestEvent, uses: Uses, parent: Parent, *, prerendering: bool) -> None:
        self._event = event
        self._uses = uses
        self._parent = parent
        self.params = TrackedParams(event.params, uses.params.add)
        self.route = TrackedRoute(event.route.id, self._mark_route)
        self.url = TrackedURL(event.url, self._mark_url, search_disabled=prerendering)

    def _mark_route(self) -> None:
        self._uses.route = True

    def _mark_url(self) -> None:
        self._uses.url = True

    @property
    def request(self) -> Request:
        return self._event.request

    @property
    def cookies(self) -> CookieJar:
        return self._event.cookies

    @property
    def locals(self) -> dict[str, Any]:
        return self._event.locals

    @property
    def platform(self) -> Any:
        return self._event.platform

    @property
    def is_data_request(self) -> bool:
        return self._event.is_data_request

    def get_client_address(self) -> str:
        return self._event.get_client_address()

    def set_headers(self, headers: Mapping[str, str]) -> None:
        self._event.set_headers(headers)

    async def fetch(self, resource: str | URL | Request, **init: Any) -> FetchResponse:
        """``event.fetch`` that also makes the URL a dependency of this node."""
        self._uses.dependencies.add(_resource_url(resource, self._event.url).href)
        if self._event.fetch is None:
            msg = "No fetch is bound to this request"
            raise RuntimeError(msg)
        return await self._event.fetch(resource, **init)

    def depends(self, *dependencies: str) -> None:
        """Register custom invalidation keys (``"app:posts"``) or URLs."""
        for dependency in dependencies:
            if urlsplit(dependency).scheme:
                self._uses.dependencies.add(dependency)
            else:
                self._uses.dependencies.add(URL.parse(dependency, self._event.url).href)

    async def parent(self) -> dict[str, Any]:
        """Merged data of every shallower server load."""
        self._uses.parent = True
        return await self._parent()


class UniversalLoadEvent:
    """The argument of a universal ``load`` function while rendering on the server."""

    __slots__ = ("_event", "_parent", "data", "fetch", "params", "route", "url")

    def __init__(
        self,
        event: RequestEvent,
        data: dict[str, Any] | None,
        fetch: Callable[..., Awaitable[LoadResponse]],
        parent: Parent,
    ) -> None:
        self._event = event
        self._parent = parent
        self.url = event.url
        self.params = dict(event.params)
        self.route = event.route
        self.data = data
        self.fetch = fetch

    def set_headers(self, headers: Mapping[str, str]) -> None:
        self._event.set_headers(headers)

    def depends(self, *dependencies: str) -> None:
        """Only meaningful in the browser."""

    async def parent(self) -> dict[str, Any]:
        """Merged data of every shallower universal load."""
        return await self._parent()


async def load_server_data(
    *,
    event: RequestEvent,
    state: RequestState,
    node: Node | None,
    parent: Parent,
) -> ServerData | None:
    """Call *node*'s server load, recording what it depended on."""
    if node is None or node.server is None:
        return None

    uses = Uses()
    result = None
    if node.server.load is not None:
        load_event = ServerLoadEvent(
            event, uses, parent, prerendering=state.prerendering is not None
        )
        result = await invoke(node.server.load, load_event)

    data = event.awaitables.share_nested(await unwrap_awaitables(result)) if result else None
    return ServerData(data=data, uses=uses, slash=node.server.trailing_slash)


async def load_data(
    *,
    event: RequestEvent,
    fetched: list[Fetched],
    node: Node | None,
    parent: Parent,
    server_data: Callable[[], Awaitable[ServerData | None]],
    state: RequestState,
    resolve_opts: ResolveOptions,
    csr: bool,
) -> dict[str, Any] | None:
    """Call *node*'s universal load, or pass its server data through."""
    server_node = await server_data()
    server_payload = server_node.data if server_node is not None else None

    if node is None or node.universal is None or node.universal.load is None:
        return server_payload

    load_event = UniversalLoadEvent(
        event,
        server_payload,
        create_universal_fetch(event, state, fetched, csr, resolve_opts),
        parent,
    )
    result = await invoke(node.universal.load, load_event)
    return event.awaitables.share_nested(await unwrap_awaitables(result)) if result else None


# -- Universal fetch --


class ProtectedHeaders(Mapping[str, str]):
    """Response headers where only serialized ones may be read.

    The client replays fetched responses with just the headers the
    ``filter_serialized_response_headers`` option lets through, so reading
    any other header during server rendering would diverge from hydration.
    """

    __slots__ = ("_filter", "_headers", "_route_id")

    def __init__(
        self,
        headers: Headers,
        header_filter: Callable[[str, str], bool],
        route_id: str | None,
    ) -> None:
        self._headers = headers
        self._filter = header_filter
        self._route_id = route_id

    def __getitem__(self, key: str) -> str:
        lower = key.lower()
        value = self._headers[lower]
        if value and not lower.startswith("x-sveltekit-") and not self._filter(lower, value):
            msg = (
                f'Failed to get response header "{lower}": it must be included by the '
                f"`filter_serialized_response_headers` option (at {self._route_id})"
            )
            raise RuntimeError(msg)
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)


class LoadResponse:
    """What a universal load's ``fetch`` returns.

    Reading the body as text records the response for replay in the
    document and, while prerendering, as a dependency.
    """

    __slots__ = ("_dependency", "_on_text", "_response", "headers")

    def __init__(
        self,
        response: FetchResponse,
        headers: Mapping[str, str],
        on_text: Callable[[str], Awaitable[None]],
        dependency: PrerenderDependency | None,
    ) -> None:
        self._response = response
        self._on_text = on_text
        self._dependency = dependency
        self.headers = headers

    @property
    def status(self) -> int:
        return self._response.status

    @property
    def ok(self) -> bool:
        return self._response.ok

    @property
    def url(self) -> str:
        return self._response.url

    async def text(self) -> str:
        body = await self._response.text()
        await self._on_text(body)
        if self._dependency is not None:
            self._dependency.body = body
        return body

    async def json(self) -> Any:
        return json_module.loads(await self.text())

    async def read(self) -> bytes:
        body = await self._response.read()
        if self._dependency is not None:
            self._dependency.body = body
        return body

    def __repr__(self) -> str:
        return f"LoadResponse({self.status}, {self.url!r})"


def _header_pairs(headers: Mapping[str, str] | Iterable[tuple[str, str]] | None) -> tuple[tuple[str, str], ...] | None:
    if not headers:
        return None
    items = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((name, value) for name, value in items)


def create_universal_fetch(
    event: RequestEvent,
    state: RequestState,
    fetched: list[Fetched],
    csr: bool,
    resolve_opts: ResolveOptions,
) -> Callable[..., Awaitable[LoadResponse]]:
    """The ``fetch`` handed to universal loads during server rendering."""

    async def fetch(resource: str | URL | Request, **init: Any) -> LoadResponse:
        request_body: str | bytes | None
        if isinstance(resource, Request):
            request_body = await resource.body() or None
        else:
            request_body = init.get("body")

        if event.fetch is None:
            msg = "No fetch is bound to this request"
            raise RuntimeError(msg)
        response = await event.fetch(resource, **init)

        url = _resource_url(resource, event.url)
        same_origin = url.origin == event.url.origin
        dependency: PrerenderDependency | None = None

        if same_origin:
            if state.prerendering is not None:
                dependency = PrerenderDependency(response=response, body=None)
                state.prerendering.dependencies[url.path] = dependency
        else:
            mode = resource.mode if isinstance(resource, Request) else init.get("mode") or "cors"
            if mode == "no-cors":
                response = response.with_body(b"")
            else:
                allowed = response.headers.get("access-control-allow-origin")
                if not allowed or allowed not in (event.url.origin, "*"):
                    qualifier = "Incorrect" if allowed else "No"
                    msg = (
                        f"CORS error: {qualifier} 'Access-Control-Allow-Origin' header "
                        "is present on the requested resource"
                    )
                    raise RuntimeError(msg)

        method = resource.method if isinstance(resource, Request) else (init.get("method") or "GET").upper()

        async def record(body: str) -> None:
            fetched.append(
                Fetched(
                    url=url.href[len(event.url.origin) :] if same_origin else url.href,
                    method=method,
                    response=response,
                    response_body=body,
                    request_body=request_body,
                    request_headers=_header_pairs(init.get("headers")),
                )
            )

        headers: Mapping[str, str] = response.headers
        if csr:
            headers = ProtectedHeaders(
                response.headers,
                resolve_opts.filter_serialized_response_headers,
                event.route.id,
            )
        return LoadResponse(response, headers, record, dependency)

    return fetch
