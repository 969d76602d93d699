"""The build manifest: routes, lazily-loaded nodes and client assets.

A manifest is shared by every request in the process. Nodes are loaded on
first use and cached; nothing in here is mutated per request.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass

from wren._internal.invoke import invoke
from wren.pages.types import EndpointModule, Node
from wren.routing.route import Matcher, Route
from wren.routing.router import Router

type NodeLoader = Callable[[], Node | Awaitable[Node]]


@dataclass(frozen=True, slots=True)
class ClientManifest:
    """Entry points and shared assets of the client bundle."""

    start: str
    app: str
    imports: tuple[str, ...] = ()
    stylesheets: tuple[str, ...] = ()
    fonts: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StaticAsset:
    """A file served verbatim when a load function fetches it."""

    size: int
    content_type: str


class Manifest:
    """Routes, nodes and assets of one built app.

    Usage::

        manifest = Manifest(
            routes=[Route.from_id("/blog/[id]", page=PageNodes((0,), (1,), 2))],
            nodes=[load_root_layout, load_root_error, load_blog_page],
            client=ClientManifest(start="_app/start.js", app="_app/app.js"),
        )
    """

    __slots__ = ("_endpoints", "_nodes", "_router", "assets", "client", "loaders")

    def __init__(
        self,
        *,
        routes: Sequence[Route],
        nodes: Sequence[NodeLoader],
        client: ClientManifest,
        matchers: Mapping[str, Matcher] | None = None,
        assets: Mapping[str, StaticAsset] | None = None,
    ) -> None:
        self.loaders = tuple(nodes)
        self.client = client
        self.assets = dict(assets or {})
        self._router = Router(routes, matchers)
        self._nodes: dict[int, Node] = {}
        self._endpoints: dict[str, EndpointModule] = {}

    @property
    def router(self) -> Router:
        return self._router

    @property
    def routes(self) -> tuple[Route, ...]:
        return self._router.routes

    async def node(self, index: int) -> Node:
        """Load node *index* and cache it for the process."""
        cached = self._nodes.get(index)
        if cached is not None:
            return cached
        # concurrent first loads may both import; the first one is kept
        cached = await invoke(self.loaders[index])
        return self._nodes.setdefault(index, cached)

    async def endpoint(self, route: Route) -> EndpointModule | None:
        """Load the endpoint module of *route*, if it has one."""
        if route.endpoint is None:
            return None
        cached = self._endpoints.get(route.id)
        if cached is None:
            cached = await invoke(route.endpoint)
            self._endpoints[route.id] = cached
        return cached
