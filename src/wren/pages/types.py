"""Data models for pages, layouts and endpoints.

Immutable frozen dataclasses describe what the build produced (nodes,
endpoint modules); the small mutable ones record what happened while one
request was served (dependency usage, loaded branch entries).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from wren.routing.paths import TrailingSlash

type LoadFunction = Callable[[Any], Any]
type ActionFunction = Callable[[Any], Any]
type EndpointHandler = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class ServerNode:
    """The server-only half of a layout or page (``+page.server``).

    Attributes:
        load: ``load(event)`` returning a dict (sync or async).
        actions: Form actions by name; ``"default"`` for the unnamed one.
        prerender/ssr/csr/trailing_slash: Page options; ``None`` inherits.
    """

    load: LoadFunction | None = None
    actions: Mapping[str, ActionFunction] | None = None
    prerender: bool | Literal["auto"] | None = None
    ssr: bool | None = None
    csr: bool | None = None
    trailing_slash: TrailingSlash | None = None


@dataclass(frozen=True, slots=True)
class UniversalNode:
    """The universal half of a layout or page (``+page``), run on server and client."""

    load: LoadFunction | None = None
    prerender: bool | Literal["auto"] | None = None
    ssr: bool | None = None
    csr: bool | None = None
    trailing_slash: TrailingSlash | None = None


@dataclass(frozen=True, slots=True)
class Node:
    """One layout, page or error page as the build emitted it.

    ``component`` is opaque to wren and handed to the renderer.
    ``inline_styles`` returns ``{filename: css}`` for stylesheets small
    enough to inline.
    """

    index: int
    server: ServerNode | None = None
    universal: UniversalNode | None = None
    component: Any = None
    imports: tuple[str, ...] = ()
    stylesheets: tuple[str, ...] = ()
    fonts: tuple[str, ...] = ()
    inline_styles: Callable[[], Mapping[str, str] | Awaitable[Mapping[str, str]]] | None = None


@dataclass(frozen=True, slots=True)
class EndpointModule:
    """A ``+server`` module: request handlers keyed by HTTP method."""

    handlers: Mapping[str, EndpointHandler] = field(default_factory=dict)
    prerender: bool | Literal["auto"] | None = None
    trailing_slash: TrailingSlash | None = None


def get_option(nodes: Sequence[Node | None], option: str) -> Any:
    """Resolve a page option: the deepest node that sets it wins."""
    value = None
    for node in nodes:
        if node is None:
            continue
        for half in (node.universal, node.server):
            candidate = getattr(half, option, None) if half is not None else None
            if candidate is not None:
                value = candidate
                break
    return value


@dataclass(slots=True)
class Uses:
    """Which reactive inputs one server load read, for client invalidation."""

    dependencies: set[str] = field(default_factory=set)
    params: set[str] = field(default_factory=set)
    parent: bool = False
    route: bool = False
    url: bool = False

    def to_json(self) -> dict[str, Any]:
        """Compact form sent to the client."""
        out: dict[str, Any] = {}
        if self.dependencies:
            out["dependencies"] = sorted(self.dependencies)
        if self.params:
            out["params"] = sorted(self.params)
        if self.parent:
            out["parent"] = 1
        if self.route:
            out["route"] = 1
        if self.url:
            out["url"] = 1
        return out


@dataclass(slots=True)
class ServerData:
    """Output of one server load: its data and what it depended on."""

    data: dict[str, Any] | None
    uses: Uses
    slash: TrailingSlash | None = None


@dataclass(frozen=True, slots=True)
class ServerError:
    """A node whose server load failed, as sent in data requests."""

    error: dict[str, Any]
    status: int | None = None


class _Skip:
    """Placeholder for a node whose cached client data is still valid."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "SKIP"


SKIP = _Skip()

type NodeResult = ServerData | ServerError | _Skip | None


@dataclass(slots=True)
class Loaded:
    """One entry of a rendered branch."""

    node: Node
    server_data: ServerData | None
    data: dict[str, Any] | None


@dataclass(frozen=True, slots=True)
class Rendered:
    """What the renderer produced for a branch."""

    html: str
    head: str = ""
    css: str = ""


class Renderer(Protocol):
    """The external component renderer.

    ``props`` carries ``constructors`` (each node's component, outermost
    first), ``page`` (url, params, route id, status, error, data, form)
    and ``data_<i>``/``form`` entries per depth.
    """

    def __call__(self, props: dict[str, Any]) -> Rendered | Awaitable[Rendered]: ...
