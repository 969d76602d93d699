"""Route, parameter and match dataclasses."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from wren.errors import ConfigurationError

if TYPE_CHECKING:
    from wren.pages.types import EndpointModule

type EndpointLoader = Callable[[], "EndpointModule | Awaitable[EndpointModule]"]


@dataclass(frozen=True, slots=True)
class RouteParam:
    """One dynamic segment of a route id.

    ``[slug]``          -> RouteParam("slug")
    ``[[lang]]``        -> RouteParam("lang", optional=True, chained=True)
    ``[...path]``       -> RouteParam("path", rest=True, chained=True)
    ``[id=integer]``    -> RouteParam("id", matcher="integer")
    """

    name: str
    matcher: str | None = None
    optional: bool = False
    rest: bool = False
    chained: bool = False


@dataclass(frozen=True, slots=True)
class PageNodes:
    """Node indices that make up a page: layouts outermost first, the leaf last.

    ``errors[i]`` is the error-boundary node declared at layout depth *i*,
    or ``None``. ``layouts`` may contain ``None`` for depths with no layout.
    """

    layouts: tuple[int | None, ...]
    errors: tuple[int | None, ...]
    leaf: int


@dataclass(frozen=True, slots=True)
class Route:
    """A frozen route definition, built once with the manifest."""

    id: str
    pattern: re.Pattern[str]
    params: tuple[RouteParam, ...] = ()
    page: PageNodes | None = None
    endpoint: EndpointLoader | None = None

    def __post_init__(self) -> None:
        if self.page is None and self.endpoint is None:
            msg = f"Route {self.id!r} has neither a page nor an endpoint"
            raise ConfigurationError(msg)

    @classmethod
    def from_id(
        cls,
        route_id: str,
        *,
        page: PageNodes | None = None,
        endpoint: EndpointLoader | None = None,
    ) -> Route:
        """Compile a route from its id, e.g. ``"/blog/[slug]"``."""
        from wren.routing.router import parse_route_id

        pattern, params = parse_route_id(route_id)
        return cls(id=route_id, pattern=pattern, params=params, page=page, endpoint=endpoint)


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match. Params are still percent-encoded."""

    route: Route
    params: dict[str, str]


type Matcher = Callable[[str], Any]
