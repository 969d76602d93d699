"""The per-request event passed to hooks, actions and endpoints."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from wren._internal.once import SharedAwaitables
from wren.http.request import Request
from wren.http.url import URL
from wren.server.cookies import CookieJar
from wren.server.state import PrerenderingState

if TYPE_CHECKING:
    from wren.server.fetch import FetchResponse


@dataclass(frozen=True, slots=True)
class RouteInfo:
    """The matched route as user code sees it; ``id`` is ``None`` when nothing matched."""

    id: str | None = None


class ResponseHeaders:
    """Headers contributed by loads, actions and endpoints via ``set_headers``.

    Each header may be set once per request. After the response has been
    produced the accumulator is sealed and every write raises.
    """

    __slots__ = ("_headers", "_prerendering", "_sealed")

    def __init__(self, prerendering: PrerenderingState | None = None) -> None:
        self._headers: dict[str, str] = {}
        self._prerendering = prerendering
        self._sealed = False

    def set(self, headers: Mapping[str, str]) -> None:
        if self._sealed:
            msg = "Cannot use `set_headers(...)` after the response has been generated"
            raise RuntimeError(msg)
        for name, value in headers.items():
            lower = name.lower()
            if lower == "set-cookie":
                msg = (
                    "Use `event.cookies.set(name, value, options)` instead of "
                    "`event.set_headers` to set cookies"
                )
                raise ValueError(msg)
            if lower in self._headers:
                msg = f'"{name}" header is already set'
                raise ValueError(msg)
            self._headers[lower] = value
            if lower == "cache-control" and self._prerendering is not None:
                self._prerendering.cache = value

    def seal(self) -> None:
        self._sealed = True

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self._headers.items())


@dataclass(slots=True)
class RequestEvent:
    """Everything known about the request being served.

    ``fetch`` is bound to this request: relative URLs resolve against
    ``url``, same-origin calls run in-process and carry the request's
    cookies. ``locals`` is free for hooks to share data with loads and
    actions. ``awaitables`` makes every pending value returned from a load
    awaited once, however many times it is encoded or read.
    """

    request: Request
    url: URL
    cookies: CookieJar
    headers: ResponseHeaders
    params: dict[str, str] = field(default_factory=dict)
    route: RouteInfo = field(default_factory=RouteInfo)
    locals: dict[str, Any] = field(default_factory=dict)
    platform: Any = None
    is_data_request: bool = False
    fetch: Callable[..., Awaitable[FetchResponse]] | None = None
    awaitables: SharedAwaitables = field(default_factory=SharedAwaitables, repr=False)
    _get_client_address: Callable[[], str] | None = None

    def set_headers(self, headers: Mapping[str, str]) -> None:
        """Add response headers; each name may only be set once."""
        self.headers.set(headers)

    def get_client_address(self) -> str:
        if self._get_client_address is None:
            msg = "The host did not provide a client address"
            raise RuntimeError(msg)
        return self._get_client_address()
