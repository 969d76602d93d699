"""Server hooks: request middleware, error reporting and sub-fetch interception.

``handle`` wraps every request, the way middleware does::

    async def handle(event, resolve):
        event.locals["user"] = await authenticate(event.cookies.get("session"))
        response = await resolve(event)
        return response.with_header("x-served-by", "wren")

``resolve`` accepts per-response rendering options:

- ``transform_page_chunk(html, done)`` rewrites document output
- ``filter_serialized_response_headers(name, value)`` picks which headers of
  responses fetched during load are replayed to the client
- ``preload(file, kind)`` decides which assets get a ``Link`` preload header

``sequence(a, b, c)`` composes several ``handle`` functions left to right.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from wren._internal.invoke import invoke

if TYPE_CHECKING:
    from wren.http.request import Request
    from wren.http.response import AnyResponse
    from wren.server.event import RequestEvent
    from wren.server.fetch import FetchResponse

logger = logging.getLogger("wren.server")

type TransformPageChunk = Callable[[str, bool], str | None | Awaitable[str | None]]
type HeaderFilter = Callable[[str, str], bool]
type PreloadFilter = Callable[[str, str], bool]


class Resolve(Protocol):
    def __call__(
        self,
        event: RequestEvent,
        *,
        transform_page_chunk: TransformPageChunk | None = None,
        filter_serialized_response_headers: HeaderFilter | None = None,
        preload: PreloadFilter | None = None,
    ) -> Awaitable[AnyResponse]: ...


type Handle = Callable[[RequestEvent, Resolve], Awaitable[AnyResponse]]
type HandleError = Callable[[BaseException, RequestEvent], Any]
type Fetch = Callable[..., Awaitable[FetchResponse]]
type HandleFetch = Callable[[RequestEvent, Request, Fetch], Awaitable[FetchResponse]]


def _never(name: str, value: str) -> bool:  # noqa: ARG001
    return False


def _default_preload(file: str, kind: str) -> bool:  # noqa: ARG001
    return kind in ("js", "css")


@dataclass(frozen=True, slots=True)
class ResolveOptions:
    """Rendering options chosen by ``handle`` for one response."""

    transform_page_chunk: TransformPageChunk | None = None
    filter_serialized_response_headers: HeaderFilter = _never
    preload: PreloadFilter = _default_preload

    async def transform(self, html: str, done: bool) -> str:
        if self.transform_page_chunk is None:
            return html
        result = await invoke(self.transform_page_chunk, html, done)
        return result or ""


async def default_handle(event: RequestEvent, resolve: Resolve) -> AnyResponse:
    return await resolve(event)


def default_handle_error(error: BaseException, event: RequestEvent) -> None:
    """Log unexpected errors; the client gets a generic message."""
    logger.error(
        "Unhandled error while serving %s %s",
        event.request.method,
        event.url.path,
        exc_info=error,
    )


async def default_handle_fetch(event: RequestEvent, request: Request, fetch: Fetch) -> FetchResponse:  # noqa: ARG001
    return await fetch(request)


@dataclass(frozen=True, slots=True)
class Hooks:
    """The app's server hooks. ``handle`` is async; the others may be sync or async."""

    handle: Handle = default_handle
    handle_error: HandleError = default_handle_error
    handle_fetch: HandleFetch = default_handle_fetch


def sequence(*handlers: Handle) -> Handle:
    """Compose ``handle`` functions; the first one listed runs outermost.

    Page-chunk transforms run innermost first. For the header filter and
    preload predicate the outermost handler that sets one wins.
    """
    if not handlers:
        return default_handle

    async def apply(
        index: int, event: RequestEvent, parent: dict[str, Any], final: Resolve
    ) -> AnyResponse:
        handler = handlers[index]

        async def resolve(event: RequestEvent, **options: Any) -> AnyResponse:
            inner_transform = options.get("transform_page_chunk")
            outer_transform = parent.get("transform_page_chunk")

            async def transform_page_chunk(html: str, done: bool) -> str:
                if inner_transform is not None:
                    html = await invoke(inner_transform, html, done) or ""
                if outer_transform is not None:
                    html = await invoke(outer_transform, html, done) or ""
                return html

            merged: dict[str, Any] = {"transform_page_chunk": transform_page_chunk}
            for name in ("filter_serialized_response_headers", "preload"):
                value = parent.get(name) or options.get(name)
                if value is not None:
                    merged[name] = value

            if index < len(handlers) - 1:
                return await apply(index + 1, event, merged, final)
            return await final(event, **merged)

        return await handler(event, resolve)

    async def handle(event: RequestEvent, resolve: Resolve) -> AnyResponse:
        return await apply(0, event, {}, resolve)

    return handle
