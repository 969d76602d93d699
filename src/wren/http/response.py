"""HTTP responses with a chainable ``.with_*()`` transformation API.

Each transformation returns a new response. The pipeline builds headers up
incrementally (page headers, ``set_headers`` values, cookies, CSP, ETag)
without mutating anything it has already handed out.
"""

import json as json_module
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, Self

import anyio

from wren.http.cookies import SetCookie
from wren.http.headers import Headers


class _HeaderOps:
    """Header transformations shared by ``Response`` and ``StreamingResponse``."""

    __slots__ = ()

    status: int
    content_type: str | None
    headers: tuple[tuple[str, str], ...]
    cookies: tuple[SetCookie, ...]

    def with_status(self, status: int) -> Self:
        """Return a copy with a different status code."""
        return replace(self, status=status)  # type: ignore[type-var]

    def with_header(self, name: str, value: str) -> Self:
        """Return a copy with an additional header."""
        return replace(self, headers=(*self.headers, (name.lower(), value)))  # type: ignore[type-var]

    def with_headers(self, headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> Self:
        """Return a copy with additional headers."""
        items = headers.items() if isinstance(headers, Mapping) else headers
        new = tuple((name.lower(), value) for name, value in items)
        return replace(self, headers=(*self.headers, *new))  # type: ignore[type-var]

    def set_header(self, name: str, value: str) -> Self:
        """Return a copy where *name* has exactly one value."""
        name = name.lower()
        if name == "content-type":
            return self.with_content_type(value)
        kept = tuple((n, v) for n, v in self.headers if n != name)
        return replace(self, headers=(*kept, (name, value)))  # type: ignore[type-var]

    def with_content_type(self, content_type: str | None) -> Self:
        """Return a copy with a different content type."""
        return replace(self, content_type=content_type)  # type: ignore[type-var]

    def with_cookies(self, cookies: Iterable[SetCookie]) -> Self:
        """Return a copy with additional ``Set-Cookie`` directives."""
        return replace(self, cookies=(*self.cookies, *cookies))  # type: ignore[type-var]

    @property
    def header_map(self) -> Headers:
        """Every header that will be sent, including content type and cookies."""
        pairs = list(self.headers)
        if self.content_type is not None:
            pairs.insert(0, ("content-type", self.content_type))
        pairs.extend(("set-cookie", cookie.to_header_value()) for cookie in self.cookies)
        return Headers.from_pairs(pairs)

    def header(self, name: str) -> str | None:
        """First value of header *name*, or ``None``."""
        return self.header_map.get(name)


@dataclass(frozen=True, slots=True)
class Response(_HeaderOps):
    """An HTTP response with a fully-buffered body."""

    body: str | bytes = ""
    status: int = 200
    content_type: str | None = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body

    def json(self) -> Any:
        """Body parsed as JSON."""
        return json_module.loads(self.body_bytes)


@dataclass(frozen=True, slots=True)
class StreamingResponse(_HeaderOps):
    """A response whose body is produced progressively.

    Headers are sent immediately, then each chunk as it becomes available.
    Used for documents and data payloads with deferred values.

    *producer*, when set, is what feeds *chunks*. It runs alongside the
    iteration inside ``open()``, so whoever reads the body owns it.
    """

    chunks: AsyncIterator[str]
    status: int = 200
    content_type: str | None = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()
    cookies: tuple[SetCookie, ...] = ()
    producer: Callable[[], Awaitable[None]] | None = None

    @asynccontextmanager
    async def open(self) -> AsyncIterator[AsyncIterator[str]]:
        """Start the producer and hand out the chunks.

        Leaving the block cancels the producer, whether or not every chunk
        was read. An exception raised in the block comes out unchanged.
        """
        failure: Exception | None = None
        async with anyio.create_task_group() as tg:
            if self.producer is not None:
                tg.start_soon(self.producer)
            try:
                yield self.chunks
            except Exception as exc:
                failure = exc
            finally:
                tg.cancel_scope.cancel()
        if failure is not None:
            raise failure

    async def read(self) -> bytes:
        """Drain the stream into bytes. Consumes the response."""
        async with self.open() as chunks:
            parts = [chunk.encode("utf-8") async for chunk in chunks]
        return b"".join(parts)


type AnyResponse = Response | StreamingResponse


def json_response(
    data: Any,
    *,
    status: int = 200,
    headers: Mapping[str, str] | Iterable[tuple[str, str]] = (),
) -> Response:
    """A compact JSON response."""
    body = json_module.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return Response(body, status=status, content_type="application/json").with_headers(headers)


def text_response(
    text: str,
    *,
    status: int = 200,
    headers: Mapping[str, str] | Iterable[tuple[str, str]] = (),
) -> Response:
    """A plain text response."""
    return Response(text, status=status, content_type="text/plain; charset=utf-8").with_headers(
        headers
    )
