"""Immutable absolute URL.

Paths are kept percent-encoded exactly as received; the dispatcher decodes
them itself so ``%2F`` inside a segment survives routing.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from urllib.parse import urljoin, urlsplit

from wren.http.query import QueryParams

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True, slots=True)
class URL:
    """An absolute URL split into its parts.

    ``query`` and ``fragment`` exclude their ``?``/``#`` markers.
    """

    scheme: str
    host: str
    path: str = "/"
    query: str = ""
    fragment: str = ""

    @classmethod
    def parse(cls, href: str, base: URL | str | None = None) -> URL:
        """Parse *href*, resolving it against *base* when relative."""
        if base is not None:
            href = urljoin(str(base), href)
        parts = urlsplit(href)
        if not parts.scheme or not parts.netloc:
            msg = f"Invalid URL: {href!r}"
            raise ValueError(msg)
        return cls(
            scheme=parts.scheme.lower(),
            host=parts.netloc.lower(),
            path=parts.path or "/",
            query=parts.query,
            fragment=parts.fragment,
        )

    @property
    def hostname(self) -> str:
        """Host without the port."""
        host = self.host.rpartition("@")[2]
        if host.startswith("["):
            return host[: host.index("]") + 1]
        return host.partition(":")[0]

    @property
    def port(self) -> int | None:
        """Explicit port, or ``None`` when the scheme default applies."""
        host = self.host.rpartition("@")[2]
        if host.startswith("["):
            host = host[host.index("]") + 1 :]
        _, sep, port = host.partition(":")
        if not sep or not port:
            return None
        value = int(port)
        return None if _DEFAULT_PORTS.get(self.scheme) == value else value

    @property
    def origin(self) -> str:
        port = self.port
        return f"{self.scheme}://{self.hostname}" + (f":{port}" if port is not None else "")

    @property
    def search(self) -> str:
        """The query with its leading ``?``, or ``""``."""
        return f"?{self.query}" if self.query else ""

    @property
    def query_params(self) -> QueryParams:
        return QueryParams(self.query)

    @property
    def href(self) -> str:
        href = f"{self.origin}{self.path}{self.search}"
        return f"{href}#{self.fragment}" if self.fragment else href

    def replace(self, **changes: str) -> URL:
        """Return a copy with the given parts replaced."""
        return replace(self, **changes)

    def __str__(self) -> str:
        return self.href
