"""Per-process options and per-request state handed down the pipeline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from kida import Environment

from wren.config import AppConfig
from wren.pages.types import Renderer

if TYPE_CHECKING:
    from wren.hooks import Hooks
    from wren.http.response import Response
    from wren.server.fetch import FetchResponse


@dataclass(frozen=True, slots=True)
class RuntimeEnv:
    """Read-only environment snapshot taken once at startup."""

    public: Mapping[str, str] = field(default_factory=dict)
    private: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str], public_prefix: str) -> RuntimeEnv:
        public = {k: v for k, v in environ.items() if k.startswith(public_prefix)}
        private = {k: v for k, v in environ.items() if not k.startswith(public_prefix)}
        return cls(public=public, private=private)


@dataclass(frozen=True, slots=True)
class ServerOptions:
    """Everything fixed for the life of the process.

    Built by ``App.init``; never mutated per request.
    """

    config: AppConfig
    hooks: Hooks
    root: Renderer | None
    env: RuntimeEnv
    templates: Environment
    version_hash: str

    @property
    def global_name(self) -> str:
        """Name of the client's bootstrap global, e.g. ``__sveltekit_1x2y3z``."""
        return f"__sveltekit_{self.version_hash}"


@dataclass(slots=True)
class PrerenderDependency:
    """A same-origin response discovered while prerendering, and its body once read."""

    response: Response | FetchResponse
    body: bytes | str | None


@dataclass(slots=True)
class PrerenderingState:
    """Supplied by a prerenderer; absent while serving live traffic."""

    fallback: bool = False
    dependencies: dict[str, PrerenderDependency] = field(default_factory=dict)
    cache: str | None = None


@dataclass(slots=True)
class RequestState:
    """Host-provided context for one request, copied for nested sub-requests.

    ``prerender_default`` and ``error`` are updated while the page renders;
    sub-requests started afterwards inherit them.
    """

    get_client_address: Callable[[], str] | None = None
    platform: Any = None
    read: Callable[[str], bytes | Awaitable[bytes]] | None = None
    prerendering: PrerenderingState | None = None
    prerender_default: bool = False
    depth: int = 0
    error: bool = False

    def nested(self) -> RequestState:
        """State for an in-process sub-request one level deeper."""
        return replace(self, depth=self.depth + 1)
