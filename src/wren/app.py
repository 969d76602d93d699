"""wren application class.

Holds the manifest, configuration and hooks. ``init`` freezes the runtime
environment snapshot and compiles templates; it runs once, either
explicitly or on the first lifespan/HTTP event.
"""

import logging
import os
import threading
from collections.abc import Mapping
from pathlib import Path

import anyio

from wren._internal.asgi import Receive, Scope, Send
from wren._internal.hashing import djb2
from wren.config import AppConfig
from wren.hooks import Hooks
from wren.http.request import Request
from wren.http.response import AnyResponse, StreamingResponse
from wren.manifest import Manifest
from wren.pages.types import Renderer
from wren.security.csp import validate_csp_config
from wren.server.respond import respond
from wren.server.sender import send_response, send_streaming_response
from wren.server.state import PrerenderingState, RequestState, RuntimeEnv, ServerOptions
from wren.templating.shell import create_environment

logger = logging.getLogger("wren.server")


class App:
    """A built wren app, served over ASGI.

    Usage::

        app = App(manifest, hooks=Hooks(handle=handle), root=render)
        app.init(os.environ)

    Thread safety:
        ``init`` uses a Lock + double-check so exactly one thread builds
        the server options, even when several ASGI workers receive their
        first request at once.
    """

    __slots__ = ("_init_lock", "_options", "_static_dir", "config", "hooks", "manifest", "root")

    def __init__(
        self,
        manifest: Manifest,
        config: AppConfig | None = None,
        hooks: Hooks | None = None,
        root: Renderer | None = None,
        *,
        static_dir: str | Path | None = None,
    ) -> None:
        self.manifest = manifest
        self.config: AppConfig = config or AppConfig()
        self.hooks: Hooks = hooks or Hooks()
        self.root = root
        self._static_dir = Path(static_dir) if static_dir is not None else None
        self._options: ServerOptions | None = None
        self._init_lock = threading.Lock()
        validate_csp_config(self.config.csp)

    # -- Setup --

    def init(self, env: Mapping[str, str]) -> None:
        """Snapshot *env* and build the per-process options. Later calls are no-ops."""
        if self._options is not None:
            return
        with self._init_lock:
            if self._options is not None:
                return
            self._options = ServerOptions(
                config=self.config,
                hooks=self.hooks,
                root=self.root,
                env=RuntimeEnv.from_environ(env, self.config.env_public_prefix),
                templates=create_environment(self.config),
                version_hash=djb2(self.config.version),
            )
            logger.debug("wren app initialized (version %s)", self.config.version)

    @property
    def options(self) -> ServerOptions:
        if self._options is None:
            msg = "App.init(env) must be called before serving requests"
            raise RuntimeError(msg)
        return self._options

    # -- Serving --

    async def _read_asset(self, file: str) -> bytes:
        if self._static_dir is None:
            msg = f"No static directory configured to read {file!r}"
            raise FileNotFoundError(msg)
        return await anyio.Path(self._static_dir / file).read_bytes()

    async def respond(
        self,
        request: Request,
        *,
        prerendering: PrerenderingState | None = None,
    ) -> AnyResponse:
        """Serve *request* in-process, outside any ASGI server."""
        client = request.client

        def get_client_address() -> str:
            if client is None:
                msg = "Client address is not available for this request"
                raise RuntimeError(msg)
            return client[0]

        state = RequestState(
            get_client_address=get_client_address,
            platform=None,
            read=self._read_asset,
            prerendering=prerendering,
        )
        return await respond(request, self.options, self.manifest, state)

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        self.init(os.environ)
        response = await self.respond(Request.from_asgi(scope, receive))
        if isinstance(response, StreamingResponse):
            await send_streaming_response(response, send)
        else:
            await send_response(response, send)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Run the ASGI lifespan protocol; startup takes the environment snapshot."""
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    self.init(os.environ)
                except Exception as exc:
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif msg_type == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
