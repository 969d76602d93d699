"""wren: the server half of a SvelteKit-style app, in Python.

Matches routes, runs layout and page loads, dispatches form actions and
endpoints, and renders documents that the client runtime hydrates.

Basic usage::

    from wren import App, Manifest, ClientManifest, Route, PageNodes, Node

    manifest = Manifest(
        routes=[Route.from_id("/", page=PageNodes((0,), (1,), 2))],
        nodes=[lambda: Node(0), lambda: Node(1), lambda: Node(2)],
        client=ClientManifest(start="_app/start.js", app="_app/app.js"),
    )
    app = App(manifest, root=render)

Loads and actions raise or return the helpers from ``wren.errors``::

    from wren import error, fail, redirect
"""

__version__ = "0.1.0"
__all__ = [
    "ActionFailure",
    "App",
    "AppConfig",
    "CSPConfig",
    "ClientManifest",
    "ConfigurationError",
    "EndpointModule",
    "HttpError",
    "Hooks",
    "Manifest",
    "Node",
    "PageNodes",
    "PathsConfig",
    "Redirect",
    "Rendered",
    "Request",
    "RequestEvent",
    "Response",
    "Route",
    "ServerNode",
    "StaticAsset",
    "StreamingResponse",
    "UniversalNode",
    "WrenError",
    "error",
    "fail",
    "json_response",
    "redirect",
    "sequence",
    "text_response",
]

_LAZY_IMPORTS: dict[str, str] = {
    "App": "wren.app",
    "AppConfig": "wren.config",
    "CSPConfig": "wren.config",
    "PathsConfig": "wren.config",
    "ActionFailure": "wren.errors",
    "ConfigurationError": "wren.errors",
    "HttpError": "wren.errors",
    "Redirect": "wren.errors",
    "WrenError": "wren.errors",
    "error": "wren.errors",
    "fail": "wren.errors",
    "redirect": "wren.errors",
    "Hooks": "wren.hooks",
    "sequence": "wren.hooks",
    "Request": "wren.http.request",
    "Response": "wren.http.response",
    "StreamingResponse": "wren.http.response",
    "json_response": "wren.http.response",
    "text_response": "wren.http.response",
    "ClientManifest": "wren.manifest",
    "Manifest": "wren.manifest",
    "StaticAsset": "wren.manifest",
    "EndpointModule": "wren.pages.types",
    "Node": "wren.pages.types",
    "Rendered": "wren.pages.types",
    "ServerNode": "wren.pages.types",
    "UniversalNode": "wren.pages.types",
    "PageNodes": "wren.routing.route",
    "Route": "wren.routing.route",
    "RequestEvent": "wren.server.event",
}


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import wren`` fast while providing a clean top-level API.
    """
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    import importlib

    return getattr(importlib.import_module(module_name), name)
