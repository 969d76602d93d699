"""``+server`` endpoints: one handler per HTTP method."""

from __future__ import annotations

from typing import TYPE_CHECKING

from wren._internal.invoke import invoke
from wren.errors import ConfigurationError, Redirect
from wren.http.response import AnyResponse, Response, StreamingResponse
from wren.server.errors import method_not_allowed, redirect_response
from wren.server.negotiation import negotiate

if TYPE_CHECKING:
    from wren.pages.types import EndpointModule
    from wren.server.event import RequestEvent
    from wren.server.state import RequestState

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
_MUTATIVE = ("POST", "PUT", "PATCH", "DELETE")


def allowed_methods(mod: EndpointModule) -> list[str]:
    """Methods *mod* answers, for the ``Allow`` header."""
    allowed = [method for method in _METHODS if method in mod.handlers]
    if "GET" in mod.handlers or "HEAD" in mod.handlers:
        allowed.append("HEAD")
    return allowed


async def render_endpoint(event: RequestEvent, mod: EndpointModule, state: RequestState) -> AnyResponse:
    method = event.request.method
    handler = mod.handlers.get(method)
    if handler is None and method == "HEAD":
        handler = mod.handlers.get("GET")
    if handler is None:
        return method_not_allowed(allowed_methods(mod), method)

    prerender = mod.prerender if mod.prerender is not None else state.prerender_default

    if prerender and any(m in mod.handlers for m in _MUTATIVE):
        msg = "Cannot prerender endpoints that have mutative methods"
        raise ConfigurationError(msg)

    if state.prerendering is not None and not prerender:
        if state.depth > 0:
            # requested by a page being prerendered
            msg = f"{event.route.id} is not prerenderable"
            raise ConfigurationError(msg)
        return Response(b"", status=204, content_type=None)

    try:
        response = await invoke(handler, event)
    except Redirect as exc:
        return redirect_response(exc.status, exc.location)

    if not isinstance(response, (Response, StreamingResponse)):
        msg = f"Invalid response from route {event.url.path}: handler should return a Response object"
        raise ConfigurationError(msg)

    if state.prerendering is not None:
        response = response.set_header("x-sveltekit-prerender", str(prerender).lower())
    return response


def is_endpoint_request(event: RequestEvent) -> bool:
    """Whether a request to a route with both a page and an endpoint goes to the endpoint."""
    method = event.request.method
    headers = event.request.headers
    if method in ("PUT", "PATCH", "DELETE", "OPTIONS"):
        return True
    # enhanced forms mark themselves so they reach the page's actions
    if method == "POST" and headers.get("x-sveltekit-action") == "true":
        return False
    accept = headers.get("accept") or "*/*"
    return negotiate(accept, ["*", "text/html"]) != "text/html"
