"""The request dispatcher.

``respond`` turns one ``Request`` into one response: it guards against
cross-site form posts, strips the base path and the data suffix, matches
a route, enforces the trailing-slash policy, and hands the event to the
``handle`` hook. ``resolve`` then picks the data, endpoint, page or
not-found renderer. Headers and cookies contributed while rendering are
applied once, on the way out.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from wren.errors import ConfigurationError, HttpError, Redirect, error
from wren.hooks import ResolveOptions
from wren.http.response import AnyResponse, Response, json_response, text_response
from wren.pages.actions import is_action_json_request
from wren.pages.data import redirect_json_response, render_data
from wren.pages.document import PageConfig, render_response
from wren.pages.render import render_page, respond_with_error
from wren.pages.types import get_option
from wren.routing.paths import (
    INVALIDATED_PARAM,
    TrailingSlash,
    decode_params,
    decode_pathname,
    has_data_suffix,
    normalize_path,
    strip_data_suffix,
)
from wren.server.cookies import CookieJar
from wren.server.endpoint import is_endpoint_request, render_endpoint
from wren.server.errors import handle_fatal_error, redirect_response
from wren.server.event import RequestEvent, ResponseHeaders, RouteInfo
from wren.server.fetch import create_fetch, fetch_external
from wren.server.negotiation import is_form_content_type

if TYPE_CHECKING:
    from wren.http.request import Request
    from wren.manifest import Manifest
    from wren.routing.route import Route
    from wren.server.state import RequestState, ServerOptions

logger = logging.getLogger("wren.server")

_MUTATIVE = ("POST", "PUT", "PATCH", "DELETE")

# what a 304 may carry besides the etag
_NOT_MODIFIED_HEADERS = ("cache-control", "content-location", "date", "expires", "vary", "set-cookie")


def _csrf_rejection(request: Request) -> Response | None:
    if not is_form_content_type(request) or request.method not in _MUTATIVE:
        return None
    if request.headers.get("origin") == request.url.origin:
        return None
    logger.warning(
        "Rejected cross-site %s to %s from origin %r",
        request.method,
        request.path,
        request.headers.get("origin"),
    )
    forbidden = error(403, f"Cross-site {request.method} form submissions are forbidden")
    if request.headers.get("accept") == "application/json":
        return json_response(forbidden.body, status=forbidden.status)
    return text_response(forbidden.body["message"], status=forbidden.status)


async def _trailing_slash(route: Route, manifest: Manifest, path: str, base: str) -> TrailingSlash | None:
    # the base path itself is always addressed with a trailing slash
    if path in (base, f"{base}/"):
        return "always"
    if route.page is not None:
        nodes = [
            await manifest.node(index) if index is not None else None
            for index in (*route.page.layouts, route.page.leaf)
        ]
        return get_option(nodes, "trailing_slash")
    mod = await manifest.endpoint(route)
    return mod.trailing_slash if mod is not None else None


def _not_modified(request: Request, response: AnyResponse) -> Response | None:
    if response.status != 200:
        return None
    headers = response.header_map
    etag = headers.get("etag")
    if etag is None:
        return None
    if_none_match = request.headers.get("if-none-match")
    if if_none_match is not None and if_none_match.startswith('W/"'):
        if_none_match = if_none_match[2:]
    if if_none_match != etag:
        return None
    kept = [("etag", etag)]
    for name in _NOT_MODIFIED_HEADERS:
        kept.extend((name, value) for value in headers.get_list(name) if value)
    return Response(b"", status=304, content_type=None, headers=tuple(kept))


async def respond(
    request: Request,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
) -> AnyResponse:
    """Produce the response to *request*."""
    url = request.url
    config = options.config
    fallback = state.prerendering is not None and state.prerendering.fallback

    if config.csrf_check_origin:
        rejected = _csrf_rejection(request)
        if rejected is not None:
            return rejected

    try:
        decoded = decode_pathname(url.path)
    except ValueError:
        return text_response("Malformed URI", status=400)

    base = config.paths.base
    if base and not fallback:
        if not decoded.startswith(base):
            return text_response("Not found", status=404)
        decoded = decoded[len(base) :] or "/"

    is_data_request = has_data_suffix(decoded)
    invalidated: list[bool] | None = None
    if is_data_request:
        decoded = strip_data_suffix(decoded) or "/"
        query = url.query_params
        bits = query.get(INVALIDATED_PARAM)
        if bits is not None:
            invalidated = [bit == "1" for bit in bits]
        url = url.replace(path=strip_data_suffix(url.path) or "/", query=str(query.without(INVALIDATED_PARAM)))

    route: Route | None = None
    params: dict[str, str] = {}
    if not fallback:
        match = manifest.router.match(decoded)
        if match is not None:
            try:
                params = decode_params(match.params)
            except ValueError:
                return text_response("Malformed URI", status=400)
            route = match.route

    cookie_header = request.headers.get("cookie") or ""
    event = RequestEvent(
        request=request,
        url=url,
        cookies=CookieJar(cookie_header, url, "never"),
        headers=ResponseHeaders(state.prerendering),
        params=params,
        route=RouteInfo(route.id if route is not None else None),
        platform=state.platform,
        is_data_request=is_data_request,
        _get_client_address=state.get_client_address,
    )
    resolve_opts = ResolveOptions()
    trailing_slash: TrailingSlash | None = None

    async def resolve(event: RequestEvent, **opts: Any) -> AnyResponse:
        nonlocal resolve_opts
        try:
            if opts:
                resolve_opts = ResolveOptions(**{k: v for k, v in opts.items() if v is not None})

            if fallback:
                return await render_response(
                    event=event,
                    options=options,
                    manifest=manifest,
                    state=state,
                    resolve_opts=resolve_opts,
                    page_config=PageConfig(ssr=False, csr=True),
                    branch=[],
                    fetched=[],
                    status=200,
                )

            if route is not None:
                if is_data_request:
                    return await render_data(
                        event, route, options, manifest, state, invalidated, trailing_slash or "never"
                    )
                if route.endpoint is not None and (route.page is None or is_endpoint_request(event)):
                    mod = await manifest.endpoint(route)
                    if mod is None:
                        msg = f"Endpoint module for {route.id} did not load"
                        raise ConfigurationError(msg)
                    return await render_endpoint(event, mod, state)
                if route.page is None:
                    msg = f"Route {route.id} has neither a page nor an endpoint"
                    raise ConfigurationError(msg)
                return await render_page(event, route.page, options, manifest, state, resolve_opts)

            if state.error:
                return text_response("Internal Server Error", status=500)

            # straight from the client rather than through our own fetch
            if state.depth == 0:
                return await respond_with_error(
                    event=event,
                    options=options,
                    manifest=manifest,
                    state=state,
                    status=404,
                    error=HttpError(404, {"message": "Not Found"}),
                    resolve_opts=resolve_opts,
                )

            if state.prerendering is not None:
                return text_response("not found", status=404)

            # not part of this app; the host may still serve it
            upstream = await fetch_external(request)
            return Response(
                await upstream.read(),
                status=upstream.status,
                content_type=None,
                headers=tuple(upstream.headers.pairs()),
            )
        except Redirect:
            raise
        except Exception as exc:
            return await handle_fatal_error(event, options, exc)
        finally:
            event.cookies.seal()
            event.headers.seal()

    async def resolve_and_decorate(event: RequestEvent, **opts: Any) -> AnyResponse:
        response = await resolve(event, **opts)
        # applied here once rather than by every renderer
        for name, value in event.headers:
            response = response.set_header(name, value)
        response = response.with_cookies(event.cookies.new_cookies)
        if state.prerendering is not None and event.route.id is not None:
            response = response.set_header("x-sveltekit-routeid", quote(event.route.id, safe="/[]()=.@+-_~!*'"))
        return response

    try:
        if route is not None:
            trailing_slash = await _trailing_slash(route, manifest, url.path, base)
            if not is_data_request:
                normalized = normalize_path(url.path, trailing_slash or "never")
                if normalized != url.path and not fallback:
                    # paths starting with // must not turn protocol-relative
                    location = url.origin + normalized if normalized.startswith("//") else normalized
                    return Response(
                        b"",
                        status=308,
                        content_type=None,
                        headers=(("x-sveltekit-normalize", "1"), ("location", location + url.search)),
                    )

        event.cookies = CookieJar(cookie_header, url, trailing_slash or "never")
        event.fetch = create_fetch(event, options, manifest, state)

        response = await options.hooks.handle(event, resolve_and_decorate)

        not_modified = _not_modified(request, response)
        if not_modified is not None:
            return not_modified

        # handle returned a redirect of its own while serving a data request
        if is_data_request and 300 <= response.status <= 308:
            location = response.header("location")
            if location:
                return redirect_json_response(Redirect(response.status, location))

        return response
    except Redirect as exc:
        if is_data_request:
            redirected: Response = redirect_json_response(exc)
        elif route is not None and route.page is not None and is_action_json_request(event):
            redirected = json_response({"type": "redirect", "status": exc.status, "location": exc.location})
        else:
            redirected = redirect_response(exc.status, exc.location)
        return redirected.with_cookies(event.cookies.new_cookies)
    except Exception as exc:
        return await handle_fatal_error(event, options, exc)
