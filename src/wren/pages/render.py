"""Rendering a page request: actions, loads, error boundaries, document."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import anyio

from wren._internal.once import Once
from wren.errors import ConfigurationError, HttpError, Redirect
from wren.http.response import AnyResponse, Response, text_response
from wren.pages.actions import (
    ActionError,
    ActionFailed,
    ActionRedirect,
    ActionResult,
    handle_action_json_request,
    handle_action_request,
    is_action_json_request,
    is_action_request,
)
from wren.pages.data import get_data_json
from wren.pages.document import PageConfig, render_response
from wren.pages.fetched import Fetched
from wren.pages.load import load_data, load_server_data
from wren.pages.types import Loaded, Node, ServerData, get_option
from wren.routing.paths import add_data_suffix
from wren.server.errors import (
    get_status,
    handle_error_and_jsonify,
    redirect_response,
    static_error_page,
)
from wren.server.state import PrerenderDependency

if TYPE_CHECKING:
    from wren.hooks import ResolveOptions
    from wren.manifest import Manifest
    from wren.routing.route import PageNodes
    from wren.server.event import RequestEvent
    from wren.server.state import RequestState, ServerOptions

logger = logging.getLogger("wren.server")

# self-fetches deeper than this are assumed to be an infinite loop
MAX_DEPTH = 10

ROOT_LAYOUT = 0
ROOT_ERROR = 1


async def render_page(
    event: RequestEvent,
    page: PageNodes,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
    resolve_opts: ResolveOptions,
) -> AnyResponse:
    """Run the action (if any) and every load on the branch, then render it."""
    if state.depth > MAX_DEPTH:
        logger.warning("Request depth exceeded for %s; likely an infinite fetch loop", event.url.path)
        return text_response(f"Not found: {event.url.path}", status=404)

    if is_action_json_request(event):
        leaf = await manifest.node(page.leaf)
        return await handle_action_json_request(event, options, leaf.server)

    try:
        nodes = await _load_nodes(manifest, page)
        leaf_node = nodes[-1]
        if leaf_node is None:
            msg = f"Leaf node {page.leaf} did not load"
            raise ConfigurationError(msg)

        status = 200
        action_result: ActionResult | None = None

        if is_action_request(event):
            action_result = await handle_action_request(event, leaf_node.server)
            if isinstance(action_result, ActionRedirect):
                return redirect_response(action_result.status, action_result.location)
            if isinstance(action_result, (ActionError, ActionFailed)):
                status = action_result.status

        should_prerender_data = any(node is not None and node.server is not None for node in nodes)
        data_pathname = add_data_suffix(event.url.path)

        # decided before the ssr=False shortcut, so the prerenderer learns about this page
        should_prerender = get_option(nodes, "prerender") or False
        if should_prerender:
            if leaf_node.server is not None and leaf_node.server.actions:
                msg = "Cannot prerender pages with actions"
                raise ConfigurationError(msg)
        elif state.prerendering is not None:
            return Response(b"", status=204, content_type=None)

        # endpoints fetched while loading inherit the page's prerender option
        state.prerender_default = bool(should_prerender)

        fetched: list[Fetched] = []
        csr = get_option(nodes, "csr")
        csr = True if csr is None else csr

        if get_option(nodes, "ssr") is False:
            return await render_response(
                event=event,
                options=options,
                manifest=manifest,
                state=state,
                resolve_opts=resolve_opts,
                page_config=PageConfig(ssr=False, csr=csr),
                branch=[],
                fetched=fetched,
                status=status,
                action_result=action_result,
            )

        load_error: list[BaseException] = []
        server_runners: list[Once] = []
        universal_runners: list[Once] = []

        def server_runner(index: int, node: Node | None) -> Once:
            async def run() -> ServerData | None:
                if load_error:
                    raise load_error[0]
                try:
                    if node is leaf_node and isinstance(action_result, ActionError):
                        # raised here so nested error boundaries can render it
                        raise action_result.error
                    return await load_server_data(
                        event=event,
                        state=state,
                        node=node,
                        parent=lambda: server_parent(index),
                    )
                except Exception as exc:
                    load_error.append(exc)
                    raise

            return Once(run)

        def universal_runner(index: int, node: Node | None) -> Once:
            async def run() -> dict[str, Any] | None:
                if load_error:
                    raise load_error[0]
                try:
                    return await load_data(
                        event=event,
                        fetched=fetched,
                        node=node,
                        parent=lambda: universal_parent(index),
                        server_data=server_runners[index],
                        state=state,
                        resolve_opts=resolve_opts,
                        csr=csr,
                    )
                except Exception as exc:
                    load_error.append(exc)
                    raise

            return Once(run)

        async def server_parent(index: int) -> dict[str, Any]:
            merged: dict[str, Any] = {}
            for runner in server_runners[:index]:
                parent = await runner()
                if parent is not None and parent.data:
                    merged.update(parent.data)
            return merged

        async def universal_parent(index: int) -> dict[str, Any]:
            merged: dict[str, Any] = {}
            for runner in universal_runners[:index]:
                merged.update(await runner() or {})
            return merged

        server_runners.extend(server_runner(i, node) for i, node in enumerate(nodes))
        universal_runners.extend(universal_runner(i, node) for i, node in enumerate(nodes))

        # every depth starts at once; failures are observed below, in depth order
        async with anyio.create_task_group() as tg:
            for runner in (*server_runners, *universal_runners):
                tg.start_soon(runner.settle)

        branch: list[Loaded | None] = []
        for i, node in enumerate(nodes):
            if node is None:
                # keeps depths aligned with page.errors when rewinding
                branch.append(None)
                continue
            try:
                server_data = await server_runners[i]()
                data = await universal_runners[i]()
            except Redirect as exc:
                if state.prerendering is not None and should_prerender_data:
                    body = json.dumps({"type": "redirect", "location": exc.location})
                    state.prerendering.dependencies[data_pathname] = PrerenderDependency(
                        response=text_response(body), body=body
                    )
                return redirect_response(exc.status, exc.location)
            except Exception as exc:
                return await _render_error_boundary(
                    event, options, manifest, state, resolve_opts, page, branch, i, exc, fetched
                )
            branch.append(Loaded(node=node, server_data=server_data, data=data))

        if state.prerendering is not None and should_prerender_data:
            data, deferred = get_data_json(
                event,
                options,
                [loaded.server_data if loaded is not None else None for loaded in branch],
            )
            if deferred is not None:
                data += await deferred.collect()
            state.prerendering.dependencies[data_pathname] = PrerenderDependency(
                response=text_response(data), body=data
            )

        return await render_response(
            event=event,
            options=options,
            manifest=manifest,
            state=state,
            resolve_opts=resolve_opts,
            page_config=PageConfig(ssr=True, csr=csr),
            branch=[loaded for loaded in branch if loaded is not None],
            fetched=fetched,
            status=status,
            action_result=action_result,
        )
    except Exception as exc:
        # loads succeeded but rendering failed, or prerendering was misconfigured
        return await respond_with_error(
            event=event,
            options=options,
            manifest=manifest,
            state=state,
            status=500,
            error=exc,
            resolve_opts=resolve_opts,
        )


async def _load_nodes(manifest: Manifest, page: PageNodes) -> list[Node | None]:
    indexes = [*page.layouts, page.leaf]
    nodes: list[Node | None] = [None] * len(indexes)

    async def load(position: int, index: int) -> None:
        nodes[position] = await manifest.node(index)

    async with anyio.create_task_group() as tg:
        for position, index in enumerate(indexes):
            if index is not None:
                tg.start_soon(load, position, index)
    return nodes


async def _render_error_boundary(
    event: RequestEvent,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
    resolve_opts: ResolveOptions,
    page: PageNodes,
    branch: list[Loaded | None],
    depth: int,
    exc: BaseException,
    fetched: list[Fetched],
) -> AnyResponse:
    """Render the nearest error page above *depth*, or the static fallback."""
    status = get_status(exc)
    error = await handle_error_and_jsonify(event, options, exc)

    for i in range(depth - 1, -1, -1):
        error_index = page.errors[i] if i < len(page.errors) else None
        if error_index is None:
            continue
        error_node = await manifest.node(error_index)
        j = i
        while j > 0 and branch[j] is None:
            j -= 1
        kept = [loaded for loaded in branch[: j + 1] if loaded is not None]
        return await render_response(
            event=event,
            options=options,
            manifest=manifest,
            state=state,
            resolve_opts=resolve_opts,
            page_config=PageConfig(ssr=True, csr=True),
            branch=[*kept, Loaded(node=error_node, server_data=None, data=None)],
            fetched=fetched,
            status=status,
            error=error,
        )

    # the root layout failed; no error page can be rendered inside it
    return static_error_page(options, status, str(error.get("message", "")))


async def respond_with_error(
    *,
    event: RequestEvent,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
    status: int,
    error: BaseException,
    resolve_opts: ResolveOptions,
) -> AnyResponse:
    """Render the root error page inside the root layout."""
    fetched: list[Fetched] = []
    try:
        branch: list[Loaded] = []
        root_layout = await manifest.node(ROOT_LAYOUT)
        ssr = get_option([root_layout], "ssr")
        ssr = True if ssr is None else ssr
        csr = get_option([root_layout], "csr")
        csr = True if csr is None else csr

        if ssr:
            state.error = True

            async def no_parent() -> dict[str, Any]:
                return {}

            server_data_runner = Once(
                lambda: load_server_data(
                    event=event, state=state, node=root_layout, parent=no_parent
                )
            )
            server_data = await server_data_runner()
            data = await load_data(
                event=event,
                fetched=fetched,
                node=root_layout,
                parent=no_parent,
                server_data=server_data_runner,
                state=state,
                resolve_opts=resolve_opts,
                csr=csr,
            )
            branch.append(Loaded(node=root_layout, server_data=server_data, data=data))
            branch.append(Loaded(node=await manifest.node(ROOT_ERROR), server_data=None, data=None))

        return await render_response(
            event=event,
            options=options,
            manifest=manifest,
            state=state,
            resolve_opts=resolve_opts,
            page_config=PageConfig(ssr=ssr, csr=csr),
            branch=branch,
            fetched=fetched,
            status=status,
            error=await handle_error_and_jsonify(event, options, error),
        )
    except Redirect as exc:
        # a 404 whose root layout load redirects ends up here
        return redirect_response(exc.status, exc.location)
    except Exception as exc:
        body = await handle_error_and_jsonify(event, options, exc)
        status = exc.status if isinstance(exc, HttpError) else 500
        return static_error_page(options, status, str(body.get("message", "")))
