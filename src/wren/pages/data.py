"""Answering ``/__data.json`` requests made by the client router.

The client asks for the server data of every node on the route, flagging
with a bitstring which ones it still has cached. The answer is one JSON
object; when loads returned awaitables it becomes newline-delimited JSON,
the object first and then one ``chunk`` line per settled value.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import anyio

from wren._internal.once import Once
from wren.errors import HttpError, Redirect, WrenError
from wren.http.response import AnyResponse, Response, StreamingResponse
from wren.pages.load import load_server_data
from wren.pages.types import SKIP, NodeResult, ServerData, ServerError
from wren.routing.paths import TrailingSlash, normalize_path
from wren.serialization.devalue import DevalueError, stringify
from wren.serialization.stream import DeferredChunks, Outcome, prepend
from wren.server.errors import clarify_devalue_error, handle_error_and_jsonify

if TYPE_CHECKING:
    from wren.manifest import Manifest
    from wren.routing.route import Route
    from wren.server.event import RequestEvent
    from wren.server.state import RequestState, ServerOptions

DATA_CONTENT_TYPE = "text/sveltekit-data"
_NO_STORE = (("cache-control", "private, no-store"),)


def data_json_response(payload: dict[str, Any] | str, status: int = 200) -> Response:
    """A non-streamed data payload; never cached by intermediaries."""
    body = payload if isinstance(payload, str) else json.dumps(payload, separators=(",", ":"))
    return Response(body, status=status, content_type="application/json", headers=_NO_STORE)


def redirect_json_response(redirect: Redirect) -> Response:
    """Tell the client router to navigate instead of following a 3xx."""
    return data_json_response({"type": "redirect", "location": redirect.location})


def _encode_node(node: NodeResult, reducers: dict[str, Any]) -> str:
    if node is None:
        return "null"
    if node is SKIP:
        return '{"type":"skip"}'
    if isinstance(node, ServerError):
        out: dict[str, Any] = {"type": "error", "error": node.error}
        if node.status is not None:
            out["status"] = node.status
        return json.dumps(out, separators=(",", ":"))
    if not isinstance(node, ServerData):
        msg = f"Unexpected node result: {node!r}"
        raise TypeError(msg)
    encoded = stringify(node.data, reducers)
    uses = json.dumps(node.uses.to_json(), separators=(",", ":"))
    slash = f',"slash":{json.dumps(node.slash)}' if node.slash else ""
    return f'{{"type":"data","data":{encoded},"uses":{uses}{slash}}}'


def get_data_json(
    event: RequestEvent,
    options: ServerOptions,
    nodes: Sequence[NodeResult],
) -> tuple[str, DeferredChunks | None]:
    """Encode per-node results as the data payload.

    Returns the first line and, when any value is still pending, the
    registry whose chunks are the ``chunk`` lines that resolve them.
    """
    reducers: dict[str, Any] = {}

    async def format_chunk(placeholder: int, outcome: Outcome, value: Any) -> str:
        key = outcome
        if outcome == "error":
            value = await handle_error_and_jsonify(event, options, value)
        try:
            encoded = stringify(value, reducers)
        except DevalueError:
            failure = WrenError(f"Failed to serialize promise while rendering {event.route.id}")
            key = "error"
            encoded = stringify(await handle_error_and_jsonify(event, options, failure), reducers)
        return f'{{"type":"chunk","id":{placeholder},"{key}":{encoded}}}\n'

    deferred = DeferredChunks(format_chunk)

    def defer(thing: Any) -> int | None:
        return deferred.defer(event.awaitables.share(thing)) if inspect.isawaitable(thing) else None

    reducers["Promise"] = defer

    try:
        strings = [_encode_node(node, reducers) for node in nodes]
    except DevalueError as exc:
        raise WrenError(clarify_devalue_error(event.route.id, exc)) from exc

    data = f'{{"type":"data","nodes":[{",".join(strings)}]}}\n'
    return data, deferred if deferred.pending else None


async def render_data(
    event: RequestEvent,
    route: Route,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
    invalidated: Sequence[bool] | None,
    trailing_slash: TrailingSlash,
) -> AnyResponse:
    """Run the server loads of *route* and answer with their data."""
    if route.page is None:
        # a +server route has no data
        return Response(b"", status=404, content_type=None)

    try:
        node_ids = [*route.page.layouts, route.page.leaf]
        if invalidated is None:
            wanted = [True] * len(node_ids)
        else:
            wanted = [i < len(invalidated) and invalidated[i] for i in range(len(node_ids))]
        aborted = False

        url = event.url.replace(path=normalize_path(event.url.path, trailing_slash))
        event = replace(event, url=url)

        functions: list[Once] = []

        def make_runner(index: int, node_id: int | None) -> Once:
            async def run() -> NodeResult:
                nonlocal aborted
                try:
                    if aborted:
                        return SKIP
                    node = await manifest.node(node_id) if node_id is not None else None
                    return await load_server_data(
                        event=event,
                        state=state,
                        node=node,
                        parent=lambda: merged_parent(index),
                    )
                except Exception:
                    aborted = True
                    raise

            return Once(run)

        async def merged_parent(index: int) -> dict[str, Any]:
            merged: dict[str, Any] = {}
            for runner in functions[:index]:
                parent = await runner()
                if isinstance(parent, ServerData) and parent.data:
                    merged.update(parent.data)
            return merged

        functions.extend(make_runner(i, node_id) for i, node_id in enumerate(node_ids))

        async def settle(index: int) -> NodeResult:
            if not wanted[index]:
                return SKIP
            try:
                return await functions[index]()
            except Redirect:
                raise
            except Exception as exc:
                return ServerError(
                    error=await handle_error_and_jsonify(event, options, exc),
                    status=exc.status if isinstance(exc, HttpError) else None,
                )

        async with anyio.create_task_group() as tg:
            for index, runner in enumerate(functions):
                if wanted[index]:
                    tg.start_soon(runner.settle)
        nodes = [await settle(i) for i in range(len(node_ids))]

        data, deferred = get_data_json(event, options, nodes)
        if deferred is None:
            return data_json_response(data)
        return StreamingResponse(
            prepend(data, deferred.chunks()),
            content_type=DATA_CONTENT_TYPE,
            headers=_NO_STORE,
            producer=deferred.run,
        )
    except Redirect as exc:
        return redirect_json_response(exc)
    except Exception as exc:
        return data_json_response(await handle_error_and_jsonify(event, options, exc), 500)
