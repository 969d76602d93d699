"""End-to-end ``__data.json`` requests made by the client router."""

import json

from wren.errors import error, redirect
from wren.hooks import Hooks
from wren.pages.types import EndpointModule, Node, ServerNode
from wren.routing.route import PageNodes, Route
from wren.testing import TestClient

ROOT_ERROR = Node(1, component="error")
PAGE = PageNodes((0,), (1,), 2)


def _app(make_app, leaf_load, root_load=lambda event: {"user": "ada"}):
    root = Node(0, server=ServerNode(load=root_load), component="layout")
    leaf = Node(2, server=ServerNode(load=leaf_load), component="page")
    return make_app([Route.from_id("/blog/[id]", page=PAGE)], [root, ROOT_ERROR, leaf])


class TestDataRequest:
    async def test_every_node_is_serialized(self, make_app) -> None:
        app = _app(make_app, lambda event: {"title": event.params["id"]})

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        assert response.status == 200
        assert response.content_type == "application/json"
        assert response.header("cache-control") == "private, no-store"
        assert response.json() == {
            "type": "data",
            "nodes": [
                {"type": "data", "data": [{"user": 1}, "ada"], "uses": {}},
                {"type": "data", "data": [{"title": 1}, "42"], "uses": {"params": ["id"]}},
            ],
        }

    async def test_cached_nodes_are_skipped(self, make_app) -> None:
        calls: list[str] = []

        def root_load(event):
            calls.append("root")
            return {"user": "ada"}

        def leaf_load(event):
            calls.append("leaf")
            return {"search": event.url.search}

        app = _app(make_app, leaf_load, root_load)

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json?x-sveltekit-invalidated=01")

        nodes = response.json()["nodes"]
        assert nodes[0] == {"type": "skip"}
        # the invalidation bits are not part of the page's URL
        assert nodes[1]["data"] == [{"search": 1}, ""]
        assert calls == ["leaf"]

    async def test_redirect_is_sent_as_json(self, make_app) -> None:
        def load(event):
            raise redirect(307, "/login")

        app = _app(make_app, load)

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        assert response.status == 200
        assert response.json() == {"type": "redirect", "location": "/login"}

    async def test_expected_error_keeps_status(self, make_app) -> None:
        def load(event):
            raise error(403, "nope")

        app = _app(make_app, load)

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        nodes = response.json()["nodes"]
        assert nodes[1] == {"type": "error", "error": {"message": "nope"}, "status": 403}

    async def test_unexpected_error_is_hidden(self, make_app) -> None:
        def load(event):
            msg = "connection refused"
            raise ConnectionError(msg)

        app = _app(make_app, load)

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        nodes = response.json()["nodes"]
        assert nodes[1] == {"type": "error", "error": {"message": "Internal Error"}}
        assert "connection refused" not in response.text

    async def test_pending_values_stream_as_chunks(self, make_app) -> None:
        async def later():
            return "done"

        app = _app(make_app, lambda event: {"extra": {"later": later()}})

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        assert response.content_type == "text/sveltekit-data"
        first, second = response.text.strip().split("\n")
        assert json.loads(first)["nodes"][1]["data"] == [{"extra": 1}, {"later": 2}, ["Promise", 3], 1]
        assert json.loads(second) == {"type": "chunk", "id": 1, "data": ["done"]}

    async def test_unserializable_pending_value_becomes_error_chunk(self, make_app) -> None:
        async def later():
            return object()

        def handle_error(exc, event):
            return {"message": str(exc)}

        root = Node(0, server=ServerNode(load=lambda event: {"user": "ada"}), component="layout")
        leaf = Node(2, server=ServerNode(load=lambda event: {"extra": {"later": later()}}), component="page")
        app = make_app(
            [Route.from_id("/blog/[id]", page=PAGE)],
            [root, ROOT_ERROR, leaf],
            hooks=Hooks(handle_error=handle_error),
        )

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        _, chunk = response.text.strip().split("\n")
        assert json.loads(chunk) == {
            "type": "chunk",
            "id": 1,
            "error": [{"message": 1}, "Failed to serialize promise while rendering /blog/[id]"],
        }

    async def test_endpoint_route_has_no_data(self, make_app) -> None:
        route = Route.from_id("/api", endpoint=lambda: EndpointModule(handlers={}))
        app = make_app([route], [Node(0), ROOT_ERROR])

        async with TestClient(app) as client:
            response = await client.get("/api/__data.json")

        assert response.status == 404
        assert response.body == b""
