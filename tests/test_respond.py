"""The request dispatcher: guards, path handling, conditional requests, hooks."""

from wren.config import AppConfig, PathsConfig
from wren.errors import redirect
from wren.hooks import Hooks, sequence
from wren.http.response import Response, text_response
from wren.pages.types import Node, ServerNode
from wren.routing.route import PageNodes, Route
from wren.testing import TestClient

ROUTES = [Route.from_id("/blog/[id]", page=PageNodes((0,), (1,), 2))]


def _nodes(load=lambda event: {"title": "Hi"}, actions=None) -> list[Node]:
    return [
        Node(0, component="layout"),
        Node(1, component="error"),
        Node(2, server=ServerNode(load=load, actions=actions), component="page"),
    ]


class TestCrossSiteForms:
    async def test_foreign_origin_is_rejected(self, make_app) -> None:
        app = make_app(ROUTES, _nodes(actions={"default": lambda event: None}))

        async with TestClient(app) as client:
            response = await client.post(
                "/blog/42", form={"a": "1"}, headers={"origin": "https://evil.example"}
            )

        assert response.status == 403
        assert response.content_type == "text/plain; charset=utf-8"
        assert response.text == "Cross-site POST form submissions are forbidden"

    async def test_rejection_as_json(self, make_app) -> None:
        app = make_app(ROUTES, _nodes(actions={"default": lambda event: None}))

        async with TestClient(app) as client:
            response = await client.post(
                "/blog/42",
                form={"a": "1"},
                headers={"origin": "https://evil.example", "accept": "application/json"},
            )

        assert response.status == 403
        assert response.json() == {"message": "Cross-site POST form submissions are forbidden"}

    async def test_check_can_be_disabled(self, make_app) -> None:
        app = make_app(
            ROUTES,
            _nodes(actions={"default": lambda event: None}),
            config=AppConfig(csrf_check_origin=False),
        )

        async with TestClient(app) as client:
            response = await client.post(
                "/blog/42",
                form={"a": "1"},
                headers={"origin": "https://evil.example", "accept": "application/json"},
            )

        assert response.json()["type"] == "success"

    async def test_non_form_bodies_are_not_checked(self, make_app) -> None:
        app = make_app(ROUTES, _nodes())

        async with TestClient(app) as client:
            response = await client.post(
                "/blog/42",
                json={"a": 1},
                headers={"origin": "https://evil.example", "accept": "application/json"},
            )

        assert response.status != 403


class TestPaths:
    async def test_malformed_path(self, make_app) -> None:
        app = make_app(ROUTES, _nodes())

        async with TestClient(app) as client:
            response = await client.get("/blog/%E0%A4%A")

        assert response.status == 400
        assert response.text == "Malformed URI"

    async def test_outside_base_path(self, make_app) -> None:
        config = AppConfig(paths=PathsConfig(base="/docs"))
        app = make_app(ROUTES, _nodes(), config=config)

        async with TestClient(app) as client:
            outside = await client.get("/blog/42")
            inside = await client.get("/docs/blog/42")

        assert outside.status == 404
        assert outside.text == "Not found"
        assert inside.status == 200
        assert "<h1>Hi</h1>" in inside.text

    async def test_encoded_params_are_decoded(self, make_app) -> None:
        app = make_app(ROUTES, _nodes(load=lambda event: {"title": event.params["id"]}))

        async with TestClient(app) as client:
            response = await client.get("/blog/caf%C3%A9")

        assert "<h1>café</h1>" in response.text


class TestConditionalRequests:
    async def test_matching_etag_gets_304(self, make_app) -> None:
        app = make_app(ROUTES, _nodes())

        async with TestClient(app) as client:
            first = await client.get("/blog/42")
            etag = first.header("etag")
            second = await client.get("/blog/42", headers={"if-none-match": etag})

        assert first.status == 200
        assert etag is not None
        assert second.status == 304
        assert second.body == b""
        assert second.header("etag") == etag

    async def test_weak_validator_matches(self, make_app) -> None:
        app = make_app(ROUTES, _nodes())

        async with TestClient(app) as client:
            etag = (await client.get("/blog/42")).header("etag")
            response = await client.get("/blog/42", headers={"if-none-match": f"W/{etag}"})

        assert response.status == 304

    async def test_304_keeps_cache_headers(self, make_app) -> None:
        def load(event):
            event.set_headers({"cache-control": "max-age=300", "x-debug": "1"})
            return {"title": "Hi"}

        app = make_app(ROUTES, _nodes(load=load))

        async with TestClient(app) as client:
            etag = (await client.get("/blog/42")).header("etag")
            response = await client.get("/blog/42", headers={"if-none-match": etag})

        assert response.status == 304
        assert response.header("cache-control") == "max-age=300"
        assert response.header("x-debug") is None

    async def test_stale_etag_gets_full_page(self, make_app) -> None:
        app = make_app(ROUTES, _nodes())

        async with TestClient(app) as client:
            response = await client.get("/blog/42", headers={"if-none-match": '"stale"'})

        assert response.status == 200
        assert "<h1>Hi</h1>" in response.text


class TestHandleHook:
    async def test_locals_reach_loads(self, make_app) -> None:
        async def handle(event, resolve):
            event.locals["user"] = "ada"
            return await resolve(event)

        app = make_app(
            ROUTES,
            _nodes(load=lambda event: {"title": event.locals["user"]}),
            hooks=Hooks(handle=handle),
        )

        async with TestClient(app) as client:
            response = await client.get("/blog/42")

        assert "<h1>ada</h1>" in response.text

    async def test_transform_page_chunk(self, make_app) -> None:
        async def handle(event, resolve):
            return await resolve(
                event, transform_page_chunk=lambda html, done: html.replace("<h1>", '<h1 class="big">')
            )

        app = make_app(ROUTES, _nodes(), hooks=Hooks(handle=handle))

        async with TestClient(app) as client:
            response = await client.get("/blog/42")

        assert '<h1 class="big">Hi</h1>' in response.text

    async def test_short_circuit(self, make_app) -> None:
        async def handle(event, resolve):
            if event.url.path.startswith("/blog"):
                return text_response("maintenance", status=503)
            return await resolve(event)

        app = make_app(ROUTES, _nodes(), hooks=Hooks(handle=handle))

        async with TestClient(app) as client:
            response = await client.get("/blog/42")

        assert response.status == 503
        assert response.text == "maintenance"

    async def test_sequenced_handlers_share_the_event(self, make_app) -> None:
        async def first(event, resolve):
            event.locals["trail"] = ["first"]
            response = await resolve(event)
            return response.with_header("x-trail", ",".join(event.locals["trail"]))

        async def second(event, resolve):
            event.locals["trail"].append("second")
            return await resolve(event)

        app = make_app(ROUTES, _nodes(), hooks=Hooks(handle=sequence(first, second)))

        async with TestClient(app) as client:
            response = await client.get("/blog/42")

        assert response.header("x-trail") == "first,second"

    async def test_redirect_raised_in_handle(self, make_app) -> None:
        async def handle(event, resolve):
            event.cookies.set("next", event.url.path, path="/")
            raise redirect(303, "/login")

        app = make_app(ROUTES, _nodes(), hooks=Hooks(handle=handle))

        async with TestClient(app) as client:
            response = await client.get("/blog/42")

        assert response.status == 303
        assert response.header("location") == "/login"
        assert response.header("set-cookie").startswith("next=%2Fblog%2F42; Path=/;")

    async def test_handle_redirect_during_data_request(self, make_app) -> None:
        async def handle(event, resolve):
            return Response(b"", status=302, content_type=None, headers=(("location", "/login"),))

        app = make_app(ROUTES, _nodes(), hooks=Hooks(handle=handle))

        async with TestClient(app) as client:
            response = await client.get("/blog/42/__data.json")

        assert response.status == 200
        assert response.json() == {"type": "redirect", "location": "/login"}


class TestRelativePaths:
    async def test_page_inside_base(self, make_app) -> None:
        config = AppConfig(paths=PathsConfig(base="/docs"))
        app = make_app(ROUTES, _nodes(), config=config)

        async with TestClient(app) as client:
            response = await client.get("/docs/blog/42")

        assert 'import("../_app/immutable/start.js")' in response.text
        assert 'base: new URL("..", location).pathname.slice(0, -1)' in response.text

    async def test_base_itself_without_trailing_slash(self, make_app) -> None:
        config = AppConfig(paths=PathsConfig(base="/docs"))
        app = make_app(ROUTES, _nodes(), config=config)

        async with TestClient(app) as client:
            response = await client.get("/docs")

        # no route at the base, so the root error page renders at /docs
        assert response.status == 404
        assert 'import("./docs/_app/immutable/start.js")' in response.text
        assert 'base: new URL("./docs/", location).pathname.slice(0, -1)' in response.text
