"""Form actions, as plain posts and as progressively-enhanced JSON posts."""

import logging

import pytest

from wren.errors import error, fail, redirect
from wren.pages.types import Node, ServerNode
from wren.routing.route import PageNodes, Route
from wren.testing import TestClient

HTML = {"accept": "text/html"}
JSON = {"accept": "application/json"}


def _app(make_app, actions=None, load=None):
    leaf = Node(2, server=ServerNode(load=load, actions=actions), component="page")
    routes = [Route.from_id("/form", page=PageNodes((0,), (1,), 2))]
    return make_app(routes, [Node(0, component="layout"), Node(1, component="error"), leaf])


async def subscribe(event):
    form = await event.request.form()
    if "@" not in (form.get("email") or ""):
        return fail(422, {"reason": "invalid"})
    return {"subscribed": form["email"]}


class TestFormPost:
    async def test_failure_sets_status_and_form(self, make_app) -> None:
        app = _app(make_app, {"subscribe": subscribe}, load=lambda event: {"title": "Form"})

        async with TestClient(app) as client:
            response = await client.post("/form?/subscribe", form={"email": "nope"}, headers=HTML)

        assert response.status == 422
        assert "<p id=\"form\">{'reason': 'invalid'}</p>" in response.text
        assert "<h1>Form</h1>" in response.text
        assert 'form: {reason:"invalid"}' in response.text
        assert "status: 422" in response.text

    async def test_success_renders_page_with_form(self, make_app) -> None:
        app = _app(make_app, {"subscribe": subscribe})

        async with TestClient(app) as client:
            response = await client.post("/form?/subscribe", form={"email": "a@b.c"}, headers=HTML)

        assert response.status == 200
        assert 'form: {subscribed:"a@b.c"}' in response.text

    async def test_redirect(self, make_app) -> None:
        def save(event):
            event.cookies.set("flash", "saved", path="/")
            raise redirect(303, "/done")

        app = _app(make_app, {"default": save})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=HTML)

        assert response.status == 303
        assert response.header("location") == "/done"
        assert response.header("set-cookie").startswith("flash=saved; Path=/;")

    async def test_error_renders_error_page(self, make_app) -> None:
        def reject(event):
            raise error(400, "Bad input")

        app = _app(make_app, {"default": reject})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=HTML)

        assert response.status == 400
        assert '<section id="error"><p id="error">Bad input</p>' in response.text

    async def test_page_without_actions(self, make_app) -> None:
        app = _app(make_app)

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=HTML)

        assert response.status == 405
        assert response.header("allow") == "GET"
        assert "No actions exist for this page" in response.text


class TestEnhancedPost:
    async def test_failure_envelope(self, make_app) -> None:
        app = _app(make_app, {"subscribe": subscribe})

        async with TestClient(app) as client:
            response = await client.post("/form?/subscribe", form={"email": "nope"}, headers=JSON)

        assert response.status == 200
        assert response.json() == {
            "type": "failure",
            "status": 422,
            "data": '[{"reason":1},"invalid"]',
        }

    async def test_success_envelope(self, make_app) -> None:
        app = _app(make_app, {"subscribe": subscribe})

        async with TestClient(app) as client:
            response = await client.post("/form?/subscribe", form={"email": "a@b.c"}, headers=JSON)

        assert response.json() == {
            "type": "success",
            "status": 200,
            "data": '[{"subscribed":1},"a@b.c"]',
        }

    async def test_success_without_data(self, make_app) -> None:
        app = _app(make_app, {"default": lambda event: None})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.json() == {"type": "success", "status": 204, "data": "[null]"}

    async def test_redirect_envelope(self, make_app) -> None:
        def save(event):
            raise redirect(303, "/done")

        app = _app(make_app, {"default": save})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.status == 200
        assert response.json() == {"type": "redirect", "status": 303, "location": "/done"}

    async def test_error_envelope(self, make_app) -> None:
        def reject(event):
            raise error(400, "Bad input")

        app = _app(make_app, {"default": reject})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.status == 400
        assert response.json() == {"type": "error", "error": {"message": "Bad input"}}

    async def test_no_actions(self, make_app) -> None:
        app = _app(make_app)

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.status == 405
        assert response.header("allow") == "GET"
        assert response.json()["error"]["message"].startswith("POST method not allowed")

    async def test_raising_fail_is_a_mistake(self, make_app, caplog: pytest.LogCaptureFixture) -> None:
        def wrong(event):
            raise fail(422)

        app = _app(make_app, {"default": wrong})

        with caplog.at_level(logging.ERROR, logger="wren.server"):
            async with TestClient(app) as client:
                response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.status == 500
        assert response.json() == {"type": "error", "error": {"message": "Internal Error"}}
        assert 'Use "return fail()"' in caplog.text

    async def test_unknown_action(self, make_app, caplog: pytest.LogCaptureFixture) -> None:
        app = _app(make_app, {"subscribe": subscribe})

        with caplog.at_level(logging.ERROR, logger="wren.server"):
            async with TestClient(app) as client:
                response = await client.post("/form?/unsubscribe", form={"a": "1"}, headers=JSON)

        assert response.status == 500
        assert "No action with name 'unsubscribe' found" in caplog.text

    async def test_reserved_default_name(self, make_app, caplog: pytest.LogCaptureFixture) -> None:
        app = _app(make_app, {"subscribe": subscribe})

        with caplog.at_level(logging.ERROR, logger="wren.server"):
            async with TestClient(app) as client:
                response = await client.post("/form?/default", form={"a": "1"}, headers=JSON)

        assert response.status == 500
        assert 'reserved action name "default"' in caplog.text

    async def test_default_and_named_actions_cannot_mix(self, make_app) -> None:
        app = _app(make_app, {"default": subscribe, "other": subscribe})

        async with TestClient(app) as client:
            response = await client.post("/form", form={"a": "1"}, headers=JSON)

        assert response.status == 500
        assert response.json() == {"message": "Internal Error"}

    async def test_json_body_is_rejected(self, make_app, caplog: pytest.LogCaptureFixture) -> None:
        app = _app(make_app, {"default": subscribe})

        with caplog.at_level(logging.ERROR, logger="wren.server"):
            async with TestClient(app) as client:
                response = await client.post("/form", json={"a": 1}, headers=JSON)

        assert response.status == 500
        assert "Actions expect form-encoded data" in caplog.text
