"""In-process client that drives a wren ``App`` over ASGI.

Requests go through ``App.__call__`` exactly as a server would send them,
so hooks, sealing and the sender are all exercised. Whatever the app
streams is collected into one buffered ``Response``.
"""

from __future__ import annotations

import json as json_module
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from wren.app import App
from wren.http.response import Response

HOST = "testserver"
ORIGIN = f"http://{HOST}"


def _scope(method: str, target: str, headers: list[tuple[bytes, bytes]]) -> dict[str, Any]:
    path, _, query = target.partition("?")
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method.upper(),
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": query.encode("latin-1"),
        "root_path": "",
        "headers": headers,
        "server": (HOST, 80),
        "client": ("127.0.0.1", 0),
    }


class _Recorder:
    """The ``send`` side of one exchange."""

    __slots__ = ("chunks", "headers", "status")

    def __init__(self) -> None:
        self.status = 500
        self.headers: list[tuple[str, str]] = []
        self.chunks: list[bytes] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.headers = [
                (name.decode("latin-1"), value.decode("latin-1"))
                for name, value in message.get("headers", ())
            ]
        elif message["type"] == "http.response.body":
            self.chunks.append(message.get("body", b""))

    def response(self) -> Response:
        content_type = None
        rest: list[tuple[str, str]] = []
        for name, value in self.headers:
            if name == "content-type":
                content_type = value
            elif name != "content-length":
                rest.append((name, value))
        return Response(
            body=b"".join(self.chunks),
            status=self.status,
            content_type=content_type,
            headers=tuple(rest),
        )


class TestClient:
    """Async test client for wren applications.

    Entering the context calls ``App.init`` with *env*, so tests control
    the environment snapshot instead of inheriting ``os.environ``.

    Usage::

        async with TestClient(app) as client:
            response = await client.get("/blog/42")
            assert response.status == 200
    """

    __test__ = False  # not a test class
    __slots__ = ("app", "env")

    def __init__(self, app: App, env: Mapping[str, str] | None = None) -> None:
        self.app = app
        self.env = dict(env or {})

    async def __aenter__(self) -> TestClient:
        self.app.init(self.env)
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    async def get(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        return await self.request("GET", path, headers=headers)

    async def head(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        return await self.request("HEAD", path, headers=headers)

    async def delete(self, path: str, *, headers: dict[str, str] | None = None) -> Response:
        return await self.request("DELETE", path, headers=headers)

    async def put(
        self, path: str, *, headers: dict[str, str] | None = None, body: bytes | None = None
    ) -> Response:
        return await self.request("PUT", path, headers=headers, body=body)

    async def post(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        json: object | None = None,
        form: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a POST.

        ``form`` is URL-encoded and sent with a same-origin ``Origin``
        header, as a browser would submit it; ``json`` is sent as
        ``application/json``. Explicit *headers* win over both.
        """
        implied: dict[str, str] = {}
        if json is not None:
            body = json_module.dumps(json).encode("utf-8")
            implied["content-type"] = "application/json"
        elif form is not None:
            body = urlencode(form).encode("utf-8")
            implied["content-type"] = "application/x-www-form-urlencoded"
            implied["origin"] = ORIGIN
        for name, value in (headers or {}).items():
            implied[name.lower()] = value
        return await self.request("POST", path, headers=implied, body=body)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Send *method* to *path* (which may carry a query string)."""
        payload = body or b""
        raw = [(b"host", HOST.encode("latin-1"))]
        raw.extend(
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        )
        if payload:
            raw.append((b"content-length", str(len(payload)).encode("latin-1")))

        delivered = False

        async def receive() -> dict[str, Any]:
            nonlocal delivered
            if delivered:
                return {"type": "http.disconnect"}
            delivered = True
            return {"type": "http.request", "body": payload, "more_body": False}

        recorder = _Recorder()
        await self.app(_scope(method, path, raw), receive, recorder)
        return recorder.response()
