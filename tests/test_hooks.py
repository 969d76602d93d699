"""Tests for wren.hooks: composing handle functions with sequence()."""

from typing import Any

from wren.hooks import ResolveOptions, sequence
from wren.http.response import Response

EVENT: Any = object()


class _Final:
    """Stands in for the pipeline's resolve and records the options it gets."""

    def __init__(self) -> None:
        self.options: dict[str, Any] = {}

    async def __call__(self, event: Any, **options: Any) -> Response:
        self.options = options
        return Response("done")


class TestSequence:
    async def test_empty_sequence_resolves(self) -> None:
        final = _Final()
        response = await sequence()(EVENT, final)
        assert response.text == "done"

    async def test_first_handler_runs_outermost(self) -> None:
        calls: list[str] = []

        def tracer(name: str):
            async def handle(event: Any, resolve: Any) -> Response:
                calls.append(f"{name}:before")
                response = await resolve(event)
                calls.append(f"{name}:after")
                return response

            return handle

        await sequence(tracer("a"), tracer("b"))(EVENT, _Final())
        assert calls == ["a:before", "b:before", "b:after", "a:after"]

    async def test_page_chunk_transforms_run_innermost_first(self) -> None:
        async def outer(event: Any, resolve: Any) -> Response:
            return await resolve(event, transform_page_chunk=lambda html, done: html + "A")

        async def inner(event: Any, resolve: Any) -> Response:
            async def transform(html: str, done: bool) -> str:
                return html + "B"

            return await resolve(event, transform_page_chunk=transform)

        final = _Final()
        await sequence(outer, inner)(EVENT, final)
        transform = final.options["transform_page_chunk"]
        assert await transform("x", True) == "xBA"

    async def test_outermost_filter_wins(self) -> None:
        def keep_all(name: str, value: str) -> bool:
            return True

        def keep_none(name: str, value: str) -> bool:
            return False

        async def outer(event: Any, resolve: Any) -> Response:
            return await resolve(event, filter_serialized_response_headers=keep_all)

        async def inner(event: Any, resolve: Any) -> Response:
            return await resolve(
                event, filter_serialized_response_headers=keep_none, preload=keep_none
            )

        final = _Final()
        await sequence(outer, inner)(EVENT, final)
        assert final.options["filter_serialized_response_headers"] is keep_all
        assert final.options["preload"] is keep_none

    async def test_handler_can_short_circuit(self) -> None:
        async def deny(event: Any, resolve: Any) -> Response:
            return Response("denied", status=403)

        final = _Final()
        response = await sequence(deny)(EVENT, final)
        assert response.status == 403
        assert final.options == {}


class TestResolveOptions:
    async def test_no_transform(self) -> None:
        assert await ResolveOptions().transform("<p>", False) == "<p>"

    async def test_transform_returning_none_drops_chunk(self) -> None:
        options = ResolveOptions(transform_page_chunk=lambda html, done: None)
        assert await options.transform("<p>", True) == ""

    def test_default_preload_covers_scripts_and_styles(self) -> None:
        options = ResolveOptions()
        assert options.preload("app.js", "js")
        assert options.preload("app.css", "css")
        assert not options.preload("font.woff2", "font")
        assert not options.filter_serialized_response_headers("x-anything", "1")
