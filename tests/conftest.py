"""Shared fixtures: a tiny renderer and an app factory over in-memory nodes."""

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from wren.app import App
from wren.config import AppConfig
from wren.hooks import Hooks
from wren.manifest import ClientManifest, Manifest, StaticAsset
from wren.pages.types import Node, Rendered
from wren.routing.route import Route

CLIENT = ClientManifest(start="_app/immutable/start.js", app="_app/immutable/app.js")


def render(props: dict[str, Any]) -> Rendered:
    """Components are plain names; the page shows the merged data it was given."""
    page = props["page"]
    html = "".join(f'<section id="{name}">' for name in props["constructors"])
    if page["error"]:
        html += f'<p id="error">{page["error"]["message"]}</p>'
    if props["form"] is not None:
        html += f'<p id="form">{props["form"]}</p>'
    title = page["data"].get("title")
    if title is not None:
        html += f"<h1>{title}</h1>"
    html += "</section>" * len(props["constructors"])
    return Rendered(html=html, head="<title>test</title>")


@pytest.fixture
def make_app() -> Callable[..., App]:
    """Build an App from routes and nodes; node *i* must have ``index == i``."""

    def factory(
        routes: Sequence[Route],
        nodes: Sequence[Node],
        *,
        config: AppConfig | None = None,
        hooks: Hooks | None = None,
        assets: dict[str, StaticAsset] | None = None,
        static_dir: str | None = None,
    ) -> App:
        manifest = Manifest(
            routes=routes,
            nodes=[(lambda n=n: n) for n in nodes],
            client=CLIENT,
            assets=assets,
        )
        return App(manifest, config, hooks, root=render, static_dir=static_dir)

    return factory
