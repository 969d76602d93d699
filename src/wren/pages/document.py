"""Assembling the HTML document for a page.

The renderer produces head and body markup for the branch; this module
wraps it with everything the client runtime needs: stylesheet and
modulepreload links, inlined styles, replayed ``fetch`` responses, and the
bootstrap script that hydrates the page from the serialized load data.
Pending load values are streamed after the document as ``<script>`` tags
that resolve their placeholders.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from wren._internal.hashing import etag_for
from wren._internal.invoke import invoke
from wren.errors import ConfigurationError, WrenError
from wren.http.response import AnyResponse, Response, StreamingResponse
from wren.pages.actions import ActionResult, uneval_action_response
from wren.pages.fetched import Fetched, serialize_data
from wren.pages.types import Loaded, Rendered, ServerData
from wren.security.csp import ContentSecurityPolicy
from wren.serialization.devalue import DevalueError, uneval
from wren.serialization.stream import DeferredChunks, Outcome
from wren.server.errors import clarify_devalue_error, handle_error_and_jsonify
from wren.templating.shell import render_app_shell

if TYPE_CHECKING:
    from wren.hooks import ResolveOptions
    from wren.manifest import ClientManifest, Manifest
    from wren.server.event import RequestEvent
    from wren.server.state import RequestState, ServerOptions

# assets served by the dev/preview host under this prefix are never made relative
SVELTE_KIT_ASSETS = "/_svelte_kit_assets"


@dataclass(frozen=True, slots=True)
class PageConfig:
    ssr: bool
    csr: bool


def _js(value: Any) -> str:
    """A JSON literal that is safe inside a ``<script>`` element."""
    return json.dumps(value, ensure_ascii=False).replace("<", "\\u003C")


def _encode_uri(path: str) -> str:
    return quote(path, safe="-_.!~*'();/?:@&=+$,#")


def _uses_json(node: ServerData) -> str:
    return json.dumps(node.uses.to_json(), separators=(",", ":"))


def get_data(
    event: RequestEvent,
    options: ServerOptions,
    nodes: Sequence[ServerData | None],
    global_name: str,
) -> tuple[str, DeferredChunks | None]:
    """Server data of the branch as a JavaScript expression for hydration.

    Awaitables become ``{global}.defer(id)`` calls; the returned registry
    yields one ``{global}.resolve(...)`` script per settled value.
    """

    def replacer(thing: Any) -> str | None:
        if inspect.isawaitable(thing):
            return f"{global_name}.defer({deferred.defer(event.awaitables.share(thing))})"
        return None

    async def format_chunk(placeholder: int, outcome: Outcome, value: Any) -> str:
        if outcome == "error":
            value = await handle_error_and_jsonify(event, options, value)
        try:
            encoded = uneval({"id": placeholder, outcome: value}, replacer)
        except DevalueError:
            failure = WrenError(f"Failed to serialize promise while rendering {event.route.id}")
            error = await handle_error_and_jsonify(event, options, failure)
            encoded = uneval({"id": placeholder, "error": error}, replacer)
        return f"<script>{global_name}.resolve({encoded})</script>\n"

    deferred = DeferredChunks(format_chunk)

    strings = []
    try:
        for node in nodes:
            if node is None:
                strings.append("null")
                continue
            slash = f',"slash":{json.dumps(node.slash)}' if node.slash else ""
            strings.append(
                f'{{"type":"data","data":{uneval(node.data, replacer)},'
                f'"uses":{_uses_json(node)}{slash}}}'
            )
    except DevalueError as exc:
        raise WrenError(clarify_devalue_error(event.route.id, exc)) from exc

    return f"[{','.join(strings)}]", deferred if deferred.pending else None


def _relative_paths(event: RequestEvent, options: ServerOptions, state: RequestState) -> tuple[str, str, str]:
    """``(base, assets, base_expression)`` as seen from the current page."""
    paths = options.config.paths
    base = paths.base
    assets = paths.assets
    base_expression = _js(paths.base)

    if state.prerendering is None or not state.prerendering.fallback:
        segments = event.url.path[len(paths.base) :].split("/")[2:]
        if paths.base and event.url.path == paths.base:
            # "." from /base would resolve to the parent of the base
            base = "./" + paths.base.rpartition("/")[2]
            directory = base + "/"
            base_expression = f"new URL({_js(directory)}, location).pathname.slice(0, -1)"
        else:
            base = "/".join(".." for _ in segments) or "."
            base_expression = f"new URL({_js(base)}, location).pathname.slice(0, -1)"
        if not assets or (assets.startswith("/") and assets != SVELTE_KIT_ASSETS):
            assets = base

    return base, assets, base_expression


async def _render_branch(
    event: RequestEvent,
    options: ServerOptions,
    branch: Sequence[Loaded],
    status: int,
    error: dict[str, Any] | None,
    form: Any,
) -> Rendered:
    props: dict[str, Any] = {
        "constructors": [loaded.node.component for loaded in branch],
        "form": form,
    }
    data: dict[str, Any] = {}
    for i, loaded in enumerate(branch):
        data = {**data, **(loaded.data or {})}
        props[f"data_{i}"] = data
    props["page"] = {
        "error": error,
        "params": dict(event.params),
        "route": {"id": event.route.id},
        "status": status,
        "url": event.url,
        "data": data,
        "form": form,
    }
    if options.root is None:
        return Rendered(html="")
    return await invoke(options.root, props)


async def render_response(
    *,
    event: RequestEvent,
    options: ServerOptions,
    manifest: Manifest,
    state: RequestState,
    resolve_opts: ResolveOptions,
    page_config: PageConfig,
    branch: Sequence[Loaded],
    fetched: Sequence[Fetched],
    status: int,
    error: dict[str, Any] | None = None,
    action_result: ActionResult | None = None,
) -> AnyResponse:
    """Render *branch* into the document response."""
    config = options.config
    if state.prerendering is not None and config.csp.mode == "nonce":
        msg = 'Cannot use prerendering if csp mode is "nonce"'
        raise ConfigurationError(msg)

    client = manifest.client
    modulepreloads = dict.fromkeys(client.imports)
    stylesheets = dict.fromkeys(client.stylesheets)
    fonts = dict.fromkeys(client.fonts)
    link_header_preloads: dict[str, None] = {}
    inline_styles: dict[str, str] = {}

    form_value = None
    if action_result is not None and action_result.type in ("success", "failure"):
        form_value = action_result.data

    _, assets, base_expression = _relative_paths(event, options, state)

    if page_config.ssr:
        rendered = await _render_branch(event, options, branch, status, error, form_value)
        for loaded in branch:
            node = loaded.node
            modulepreloads.update(dict.fromkeys(node.imports))
            stylesheets.update(dict.fromkeys(node.stylesheets))
            fonts.update(dict.fromkeys(node.fonts))
            if node.inline_styles is not None:
                inline_styles.update(await invoke(node.inline_styles))
    else:
        rendered = Rendered(html="")

    head = ""
    body = rendered.html
    csp = ContentSecurityPolicy(config.csp, prerender=state.prerendering is not None)

    def prefixed(path: str) -> str:
        if path.startswith("/"):
            return config.paths.base + path
        return f"{assets}/{path}"

    if inline_styles:
        content = "\n".join(inline_styles.values())
        nonce = f' nonce="{csp.nonce}"' if csp.style_needs_nonce else ""
        csp.add_style(content)
        head += f"\n\t<style{nonce}>{content}</style>"

    for dep in stylesheets:
        path = prefixed(dep)
        attributes = ['rel="stylesheet"']
        if dep in inline_styles:
            # kept in a disabled state so the bundler still sees it
            attributes.extend(["disabled", 'media="(max-width: 0)"'])
        elif resolve_opts.preload(path, "css"):
            link_header_preloads[f'<{_encode_uri(path)}>; rel="preload"; as="style"; nopush'] = None
        head += f'\n\t\t<link href="{path}" {" ".join(attributes)}>'

    for dep in fonts:
        path = prefixed(dep)
        if resolve_opts.preload(path, "font"):
            ext = dep.rpartition(".")[2]
            head += f'\n\t\t<link rel="preload" as="font" type="font/{ext}" href="{path}" crossorigin>'

    global_name = options.global_name
    data, deferred = get_data(event, options, [loaded.server_data for loaded in branch], global_name)

    if page_config.ssr and page_config.csr:
        header_filter = resolve_opts.filter_serialized_response_headers
        prerendering = state.prerendering is not None
        scripts = [serialize_data(item, header_filter, prerendering) for item in fetched]
        body += "\n\t\t\t" + "\n\t\t\t".join(scripts)

    if page_config.csr:
        for dep in modulepreloads:
            path = prefixed(dep)
            if not resolve_opts.preload(path, "js"):
                continue
            link_header_preloads[f'<{_encode_uri(path)}>; rel="modulepreload"; nopush'] = None
            head += f'\n\t\t<link rel="preload" as="script" crossorigin="anonymous" href="{path}">'

        init_app = _bootstrap_script(
            event,
            options,
            branch=branch,
            data=data,
            deferred=deferred is not None,
            page_config=page_config,
            status=status,
            error=error,
            form_value=form_value,
            base_expression=base_expression,
            client=client,
            prefixed=prefixed,
        )
        csp.add_script(init_app)
        nonce = f' nonce="{csp.nonce}"' if csp.script_needs_nonce else ""
        body += f"\n\t\t\t<script{nonce}>{init_app}</script>\n\t\t"

    headers: list[tuple[str, str]] = [("x-sveltekit-page", "true")]

    if state.prerendering is not None:
        http_equiv = []
        meta = csp.meta()
        if meta:
            http_equiv.append(meta)
        if state.prerendering.cache:
            http_equiv.append(f'<meta http-equiv="cache-control" content="{state.prerendering.cache}">')
        if http_equiv:
            head = "\n".join(http_equiv) + head
    else:
        csp_header = csp.header()
        if csp_header:
            headers.append(("content-security-policy", csp_header))
        report_only = csp.report_only_header()
        if report_only:
            headers.append(("content-security-policy-report-only", report_only))
        if link_header_preloads:
            headers.append(("link", ", ".join(link_header_preloads)))

    # after the links so they are parsed first
    head += rendered.head

    html = render_app_shell(
        options.templates,
        head=head,
        body=body,
        assets=assets,
        nonce=csp.nonce,
        public_env=options.env.public,
    )

    if deferred is None:
        transformed = await resolve_opts.transform(html, True)
        headers.append(("etag", etag_for(transformed.encode("utf-8"))))
        return Response(transformed, status=status, headers=tuple(headers))

    async def stream() -> AsyncIterator[str]:
        yield await resolve_opts.transform(html + "\n", False)
        async for chunk in deferred.chunks():
            yield await resolve_opts.transform(chunk, False)
        tail = await resolve_opts.transform("", True)
        if tail:
            yield tail

    return StreamingResponse(stream(), status=status, headers=tuple(headers), producer=deferred.run)


def _bootstrap_script(
    event: RequestEvent,
    options: ServerOptions,
    *,
    branch: Sequence[Loaded],
    data: str,
    deferred: bool,
    page_config: PageConfig,
    status: int,
    error: dict[str, Any] | None,
    form_value: Any,
    base_expression: str,
    client: ClientManifest,
    prefixed: Callable[[str], str],
) -> str:
    """The inline script that starts the client runtime and hydrates the page."""
    config = options.config
    client_start = prefixed(client.start)
    client_app = prefixed(client.app)

    properties = []
    if config.paths.assets:
        properties.append(f"assets: {_js(config.paths.assets)}")
    properties.append(f"base: {base_expression}")
    properties.append(f"env: {_js(dict(options.env.public))}")

    blocks = []
    if deferred:
        blocks.append("const deferred = new Map();")
        properties.append(
            "defer: (id) => new Promise((fulfil, reject) => {\n"
            "\t\t\t\t\t\t\tdeferred.set(id, { fulfil, reject });\n"
            "\t\t\t\t\t\t})"
        )
        properties.append(
            "resolve: ({ id, data, error }) => {\n"
            "\t\t\t\t\t\t\tconst { fulfil, reject } = deferred.get(id);\n"
            "\t\t\t\t\t\t\tdeferred.delete(id);\n\n"
            "\t\t\t\t\t\t\tif (error) reject(error);\n"
            "\t\t\t\t\t\t\telse fulfil(data);\n"
            "\t\t\t\t\t\t}"
        )

    joined = ",\n\t\t\t\t\t\t".join(properties)
    blocks.append(f"{options.global_name} = {{\n\t\t\t\t\t\t{joined}\n\t\t\t\t\t}};")
    blocks.append("const element = document.currentScript.parentElement;")

    args = ["app", "element"]
    if page_config.ssr:
        blocks.append(f"const data = {data};")
        form = "null"
        if form_value is not None:
            form = uneval_action_response(form_value, event.route.id)
        hydrate = [
            f"node_ids: [{', '.join(str(loaded.node.index) for loaded in branch)}]",
            "data",
            f"form: {form}",
            f"error: {uneval(error) if error else 'null'}",
        ]
        if status != 200:
            hydrate.append(f"status: {status}")
        if config.embedded:
            hydrate.append(f"params: {uneval(dict(event.params))}")
            hydrate.append(f"route: {_js({'id': event.route.id})}")
        args.append("{\n\t\t\t\t\t\t\t" + ",\n\t\t\t\t\t\t\t".join(hydrate) + "\n\t\t\t\t\t\t}")

    blocks.append(
        "Promise.all([\n"
        f"\t\t\t\t\t\timport({_js(client_start)}),\n"
        f"\t\t\t\t\t\timport({_js(client_app)})\n"
        "\t\t\t\t\t]).then(([kit, app]) => {\n"
        f"\t\t\t\t\t\tkit.start({', '.join(args)});\n"
        "\t\t\t\t\t});"
    )

    if config.service_worker:
        blocks.append(
            "if ('serviceWorker' in navigator) {\n"
            "\t\t\t\t\t\taddEventListener('load', function () {\n"
            f"\t\t\t\t\t\t\tnavigator.serviceWorker.register({_js(prefixed('service-worker.js'))});\n"
            "\t\t\t\t\t\t});\n"
            "\t\t\t\t\t}"
        )

    return "\n\t\t\t\t{\n\t\t\t\t\t" + "\n\n\t\t\t\t\t".join(blocks) + "\n\t\t\t\t}\n\t\t\t"
