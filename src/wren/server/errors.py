"""Error responses for the request pipeline.

Expected failures (``HttpError``) keep their status and public body.
Anything else is reported to the ``handle_error`` hook, which decides what
the client may see; by default that is a generic message and nothing of
the exception leaks out.
"""

import logging
from typing import Any

from wren._internal.invoke import invoke
from wren.errors import HttpError
from wren.http.response import AnyResponse, Response, json_response, text_response
from wren.serialization.devalue import DevalueError
from wren.server.event import RequestEvent
from wren.server.negotiation import negotiate
from wren.server.state import ServerOptions
from wren.templating.shell import render_error_page

logger = logging.getLogger("wren.server")


def get_status(error: BaseException) -> int:
    return error.status if isinstance(error, HttpError) else 500


async def handle_error_and_jsonify(
    event: RequestEvent,
    options: ServerOptions,
    error: BaseException,
) -> dict[str, Any]:
    """The public, JSON-able body describing *error*."""
    if isinstance(error, HttpError):
        return error.body
    try:
        body = await invoke(options.hooks.handle_error, error, event)
    except Exception:
        logger.exception("handle_error hook failed")
        body = None
    if body is None:
        body = {"message": "Internal Error" if event.route.id is not None else "Not Found"}
    return body


def static_error_page(options: ServerOptions, status: int, message: str) -> Response:
    """The standalone error document, used when rendering an error page failed."""
    html = render_error_page(options.templates, status=status, message=message)
    return Response(html, status=status)


async def handle_fatal_error(
    event: RequestEvent,
    options: ServerOptions,
    error: BaseException,
) -> AnyResponse:
    """Answer with a bare error, as JSON or HTML depending on the client."""
    status = get_status(error)
    body = await handle_error_and_jsonify(event, options, error)
    accepted = negotiate(
        event.request.headers.get("accept") or "text/html",
        ["application/json", "text/html"],
    )
    if event.is_data_request or accepted == "application/json":
        return json_response(body, status=status)
    return static_error_page(options, status, str(body.get("message", "")))


def redirect_response(status: int, location: str) -> Response:
    return Response(b"", status=status, content_type=None, headers=(("location", location),))


def clarify_devalue_error(route_id: str | None, error: DevalueError) -> str:
    """Re-word an encoding failure so it names the route and the offending key."""
    if error.path:
        return (
            f"Data returned from `load` while rendering {route_id} is not serializable: "
            f"{error} (data{error.path})"
        )
    return f"Data returned from `load` while rendering {route_id} is not a plain object"


def method_not_allowed(allowed: list[str], method: str) -> Response:
    return text_response(
        f"{method} method not allowed",
        status=405,
        headers={"allow": ", ".join(allowed)},
    )
