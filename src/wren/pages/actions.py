"""Form actions: ``POST`` submissions handled by a page's server node.

A browser form posts to ``/todos?/create``; the first query key starting
with ``/`` names the action, otherwise ``"default"`` runs. Progressive
enhancement on the client posts the same form with ``accept:
application/json`` and gets a JSON envelope back instead of a document.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from wren._internal.invoke import invoke
from wren.errors import ActionFailure, ConfigurationError, HttpError, Redirect, error
from wren.http.response import Response, json_response
from wren.pages.types import ActionFunction, ServerNode
from wren.serialization.devalue import DevalueError, stringify, uneval
from wren.server.errors import handle_error_and_jsonify
from wren.server.negotiation import is_form_content_type, negotiate

if TYPE_CHECKING:
    from wren.server.event import RequestEvent
    from wren.server.state import ServerOptions

logger = logging.getLogger("wren.actions")


@dataclass(frozen=True, slots=True)
class ActionSuccess:
    status: int
    data: Any = None
    type: Literal["success"] = "success"


@dataclass(frozen=True, slots=True)
class ActionFailed:
    """An action returned ``fail(status, data)``."""

    status: int
    data: Any = None
    type: Literal["failure"] = "failure"


@dataclass(frozen=True, slots=True)
class ActionRedirect:
    status: int
    location: str
    type: Literal["redirect"] = "redirect"


@dataclass(frozen=True, slots=True)
class ActionError:
    """The action raised; ``error`` is the exception, not yet made public."""

    error: BaseException
    type: Literal["error"] = "error"

    @property
    def status(self) -> int:
        return self.error.status if isinstance(self.error, HttpError) else 500


type ActionResult = ActionSuccess | ActionFailed | ActionRedirect | ActionError

_NO_ACTIONS = "POST method not allowed. No actions exist for this page"


def is_action_json_request(event: RequestEvent) -> bool:
    """A progressively-enhanced submission that expects a JSON envelope."""
    accepted = negotiate(
        event.request.headers.get("accept") or "*/*",
        ["application/json", "text/html"],
    )
    return accepted == "application/json" and event.request.method == "POST"


def is_action_request(event: RequestEvent) -> bool:
    return event.request.method == "POST"


def check_named_default_separate(actions: Mapping[str, ActionFunction]) -> None:
    if "default" in actions and len(actions) > 1:
        msg = "When using named actions, the default action cannot be used"
        raise ConfigurationError(msg)


def check_incorrect_fail_use(exc: BaseException) -> BaseException:
    """Replace a raised ``ActionFailure`` with an error explaining the mistake."""
    if isinstance(exc, ActionFailure):
        return ConfigurationError('Cannot "raise fail()". Use "return fail()"')
    return exc


def validate_action_return(data: Any) -> None:
    if isinstance(data, Redirect):
        msg = "Cannot `return redirect(...)`. Use `raise redirect(...)` instead"
        raise ConfigurationError(msg)
    if isinstance(data, HttpError):
        msg = "Cannot `return error(...)`. Use `raise error(...)` or `return fail(...)` instead"
        raise ConfigurationError(msg)


def action_name(event: RequestEvent) -> str:
    """The action named by the first ``/``-prefixed query key, else ``"default"``."""
    for key in event.request.url.query_params:
        if key.startswith("/"):
            name = key[1:]
            if name == "default":
                msg = 'Cannot use reserved action name "default"'
                raise ConfigurationError(msg)
            return name
    return "default"


async def call_action(event: RequestEvent, actions: Mapping[str, ActionFunction]) -> Any:
    """Run the selected action and return whatever it returned."""
    name = action_name(event)
    action = actions.get(name)
    if action is None:
        msg = f"No action with name '{name}' found"
        raise ConfigurationError(msg)

    if not is_form_content_type(event.request):
        received = event.request.headers.get("content-type")
        msg = f"Actions expect form-encoded data (received {received})"
        raise ConfigurationError(msg)

    logger.debug("Running action %r for %s", name, event.route.id)
    data = await invoke(action, event)
    validate_action_return(data)
    return data


def try_serialize(data: Any, serialize: Callable[[Any], str], route_id: str | None) -> str:
    """Encode action data, naming the route and key path when that fails."""
    try:
        return serialize(data)
    except DevalueError as exc:
        message = f"Data returned from action inside {route_id} is not serializable: {exc}"
        if exc.path:
            message += f" (data{exc.path})"
        raise ConfigurationError(message) from exc


def stringify_action_response(data: Any, route_id: str | None) -> str:
    return try_serialize(data, stringify, route_id)


def uneval_action_response(data: Any, route_id: str | None) -> str:
    return try_serialize(data, uneval, route_id)


async def handle_action_json_request(
    event: RequestEvent,
    options: ServerOptions,
    server: ServerNode | None,
) -> Response:
    """Run the action and answer with a JSON envelope, whatever the outcome."""
    actions = server.actions if server is not None else None

    if not actions:
        no_actions = error(405, _NO_ACTIONS)
        return json_response(
            {"type": "error", "error": await handle_error_and_jsonify(event, options, no_actions)},
            status=no_actions.status,
            headers={"allow": "GET"},
        )

    check_named_default_separate(actions)

    try:
        data = await call_action(event, actions)
    except Redirect as exc:
        return json_response({"type": "redirect", "status": exc.status, "location": exc.location})
    except Exception as exc:
        err = check_incorrect_fail_use(exc)
        return json_response(
            {"type": "error", "error": await handle_error_and_jsonify(event, options, err)},
            status=err.status if isinstance(err, HttpError) else 500,
        )

    route_id = event.route.id
    if isinstance(data, ActionFailure):
        return json_response(
            {
                "type": "failure",
                "status": data.status,
                "data": stringify_action_response(data.data, route_id),
            }
        )
    return json_response(
        {
            "type": "success",
            "status": 200 if data is not None else 204,
            "data": stringify_action_response(data, route_id),
        }
    )


async def handle_action_request(event: RequestEvent, server: ServerNode | None) -> ActionResult:
    """Run the action for a plain form post; the page is rendered afterwards."""
    actions = server.actions if server is not None else None

    if not actions:
        event.set_headers({"allow": "GET"})
        return ActionError(error(405, _NO_ACTIONS))

    check_named_default_separate(actions)

    try:
        data = await call_action(event, actions)
    except Redirect as exc:
        return ActionRedirect(exc.status, exc.location)
    except Exception as exc:
        return ActionError(check_incorrect_fail_use(exc))

    if isinstance(data, ActionFailure):
        return ActionFailed(data.status, data.data)
    return ActionSuccess(200, data)
