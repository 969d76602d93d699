"""wren exception hierarchy.

Shared by the dispatcher, load pipeline, actions and endpoints so every
module raises and catches the same types.

Application code raises the results of the helpers at the bottom of this
module::

    raise error(404, "Post not found")
    raise redirect(303, "/login")
    return fail(422, {"reason": "invalid"})
"""

from dataclasses import dataclass, field
from typing import Any


class WrenError(Exception):
    """Base for all wren-specific errors."""


class ConfigurationError(WrenError):
    """Raised when the app or a route is set up incorrectly.

    Also raised at dispatch time for misuse that is the developer's fault
    rather than the visitor's (wrong form encoding for an action, a page
    mixing default and named actions).
    """


@dataclass(frozen=True, slots=True)
class HttpError(WrenError):
    """An expected failure with a status in the 400-599 range.

    The ``body`` is public: it is sent to the client unchanged.
    """

    status: int
    body: dict[str, Any] = field(default_factory=lambda: {"message": "Error"})

    def __str__(self) -> str:
        return f"{self.status}: {self.body.get('message', '')}"


@dataclass(frozen=True, slots=True)
class Redirect(WrenError):  # noqa: N818
    """A redirect that short-circuits loading, actions and hooks."""

    status: int
    location: str

    def __str__(self) -> str:
        return f"{self.status} -> {self.location}"


@dataclass(frozen=True, slots=True)
class ActionFailure(WrenError):  # noqa: N818
    """A failed form submission, returned (never raised) from an action."""

    status: int
    data: Any = None

    def __str__(self) -> str:
        return f"action failure {self.status}"


def error(status: int, body: str | dict[str, Any] | None = None) -> HttpError:
    """Build an ``HttpError`` to raise from a load, action or hook."""
    if not 400 <= status <= 599:
        msg = f"HTTP error status must be between 400 and 599 (got {status})"
        raise ValueError(msg)
    if body is None:
        body = {"message": f"Error: {status}"}
    elif isinstance(body, str):
        body = {"message": body}
    return HttpError(status, body)


def redirect(status: int, location: str) -> Redirect:
    """Build a ``Redirect`` to raise from a load, action or hook."""
    if not 300 <= status <= 308:
        msg = f"Invalid redirect status {status}"
        raise ValueError(msg)
    return Redirect(status, location)


def fail(status: int, data: Any = None) -> ActionFailure:
    """Build an ``ActionFailure`` to return from an action."""
    return ActionFailure(status, data)
