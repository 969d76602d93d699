"""Ordered route matching.

Routes are tried in declaration order; the first whose pattern matches and
whose parameters all satisfy their matchers wins. Route ids are compiled to
regular expressions once, when the manifest is built.
"""

import re
import unicodedata
from collections.abc import Mapping, Sequence

from wren.errors import ConfigurationError
from wren.routing.route import Matcher, Route, RouteMatch, RouteParam

_PARAM = re.compile(r"^(\[)?(\.\.\.)?(\w+)(?:=(\w+))?(\])?$")
_REST_SEGMENT = re.compile(r"^\[\.\.\.(\w+)(?:=(\w+))?\]$")
_OPTIONAL_SEGMENT = re.compile(r"^\[\[(\w+)(?:=(\w+))?\]\]$")
_GROUP_SEGMENT = re.compile(r"^\([^)]+\)$")
_DYNAMIC_PART = re.compile(r"\[(.+?)\](?!\])")

# characters that appear percent-encoded in request paths
_ENCODED = {"%": "%25", "/": "%2[Ff]", "?": "%3[Ff]", "#": "%23"}


def _escape(content: str) -> str:
    content = unicodedata.normalize("NFC", content)
    return "".join(_ENCODED.get(ch) or re.escape(ch) for ch in content)


def _segments(route_id: str) -> list[str]:
    """Path segments of a route id, without ``(group)`` segments."""
    return [s for s in route_id[1:].split("/") if not _GROUP_SEGMENT.match(s)]


def parse_route_id(route_id: str) -> tuple[re.Pattern[str], tuple[RouteParam, ...]]:
    """Compile a route id into a pattern and its parameter descriptors.

    Examples::

        "/blog/[slug]"          -> ^/blog/([^/]+?)/?$
        "/[[lang]]/about"       -> ^(?:/([^/]+))?/about/?$
        "/files/[...path]"      -> ^/files(?:/(.*))?/?$
        "/(marketing)/pricing"  -> ^/pricing/?$
    """
    if route_id == "/":
        return re.compile(r"^/$"), ()

    params: list[RouteParam] = []
    pattern = ["^"]

    for segment in _segments(route_id):
        # a rest or optional segment may match zero segments, so it owns its slash
        rest = _REST_SEGMENT.match(segment)
        if rest:
            params.append(RouteParam(rest[1], rest[2], rest=True, chained=True))
            pattern.append("(?:/(.*))?")
            continue

        optional = _OPTIONAL_SEGMENT.match(segment)
        if optional:
            params.append(RouteParam(optional[1], optional[2], optional=True, chained=True))
            pattern.append("(?:/([^/]+))?")
            continue

        if not segment:
            continue

        parts = _DYNAMIC_PART.split(segment)
        out = []
        for i, content in enumerate(parts):
            if i % 2 == 0:
                out.append(_escape(content))
                continue
            if content.startswith("x+"):
                out.append(_escape(chr(int(content[2:], 16))))
                continue
            if content.startswith("u+"):
                out.append(_escape("".join(chr(int(code, 16)) for code in content[2:].split("-"))))
                continue

            match = _PARAM.match(content)
            if not match:
                msg = (
                    f"Invalid param: {content}. Params and matcher names can only "
                    "have underscores and alphanumeric characters."
                )
                raise ConfigurationError(msg)
            is_optional, is_rest, name, matcher = match[1], match[2], match[3], match[4]
            params.append(
                RouteParam(
                    name,
                    matcher,
                    optional=bool(is_optional),
                    rest=bool(is_rest),
                    chained=bool(is_rest) and i == 1 and parts[0] == "",
                )
            )
            out.append("(.*?)" if is_rest else "([^/]*)?" if is_optional else "([^/]+?)")
        pattern.append("/" + "".join(out))

    pattern.append("/?$")
    return re.compile("".join(pattern)), tuple(params)


def exec_params(
    match: re.Match[str],
    params: Sequence[RouteParam],
    matchers: Mapping[str, Matcher],
) -> dict[str, str] | None:
    """Extract parameter values from a pattern match.

    Optional chained parameters that fail their matcher are buffered and
    handed to the next rest parameter, so ``/[[lang=locale]]/[...path]``
    treats ``/about`` as a path rather than a language. Returns ``None``
    when the candidate does not match after all.
    """
    result: dict[str, str] = {}
    values = match.groups()
    buffered = 0

    for i, param in enumerate(params):
        value = values[i - buffered] if i - buffered < len(values) else None

        if param.chained and param.rest and buffered:
            result[param.name] = "/".join(v for v in values[i - buffered : i + 1] if v)
            buffered = 0
            continue

        if value is None:
            if param.rest:
                result[param.name] = ""
            continue

        if param.matcher is None or matchers[param.matcher](value):
            result[param.name] = value
            next_param = params[i + 1] if i + 1 < len(params) else None
            next_value = values[i + 1] if i + 1 < len(values) else None
            if (
                next_param is not None
                and not next_param.rest
                and next_param.optional
                and next_value
                and param.chained
            ):
                buffered = 0
            continue

        if param.optional and param.chained:
            buffered += 1
            continue

        return None

    if buffered:
        return None
    return result


class Router:
    """Ordered route list with named parameter matchers.

    Usage::

        router = Router(routes, {"integer": str.isdigit})
        match = router.match("/blog/42")
    """

    __slots__ = ("_matchers", "_routes")

    def __init__(self, routes: Sequence[Route], matchers: Mapping[str, Matcher] | None = None) -> None:
        self._routes = tuple(routes)
        self._matchers = dict(matchers or {})
        for route in self._routes:
            for param in route.params:
                if param.matcher is not None and param.matcher not in self._matchers:
                    msg = f"Route {route.id!r} uses unknown matcher {param.matcher!r}"
                    raise ConfigurationError(msg)

    @property
    def routes(self) -> tuple[Route, ...]:
        return self._routes

    def match(self, path: str) -> RouteMatch | None:
        """Return the first route matching the decoded *path*, or ``None``."""
        for route in self._routes:
            found = route.pattern.match(path)
            if found is None:
                continue
            params = exec_params(found, route.params, self._matchers)
            if params is not None:
                return RouteMatch(route=route, params=params)
        return None
