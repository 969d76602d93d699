"""Request-scoped cookie jar.

Reads come from the request's ``Cookie`` header, overlaid with cookies
set earlier in the same request. Writes are collected and turned into
``Set-Cookie`` headers once, when the response is finalized; after that
the jar is sealed and further writes raise.

Cookies without an explicit ``path`` get the browser's default path: the
directory of the (trailing-slash normalized) request path.
"""

from __future__ import annotations

from datetime import datetime

from wren.http.cookies import Codec, SetCookie, decode_component, encode_component, parse_cookies
from wren.http.url import URL
from wren.routing.paths import TrailingSlash, normalize_path


def _raw(value: str) -> str:
    return value


def domain_matches(hostname: str, constraint: str | None) -> bool:
    """Whether a cookie scoped to *constraint* is sent to *hostname*."""
    if not constraint:
        return True
    normalized = constraint[1:] if constraint.startswith(".") else constraint
    return hostname == normalized or hostname.endswith("." + normalized)


def path_matches(path: str, constraint: str | None) -> bool:
    """Whether a cookie scoped to *constraint* is sent for *path*."""
    if not constraint:
        return True
    normalized = constraint.removesuffix("/")
    return path == normalized or path.startswith(normalized + "/")


class CookieJar:
    """Cookies visible to, and set by, one request.

    Usage::

        session = event.cookies.get("session")
        event.cookies.set("theme", "dark", max_age=60 * 60 * 24 * 365)
        event.cookies.delete("flash")
    """

    __slots__ = ("_default_path", "_defaults", "_header", "_initial", "_new", "_sealed", "_url")

    def __init__(self, header: str, url: URL, trailing_slash: TrailingSlash) -> None:
        self._header = header
        self._url = url
        # raw values, re-sent unchanged to same-origin sub-requests
        self._initial = parse_cookies(header, decode=_raw)
        normalized = normalize_path(url.path, trailing_slash)
        self._default_path = "/".join(normalized.split("/")[:-1]) or "/"
        self._defaults = {
            "httponly": True,
            "samesite": "lax",
            "secure": not (url.hostname == "localhost" and url.scheme == "http"),
        }
        self._new: dict[str, SetCookie] = {}
        self._sealed = False

    # -- reading --

    def _visible(self, cookie: SetCookie) -> bool:
        return domain_matches(self._url.hostname, cookie.domain) and path_matches(
            self._url.path, cookie.path
        )

    def get(self, name: str, *, decode: Codec | None = None) -> str | None:
        """Value of cookie *name*, preferring one set during this request."""
        cookie = self._new.get(name)
        if cookie is not None and self._visible(cookie):
            return cookie.value
        return parse_cookies(self._header, decode=decode or decode_component).get(name)

    def get_all(self, *, decode: Codec | None = None) -> dict[str, str]:
        """Every cookie visible to this request, by name."""
        cookies = parse_cookies(self._header, decode=decode or decode_component)
        for cookie in self._new.values():
            if self._visible(cookie):
                cookies[cookie.name] = cookie.value
        return cookies

    # -- writing --

    def set(
        self,
        name: str,
        value: str,
        *,
        path: str | None = None,
        domain: str | None = None,
        max_age: int | None = None,
        expires: datetime | None = None,
        httponly: bool | None = None,
        secure: bool | None = None,
        samesite: str | None = None,
        encode: Codec | None = None,
    ) -> None:
        """Set a cookie on the response. Unspecified flags use secure defaults."""
        self.add(
            SetCookie(
                name=name,
                value=value,
                path=path,
                domain=domain,
                max_age=max_age,
                expires=expires,
                httponly=self._defaults["httponly"] if httponly is None else httponly,
                secure=self._defaults["secure"] if secure is None else secure,
                samesite=self._defaults["samesite"] if samesite is None else samesite,
                encode=encode,
            )
        )

    def delete(self, name: str, *, path: str | None = None, domain: str | None = None) -> None:
        """Expire cookie *name* on the client."""
        self.set(name, "", path=path, domain=domain, max_age=0)

    def serialize(self, name: str, value: str, **options: object) -> str:
        """A ``Set-Cookie`` value using this jar's defaults, without setting it."""
        merged: dict[str, object] = {**self._defaults, "path": self._default_path}
        merged.update({k: v for k, v in options.items() if v is not None})
        return SetCookie(name=name, value=value, **merged).to_header_value()  # type: ignore[arg-type]

    def add(self, cookie: SetCookie) -> None:
        """Register an already-built cookie, e.g. one replayed from a sub-request."""
        if self._sealed:
            msg = "Cannot use `cookies.set(...)` after the response has been generated"
            raise RuntimeError(msg)
        if cookie.path is None:
            cookie = cookie.with_options(path=self._default_path)
        self._new[cookie.name] = cookie

    def seal(self) -> None:
        self._sealed = True

    @property
    def new_cookies(self) -> tuple[SetCookie, ...]:
        """Cookies set during this request, in the order they were first set."""
        return tuple(self._new.values())

    # -- forwarding --

    def header_for(self, destination: URL, header: str | None = None) -> str:
        """``Cookie`` header for a sub-request to *destination*.

        Precedence, lowest first: the incoming request's cookies, cookies set
        during this request that are in scope for *destination*, then
        *header* supplied explicitly by the caller.
        """
        combined = dict(self._initial)
        for cookie in self._new.values():
            if not domain_matches(destination.hostname, cookie.domain):
                continue
            if not path_matches(destination.path, cookie.path):
                continue
            combined[cookie.name] = (cookie.encode or encode_component)(cookie.value)
        if header:
            combined.update(parse_cookies(header, decode=_raw))
        return "; ".join(f"{name}={value}" for name, value in combined.items())
