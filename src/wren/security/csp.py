"""Content-Security-Policy for rendered documents.

One ``ContentSecurityPolicy`` is built per response. It holds an enforcing
policy and a report-only policy side by side, sharing a single nonce.
Inline ``<script>`` and ``<style>`` blocks the document emits are registered
with ``add_script``/``add_style``, which either hash them or cover them with
the nonce, depending on the mode:

- ``"hash"``: every inline block gets its own ``sha256-...`` source
- ``"nonce"``: one ``nonce-...`` source covers every inline block
- ``"auto"``: hashes while prerendering (a static file cannot carry a
  fresh nonce), nonces otherwise

Only directives that actually restrict inline content are strengthened; a
source list of just ``unsafe-inline`` is left alone.
"""

from __future__ import annotations

import re

from wren._internal.hashing import generate_nonce, sha256_base64
from wren.config import CSPConfig, CSPDirectives
from wren.errors import ConfigurationError

QUOTED = frozenset(
    {
        "self",
        "unsafe-eval",
        "unsafe-hashes",
        "unsafe-inline",
        "none",
        "strict-dynamic",
        "report-sample",
        "wasm-unsafe-eval",
        "script",
    }
)

_CRYPTO = re.compile(r"^(nonce|sha\d\d\d)-")

# browsers ignore these inside <meta http-equiv>
_META_EXCLUDED = frozenset({"frame-ancestors", "report-uri", "sandbox"})


def _needs_csp(sources: tuple[str, ...] | bool | None) -> bool:
    if not sources or sources is True:
        return False
    return any(source != "unsafe-inline" for source in sources)


def _sources(directives: CSPDirectives, name: str) -> tuple[str, ...]:
    value = directives.get(name) or directives.get("default-src") or ()
    return () if value is True else tuple(value)


class _Policy:
    """One policy: configured directives plus sources added for inline blocks."""

    __slots__ = (
        "_directives",
        "_nonce",
        "_script_needs_csp",
        "_script_src",
        "_style_needs_csp",
        "_style_src",
        "_use_hashes",
    )

    def __init__(self, use_hashes: bool, directives: CSPDirectives, nonce: str) -> None:
        self._use_hashes = use_hashes
        self._directives = dict(directives)
        self._nonce = nonce
        self._script_src: list[str] = []
        self._style_src: list[str] = []
        self._script_needs_csp = _needs_csp(
            directives.get("script-src") or directives.get("default-src")
        )
        self._style_needs_csp = _needs_csp(
            directives.get("style-src") or directives.get("default-src")
        )

    @property
    def script_needs_nonce(self) -> bool:
        return self._script_needs_csp and not self._use_hashes

    @property
    def style_needs_nonce(self) -> bool:
        return self._style_needs_csp and not self._use_hashes

    def add_script(self, content: str) -> None:
        if self._script_needs_csp:
            self._add(self._script_src, content)

    def add_style(self, content: str) -> None:
        if self._style_needs_csp:
            self._add(self._style_src, content)

    def _add(self, sources: list[str], content: str) -> None:
        if self._use_hashes:
            sources.append(f"sha256-{sha256_base64(content)}")
        elif not sources:
            sources.append(f"nonce-{self._nonce}")

    def get_header(self, is_meta: bool = False) -> str:
        """Serialize to a header value; ``is_meta`` drops meta-incompatible directives."""
        directives: dict[str, tuple[str, ...] | bool] = dict(self._directives)
        if self._style_src:
            directives["style-src"] = (*_sources(self._directives, "style-src"), *self._style_src)
        if self._script_src:
            directives["script-src"] = (*_sources(self._directives, "script-src"), *self._script_src)

        parts = []
        for name, value in directives.items():
            if is_meta and name in _META_EXCLUDED:
                continue
            if not value:
                continue
            directive = [name]
            if value is not True:
                directive.extend(
                    f"'{source}'" if source in QUOTED or _CRYPTO.match(source) else source
                    for source in value
                )
            parts.append(" ".join(directive))
        return "; ".join(parts)


class _ReportOnlyPolicy(_Policy):
    """Report-only policy; useless without somewhere to send reports."""

    __slots__ = ()

    def __init__(self, use_hashes: bool, directives: CSPDirectives, nonce: str) -> None:
        super().__init__(use_hashes, directives, nonce)
        if any(directives.values()):
            if not directives.get("report-to") and not directives.get("report-uri"):
                msg = (
                    "`content-security-policy-report-only` must be specified with either "
                    "the `report-to` or `report-uri` directives, or both"
                )
                raise ConfigurationError(msg)


class ContentSecurityPolicy:
    """Per-response CSP state.

    Usage::

        csp = ContentSecurityPolicy(config.csp, prerender=False)
        csp.add_script(init_js)
        tag = f'<script nonce="{csp.nonce}">' if csp.script_needs_nonce else "<script>"
        header = csp.header()
    """

    __slots__ = ("nonce", "policy", "report_only")

    def __init__(self, config: CSPConfig, *, prerender: bool) -> None:
        self.nonce = generate_nonce()
        use_hashes = config.mode == "hash" or (config.mode == "auto" and prerender)
        self.policy = _Policy(use_hashes, config.directives, self.nonce)
        self.report_only = _ReportOnlyPolicy(use_hashes, config.report_only, self.nonce)

    @property
    def script_needs_nonce(self) -> bool:
        return self.policy.script_needs_nonce or self.report_only.script_needs_nonce

    @property
    def style_needs_nonce(self) -> bool:
        return self.policy.style_needs_nonce or self.report_only.style_needs_nonce

    def add_script(self, content: str) -> None:
        self.policy.add_script(content)
        self.report_only.add_script(content)

    def add_style(self, content: str) -> None:
        self.policy.add_style(content)
        self.report_only.add_style(content)

    def header(self) -> str:
        return self.policy.get_header()

    def report_only_header(self) -> str:
        return self.report_only.get_header()

    def meta(self) -> str | None:
        """The enforcing policy as a ``<meta http-equiv>`` tag, for prerendered pages."""
        content = self.policy.get_header(is_meta=True)
        if not content:
            return None
        return f'<meta http-equiv="content-security-policy" content={escape_html_attr(content)}>'


def escape_html_attr(value: str) -> str:
    """Quote *value* for use as an HTML attribute value."""
    return '"' + value.replace("&", "&amp;").replace('"', "&quot;") + '"'


def validate_csp_config(config: CSPConfig) -> None:
    """Fail fast at startup on a CSP config every response would reject."""
    ContentSecurityPolicy(config, prerender=False)

