"""Application configuration.

AppConfig is a frozen dataclass: immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

type CSPMode = Literal["auto", "hash", "nonce"]
type CSPDirectives = Mapping[str, tuple[str, ...] | bool]


@dataclass(frozen=True, slots=True)
class PathsConfig:
    """Where the app and its built assets are mounted.

    ``base`` is the path prefix the app is served under (``""`` or
    ``"/docs"``, never with a trailing slash). ``assets`` is an absolute
    origin for static assets, or ``""`` to serve them relative to the page.
    """

    base: str = ""
    assets: str = ""


@dataclass(frozen=True, slots=True)
class CSPConfig:
    """Content-Security-Policy settings.

    Directive names are the CSP names (``"script-src"``); values are tuples
    of sources, or ``True`` for valueless directives such as
    ``upgrade-insecure-requests``::

        CSPConfig(
            mode="nonce",
            directives={"script-src": ("self",)},
            report_only={"script-src": ("self",), "report-uri": ("/csp",)},
        )
    """

    mode: CSPMode = "auto"
    directives: CSPDirectives = field(default_factory=dict)
    report_only: CSPDirectives = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(version="1.4.0", csrf_check_origin=False)
    """

    # Mounting
    paths: PathsConfig = field(default_factory=PathsConfig)
    app_dir: str = "_app"

    # Security
    csp: CSPConfig = field(default_factory=CSPConfig)
    csrf_check_origin: bool = True

    # Client runtime
    version: str = "0"
    embedded: bool = False
    service_worker: bool = False

    # Environment snapshot
    env_public_prefix: str = "PUBLIC_"

    # Templates (kida source); None uses the built-in shells
    app_template: str | None = None
    error_template: str | None = None
