"""The app shell and the static error page, as kida templates.

Both are rendered with autoescaping on. The renderer's head and body
markup, already HTML, is passed in as ``Markup`` so it is inserted as-is.

App shell variables: ``head``, ``body``, ``assets``, ``nonce``, ``env``
(the public environment snapshot). Error page variables: ``status``,
``message``.
"""

from collections.abc import Mapping

from kida import DictLoader, Environment
from kida.utils.html import Markup

from wren.config import AppConfig

APP_TEMPLATE = "app.html"
ERROR_TEMPLATE = "error.html"

DEFAULT_APP_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
	<head>
		<meta charset="utf-8" />
		<link rel="icon" href="{{ assets }}/favicon.png" />
		<meta name="viewport" content="width=device-width, initial-scale=1" />
		{{ head }}
	</head>
	<body data-sveltekit-preload-data="hover">
		<div style="display: contents">{{ body }}</div>
	</body>
</html>
"""

DEFAULT_ERROR_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
	<head>
		<meta charset="utf-8" />
		<title>{{ message }}</title>
		<style>
			body {
				font-family: system-ui, -apple-system, sans-serif;
				display: flex;
				align-items: center;
				justify-content: center;
				height: 100vh;
				margin: 0;
			}
			.error { display: flex; align-items: center; max-width: 32rem; margin: 0 1rem; }
			.status { font-weight: 200; font-size: 3rem; line-height: 1; position: relative; top: -0.05rem; }
			.message { border-left: 1px solid #ccc; padding: 0 0 0 1rem; margin: 0 0 0 1rem; min-height: 2.5rem; display: flex; align-items: center; }
			.message h1 { font-weight: 400; font-size: 1em; margin: 0; }
		</style>
	</head>
	<body>
		<div class="error">
			<span class="status">{{ status }}</span>
			<div class="message"><h1>{{ message }}</h1></div>
		</div>
	</body>
</html>
"""


def create_environment(config: AppConfig) -> Environment:
    """Compile the app shell and error page for the life of the process."""
    return Environment(
        loader=DictLoader(
            {
                APP_TEMPLATE: config.app_template or DEFAULT_APP_TEMPLATE,
                ERROR_TEMPLATE: config.error_template or DEFAULT_ERROR_TEMPLATE,
            }
        ),
        autoescape=True,
    )


def render_app_shell(
    env: Environment,
    *,
    head: str,
    body: str,
    assets: str,
    nonce: str,
    public_env: Mapping[str, str],
) -> str:
    """Wrap rendered head/body markup in the app shell."""
    template = env.get_template(APP_TEMPLATE)
    return template.render(
        {
            "head": Markup(head),
            "body": Markup(body),
            "assets": assets,
            "nonce": nonce,
            "env": dict(public_env),
        }
    )


def render_error_page(env: Environment, *, status: int, message: str) -> str:
    """The minimal standalone error document."""
    template = env.get_template(ERROR_TEMPLATE)
    return template.render({"status": status, "message": message})
