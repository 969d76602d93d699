"""Call sync or async user functions uniformly.

Load functions, actions, endpoint handlers, hooks and node loaders can all
be ``def`` or ``async def``. Any code that calls one of them goes through
``invoke`` so the sync/async check lives in exactly one place.

Usage::

    from wren._internal.invoke import invoke

    result = await invoke(load, event)
"""

import inspect
from typing import Any


async def invoke(fn: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *fn* and await the result if it is awaitable.

    Works with both sync and async callables::

        def load(event):
            return {"title": "Hi"}

        async def load(event):
            post = await fetch_post(event.params["id"])
            return {"post": post}
    """
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
