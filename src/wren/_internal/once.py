"""Memoized async call.

A load depth is requested by its own runner and by every deeper depth's
``parent()``; all of them must observe one execution. The same holds for a
pending value returned from a load: the data payload, the document and any
child load reading it through ``parent()`` share one await.
"""

import inspect
from collections.abc import Awaitable, Callable, Generator
from typing import Any

import anyio


class Once:
    """Run an async callable at most once; every caller gets the same outcome.

    Failures are cached too and re-raised to each caller. A ``Once`` is
    itself awaitable, any number of times.
    """

    __slots__ = ("_fn", "_started", "_done", "_result", "_error")

    def __init__(self, fn: Callable[[], Awaitable[Any]]) -> None:
        self._fn = fn
        self._started = False
        self._done = anyio.Event()
        self._result: Any = None
        self._error: BaseException | None = None

    async def __call__(self) -> Any:
        if not self._started:
            self._started = True
            try:
                self._result = await self._fn()
            except Exception as exc:
                self._error = exc
            finally:
                self._done.set()
        else:
            await self._done.wait()
        if self._error is not None:
            raise self._error
        return self._result

    def __await__(self) -> Generator[Any, None, Any]:
        return self().__await__()

    async def settle(self) -> None:
        """Run to completion, leaving any failure for a later awaiter."""
        try:
            await self()
        except Exception:  # noqa: S110
            pass


class SharedAwaitables:
    """Per-request map from an awaitable to the one ``Once`` that awaits it."""

    __slots__ = ("_shared",)

    def __init__(self) -> None:
        # the awaitable is kept alive so its id cannot be reused
        self._shared: dict[int, tuple[Awaitable[Any], Once]] = {}

    def share(self, awaitable: Awaitable[Any]) -> Once:
        if isinstance(awaitable, Once):
            return awaitable
        entry = self._shared.get(id(awaitable))
        if entry is None:
            entry = (awaitable, Once(lambda: awaitable))
            self._shared[id(awaitable)] = entry
        return entry[1]

    def share_nested(self, data: Any) -> Any:
        """Swap awaitables inside *data*'s dicts and lists for shared ones, in place."""
        seen: set[int] = set()
        pending = [data]
        while pending:
            value = pending.pop()
            if id(value) in seen:
                continue
            if isinstance(value, dict):
                seen.add(id(value))
                for key, item in value.items():
                    if inspect.isawaitable(item):
                        value[key] = self.share(item)
                    else:
                        pending.append(item)
            elif isinstance(value, list):
                seen.add(id(value))
                for index, item in enumerate(value):
                    if inspect.isawaitable(item):
                        value[index] = self.share(item)
                    else:
                        pending.append(item)
        return data
