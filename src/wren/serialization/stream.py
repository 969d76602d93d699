"""Deferred values: placeholders now, follow-up chunks later.

While a load result is encoded, every awaitable found inside it is handed
to ``DeferredChunks.defer``, which returns a numeric id for the encoder to
emit as a placeholder. ``run()`` then awaits all of them concurrently and
feeds one formatted chunk per placeholder to ``chunks()``, in completion
order. Values resolved this way may contain further awaitables; those are
deferred in turn and the stream stays open until every one has settled.

``run()`` and the iteration of ``chunks()`` belong to the consumer: it
starts ``run()`` in a task group it owns and iterates ``chunks()`` in the
same scope, so stopping early cancels whatever is still pending.
"""

import math
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Literal

import anyio
from anyio.abc import TaskGroup

type Outcome = Literal["data", "error"]
type ChunkFormatter = Callable[[int, Outcome, Any], Awaitable[str]]


class DeferredChunks:
    """Registry of pending values for one encoded payload.

    *format_chunk* turns ``(id, "data" | "error", value_or_exception)`` into
    the text of one chunk. It must not raise: encoding failures have to be
    reported as an ``"error"`` chunk by the formatter itself.
    """

    __slots__ = ("_format", "_next_id", "_outstanding", "_queued", "_receive", "_send", "_task_group")

    def __init__(self, format_chunk: ChunkFormatter) -> None:
        self._format = format_chunk
        self._next_id = 1
        self._outstanding = 0
        self._queued: list[tuple[int, Awaitable[Any]]] = []
        self._task_group: TaskGroup | None = None
        self._send, self._receive = anyio.create_memory_object_stream[str](math.inf)

    @property
    def pending(self) -> bool:
        """Whether any placeholder is still waiting for its chunk."""
        return self._outstanding > 0

    def defer(self, awaitable: Awaitable[Any]) -> int:
        """Register *awaitable* and return its placeholder id."""
        placeholder = self._next_id
        self._next_id += 1
        self._outstanding += 1
        if self._task_group is None:
            self._queued.append((placeholder, awaitable))
        else:
            self._task_group.start_soon(self._settle, placeholder, awaitable)
        return placeholder

    async def run(self) -> None:
        """Settle every placeholder, returning once the last chunk is sent."""
        async with self._send:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                queued, self._queued = self._queued, []
                for placeholder, awaitable in queued:
                    tg.start_soon(self._settle, placeholder, awaitable)
            self._task_group = None

    async def chunks(self) -> AsyncIterator[str]:
        """Chunks as ``run()`` produces them; ends when it returns."""
        async with self._receive:
            async for chunk in self._receive:
                yield chunk

    async def collect(self) -> str:
        """Run to completion in a task group of our own; all chunks, joined."""
        parts: list[str] = []
        async with anyio.create_task_group() as tg:
            tg.start_soon(self.run)
            async for chunk in self.chunks():
                parts.append(chunk)
        return "".join(parts)

    async def _settle(self, placeholder: int, awaitable: Awaitable[Any]) -> None:
        try:
            value = await awaitable
        except Exception as exc:
            chunk = await self._format(placeholder, "error", exc)
        else:
            chunk = await self._format(placeholder, "data", value)
        self._outstanding -= 1
        try:
            await self._send.send(chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # reader went away; its scope is about to cancel us
            return


async def prepend(first: str, rest: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield *first*, then everything from *rest*."""
    yield first
    async for chunk in rest:
        yield chunk
