"""Tests for wren._internal.once: one execution shared by many awaiters."""

import anyio
import pytest

from wren._internal.once import Once, SharedAwaitables


class TestOnce:
    async def test_runs_once_for_concurrent_callers(self) -> None:
        calls: list[int] = []

        async def load() -> str:
            calls.append(1)
            await anyio.sleep(0.01)
            return "data"

        once = Once(load)
        results: list[str] = []

        async def caller() -> None:
            results.append(await once())

        async with anyio.create_task_group() as tg:
            for _ in range(3):
                tg.start_soon(caller)

        assert calls == [1]
        assert results == ["data", "data", "data"]

    async def test_failure_is_shared(self) -> None:
        async def load() -> None:
            msg = "boom"
            raise KeyError(msg)

        once = Once(load)
        await once.settle()
        with pytest.raises(KeyError):
            await once()
        with pytest.raises(KeyError):
            await once()

    async def test_awaitable_many_times(self) -> None:
        calls: list[int] = []

        async def load() -> str:
            calls.append(1)
            return "data"

        once = Once(load)
        assert await once == "data"
        assert await once == "data"
        assert calls == [1]


class TestSharedAwaitables:
    async def test_same_awaitable_same_wrapper(self) -> None:
        async def value() -> int:
            return 1

        shared = SharedAwaitables()
        pending = value()
        first = shared.share(pending)
        assert shared.share(pending) is first
        assert shared.share(first) is first
        assert await first == 1
        assert await shared.share(pending) == 1

    async def test_nested_values_are_swapped_in_place(self) -> None:
        async def value() -> str:
            return "deep"

        shared = SharedAwaitables()
        data = {"plain": 1, "nested": {"items": [value()]}}
        data["self"] = data
        assert shared.share_nested(data) is data

        wrapper = data["nested"]["items"][0]
        assert isinstance(wrapper, Once)
        assert await wrapper == "deep"
        assert await wrapper == "deep"
        assert data["plain"] == 1
