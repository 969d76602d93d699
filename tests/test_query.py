"""Tests for wren.http.query: immutable QueryParams."""

import pytest

from wren.http.query import QueryParams


class TestQueryParams:
    def test_getitem(self) -> None:
        q = QueryParams("q=hello&page=2")
        assert q["q"] == "hello"
        assert q["page"] == "2"

    def test_bytes_are_accepted(self) -> None:
        assert QueryParams(b"q=hello")["q"] == "hello"

    def test_missing_key_raises(self) -> None:
        with pytest.raises(KeyError):
            QueryParams("q=hello")["missing"]

    def test_blank_values_are_kept(self) -> None:
        q = QueryParams("flag=&q=x")
        assert q["flag"] == ""
        assert "flag" in q

    def test_repeated_keys(self) -> None:
        q = QueryParams("tag=a&tag=b&page=1")
        assert q["tag"] == "a"
        assert q.get_list("tag") == ["a", "b"]
        assert list(q) == ["tag", "page"]
        assert len(q) == 2

    def test_get_default(self) -> None:
        assert QueryParams("").get("page", "1") == "1"

    def test_without(self) -> None:
        q = QueryParams("x-sveltekit-invalidated=01&ref=feed&x-sveltekit-invalidated=1")
        assert str(q.without("x-sveltekit-invalidated")) == "ref=feed"
