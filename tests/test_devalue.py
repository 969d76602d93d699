"""Tests for wren.serialization.devalue: flat and expression encodings."""

import math
import re
from datetime import UTC, datetime

import pytest

from wren.serialization.devalue import DevalueError, parse, stringify, uneval


class TestStringify:
    def test_primitives(self) -> None:
        assert stringify(None) == "[null]"
        assert stringify(True) == "[true]"
        assert stringify(42) == "[42]"
        assert stringify("hi") == '["hi"]'

    def test_special_numbers(self) -> None:
        assert stringify(math.nan) == "-3"
        assert stringify(math.inf) == "-4"
        assert stringify(-math.inf) == "-5"
        assert stringify(-0.0) == "-6"

    def test_object(self) -> None:
        assert stringify({"title": "Hi", "n": 1}) == '[{"title":1,"n":2},"Hi",1]'

    def test_repeated_primitives_are_shared(self) -> None:
        assert stringify(["a", "a"]) == '[[1,1],"a"]'

    def test_shared_reference(self) -> None:
        shared = {"x": 1}
        assert stringify({"a": shared, "b": shared}) == '[{"a":1,"b":1},{"x":2},1]'

    def test_cycle(self) -> None:
        node: dict = {"name": "root"}
        node["self"] = node
        assert stringify(node) == '[{"name":1,"self":0},"root"]'

    def test_containers(self) -> None:
        assert stringify({1: "one"}) == '[["Map",1,2],1,"one"]'
        assert stringify({"s": {1}}) == '[{"s":1},["Set",2],1]'
        assert stringify(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == '[["Date","2024-01-02T03:04:05.000Z"]]'
        assert stringify(re.compile("a+", re.IGNORECASE)) == '[["RegExp","a+","i"]]'

    def test_bigint(self) -> None:
        assert stringify(2**60) == f'[["BigInt","{2**60}"]]'

    def test_script_safe_strings(self) -> None:
        assert stringify("</script>") == '["\\u003C/script>"]'

    def test_reducer(self) -> None:
        class Point:
            def __init__(self, x: int) -> None:
                self.x = x

        reducers = {"Point": lambda v: [v.x] if isinstance(v, Point) else None}
        assert stringify({"p": Point(3)}, reducers) == '[{"p":1},["Point",2],[3],3]'


class TestStringifyErrors:
    def test_function(self) -> None:
        with pytest.raises(DevalueError, match="Cannot stringify a function") as info:
            stringify({"items": [1, len]})
        assert info.value.path == ".items[1]"

    def test_arbitrary_object(self) -> None:
        with pytest.raises(DevalueError, match="arbitrary non-POJOs") as info:
            stringify({"weird key": object()})
        assert info.value.path == '["weird key"]'

    def test_symbolic_keys(self) -> None:
        with pytest.raises(DevalueError, match="symbolic keys"):
            stringify({(1, 2): "tuple key"})

    def test_map_value_path(self) -> None:
        with pytest.raises(DevalueError) as info:
            stringify({"lookup": {1: object()}})
        assert info.value.path == ".lookup.get(1)"


class TestParse:
    def test_shared_identity_survives(self) -> None:
        shared = {"x": 1}
        decoded = parse(stringify({"a": shared, "b": [shared]}))
        assert decoded == {"a": {"x": 1}, "b": [{"x": 1}]}
        assert decoded["a"] is decoded["b"][0]

    def test_cycle_survives(self) -> None:
        node: dict = {"name": "root"}
        node["self"] = node
        decoded = parse(stringify(node))
        assert decoded["self"] is decoded

    def test_special_values(self) -> None:
        decoded = parse(stringify({"n": math.nan, "z": -0.0, "big": 2**60, "s": {1, 2}}))
        assert math.isnan(decoded["n"])
        assert math.copysign(1.0, decoded["z"]) < 0
        assert decoded["big"] == 2**60
        assert decoded["s"] == {1, 2}

    def test_date(self) -> None:
        when = datetime(2024, 5, 6, 7, 8, 9, tzinfo=UTC)
        assert parse(stringify(when)) == when


class TestUneval:
    def test_object(self) -> None:
        assert uneval({"title": "Hi", "count": 2}) == '{title:"Hi",count:2}'

    def test_non_identifier_keys(self) -> None:
        assert uneval({"my-key": None}) == '{"my-key":null}'

    def test_special_numbers(self) -> None:
        assert uneval([math.nan, math.inf, -0.0, 2**60]) == f"[NaN,Infinity,-0,{2**60}n]"

    def test_date_and_regexp(self) -> None:
        when = datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)
        assert uneval(when) == "new Date(1000)"
        assert uneval(re.compile("x", re.MULTILINE)) == 'new RegExp("x", "m")'

    def test_shared_reference_binds_a_name(self) -> None:
        shared = {"x": 1}
        assert uneval({"a": shared, "b": shared}) == "(function(a){a.x=1;return {a:a,b:a}}({}))"

    def test_replacer(self) -> None:
        marker = object()
        out = uneval({"later": marker}, lambda v: "defer(1)" if v is marker else None)
        assert out == "{later:defer(1)}"

    def test_rejects_functions(self) -> None:
        with pytest.raises(DevalueError, match="function"):
            uneval({"f": print})
