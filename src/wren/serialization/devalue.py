"""Value-graph encoding shared with the client runtime.

Two encodings of the same value graph:

- ``stringify`` produces a flat JSON array where containers refer to each
  other by index, so shared and cyclic references survive. Used for data
  requests and action results; ``parse`` reverses it.
- ``uneval`` produces a JavaScript expression, used inline in the
  hydration script. Values referenced more than once are bound to names by
  an immediately-invoked function.

Python values map onto the client's types as follows: ``None`` is null,
``list``/``tuple`` are arrays, ``dict`` with ``str`` keys is a plain object,
``dict`` with other primitive keys is a Map, ``set``/``frozenset`` is a Set,
``datetime`` is a Date and a compiled pattern is a RegExp. Integers beyond
the float-safe range become BigInt.
"""

import json
import math
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from wren.errors import WrenError

UNDEFINED = -1
HOLE = -2
NAN = -3
POSITIVE_INFINITY = -4
NEGATIVE_INFINITY = -5
NEGATIVE_ZERO = -6

_MAX_SAFE_INTEGER = 2**53 - 1
_IDENTIFIER = re.compile(r"^[_$a-zA-Z][_$a-zA-Z0-9]*$")
_NAME_CHARS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_$"
_RESERVED = re.compile(
    r"^(?:do|if|in|for|int|let|new|try|var|byte|case|char|else|enum|goto|long|this|void|"
    r"with|await|break|catch|class|const|final|float|short|super|throw|while|yield|delete|"
    r"double|export|import|native|return|switch|throws|typeof|boolean|default|extends|"
    r"finally|package|private|abstract|continue|debugger|function|volatile|interface|"
    r"protected|transient|implements|instanceof|synchronized)$"
)
_REGEX_FLAGS = ((re.IGNORECASE, "i"), (re.MULTILINE, "m"), (re.DOTALL, "s"))

type Reducer = Callable[[Any], Any]
type Reviver = Callable[[Any], Any]


class DevalueError(WrenError):
    """A value in the graph cannot be encoded.

    ``path`` locates the offending value from the root, e.g.
    ``.posts[3].author`` or ``.lookup.get("k")``.
    """

    def __init__(self, message: str, keys: list[str]) -> None:
        super().__init__(message)
        self.path = "".join(keys)


def stringify_string(value: str) -> str:
    """JSON string literal that is also safe inside a ``<script>`` element."""
    return (
        json.dumps(value, ensure_ascii=False)
        .replace("<", "\\u003C")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def _is_primitive(thing: Any) -> bool:
    return thing is None or isinstance(thing, (str, bool, int, float))


def _key_path(key: str) -> str:
    return f".{key}" if _IDENTIFIER.match(key) else f"[{stringify_string(key)}]"


def _map_path(key: Any) -> str:
    return f".get({_stringify_primitive(key) if _is_primitive(key) else '...'})"


def _stringify_primitive(thing: Any) -> str:
    if thing is None:
        return "null"
    if isinstance(thing, str):
        return stringify_string(thing)
    if isinstance(thing, bool):
        return "true" if thing else "false"
    if isinstance(thing, int):
        if abs(thing) > _MAX_SAFE_INTEGER:
            return f"{thing}n"
        return str(thing)
    if math.isnan(thing):
        return "NaN"
    if math.isinf(thing):
        return "Infinity" if thing > 0 else "-Infinity"
    if thing == 0 and math.copysign(1.0, thing) < 0:
        return "-0"
    return _number(thing)


def _number(value: float) -> str:
    return str(int(value)) if value.is_integer() and abs(value) < 1e21 else repr(value)


def _timestamp(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _regex_flags(pattern: re.Pattern[str]) -> str:
    return "".join(flag for bit, flag in _REGEX_FLAGS if pattern.flags & bit)


def _classify(thing: Any, keys: list[str]) -> str:
    """Name the container kind of a non-primitive, or raise ``DevalueError``."""
    if isinstance(thing, datetime):
        return "Date"
    if isinstance(thing, re.Pattern):
        return "RegExp"
    if isinstance(thing, (list, tuple)):
        return "Array"
    if isinstance(thing, (set, frozenset)):
        return "Set"
    if isinstance(thing, dict):
        if all(isinstance(key, str) for key in thing):
            return "Object"
        if all(_is_primitive(key) for key in thing):
            return "Map"
        raise DevalueError("Cannot stringify POJOs with symbolic keys", keys)
    if callable(thing):
        raise DevalueError("Cannot stringify a function", keys)
    raise DevalueError("Cannot stringify arbitrary non-POJOs", keys)


def stringify(value: Any, reducers: Mapping[str, Reducer] | None = None) -> str:
    """Encode *value* as a flat, index-referencing JSON array.

    Each reducer is tried on every non-primitive value in turn; the first
    that returns something truthy replaces the value with
    ``[name, <encoded result>]``.
    """
    stringified: list[str] = []
    indexes: dict[Any, int] = {}
    keep_alive: list[Any] = []
    custom = list((reducers or {}).items())
    keys: list[str] = []

    def identity(thing: Any) -> Any:
        if _is_primitive(thing):
            return (type(thing), thing)
        keep_alive.append(thing)
        return id(thing)

    def flatten(thing: Any) -> int:
        if isinstance(thing, float):
            if math.isnan(thing):
                return NAN
            if math.isinf(thing):
                return POSITIVE_INFINITY if thing > 0 else NEGATIVE_INFINITY
            if thing == 0 and math.copysign(1.0, thing) < 0:
                return NEGATIVE_ZERO

        key = identity(thing)
        if key in indexes:
            return indexes[key]

        index = len(stringified)
        indexes[key] = index
        stringified.append("")

        if not _is_primitive(thing):
            for name, fn in custom:
                reduced = fn(thing)
                if reduced:
                    stringified[index] = f'["{name}",{flatten(reduced)}]'
                    return index

        stringified[index] = encode(thing)
        return index

    def encode(thing: Any) -> str:
        if _is_primitive(thing):
            if isinstance(thing, int) and not isinstance(thing, bool):
                if abs(thing) > _MAX_SAFE_INTEGER:
                    return f'["BigInt","{thing}"]'
                return str(thing)
            if isinstance(thing, float):
                return _number(thing)
            return _stringify_primitive(thing)

        kind = _classify(thing, keys)
        if kind == "Date":
            return f'["Date","{_iso(thing)}"]'
        if kind == "RegExp":
            flags = _regex_flags(thing)
            source = stringify_string(thing.pattern)
            return f'["RegExp",{source},"{flags}"]' if flags else f'["RegExp",{source}]'
        if kind == "Array":
            items = []
            for i, item in enumerate(thing):
                keys.append(f"[{i}]")
                items.append(str(flatten(item)))
                keys.pop()
            return f"[{','.join(items)}]"
        if kind == "Set":
            return '["Set"' + "".join(f",{flatten(item)}" for item in thing) + "]"
        if kind == "Map":
            parts = ['["Map"']
            for map_key, item in thing.items():
                keys.append(_map_path(map_key))
                parts.append(f",{flatten(map_key)},{flatten(item)}")
                keys.pop()
            return "".join(parts) + "]"
        members = []
        for name, item in thing.items():
            keys.append(_key_path(name))
            members.append(f"{stringify_string(name)}:{flatten(item)}")
            keys.pop()
        return "{" + ",".join(members) + "}"

    index = flatten(value)
    if index < 0:
        return str(index)
    return f"[{','.join(stringified)}]"


def parse(text: str, revivers: Mapping[str, Reviver] | None = None) -> Any:
    """Decode the output of ``stringify``. Shared references stay shared."""
    return unflatten(json.loads(text), revivers)


def unflatten(parsed: Any, revivers: Mapping[str, Reviver] | None = None) -> Any:
    """Rebuild a value graph from an already JSON-decoded ``stringify`` array."""
    if isinstance(parsed, int) and not isinstance(parsed, bool):
        return _special(parsed)
    if not isinstance(parsed, list) or not parsed:
        msg = "Invalid input"
        raise ValueError(msg)

    values = parsed
    hydrated: dict[int, Any] = {}
    revivers = revivers or {}

    def hydrate(index: int) -> Any:
        if index < 0:
            return _special(index)
        if index in hydrated:
            return hydrated[index]

        value = values[index]
        if not isinstance(value, (list, dict)):
            hydrated[index] = value
        elif isinstance(value, list) and value and isinstance(value[0], str):
            kind = value[0]
            reviver = revivers.get(kind)
            if reviver is not None:
                hydrated[index] = reviver(hydrate(value[1]))
            elif kind == "Date":
                hydrated[index] = datetime.fromisoformat(value[1].replace("Z", "+00:00"))
            elif kind == "Set":
                result_set: set[Any] = set()
                hydrated[index] = result_set
                for item in value[1:]:
                    result_set.add(hydrate(item))
            elif kind == "Map":
                result_map: dict[Any, Any] = {}
                hydrated[index] = result_map
                for i in range(1, len(value), 2):
                    result_map[hydrate(value[i])] = hydrate(value[i + 1])
            elif kind == "RegExp":
                flags = 0
                for bit, flag in _REGEX_FLAGS:
                    if len(value) > 2 and flag in value[2]:
                        flags |= bit
                hydrated[index] = re.compile(value[1], flags)
            elif kind == "BigInt":
                hydrated[index] = int(value[1])
            elif kind == "Object":
                hydrated[index] = value[1]
            elif kind == "null":
                result_obj: dict[str, Any] = {}
                hydrated[index] = result_obj
                for i in range(1, len(value), 2):
                    result_obj[value[i]] = hydrate(value[i + 1])
            else:
                msg = f"Unknown type {kind}"
                raise ValueError(msg)
        elif isinstance(value, list):
            array: list[Any] = [None] * len(value)
            hydrated[index] = array
            for i, item in enumerate(value):
                if item != HOLE:
                    array[i] = hydrate(item)
        else:
            obj: dict[str, Any] = {}
            hydrated[index] = obj
            for name, item in value.items():
                obj[name] = hydrate(item)
        return hydrated[index]

    return hydrate(0)


def _special(index: int) -> Any:
    if index in (UNDEFINED, HOLE):
        return None
    if index == NAN:
        return math.nan
    if index == POSITIVE_INFINITY:
        return math.inf
    if index == NEGATIVE_INFINITY:
        return -math.inf
    if index == NEGATIVE_ZERO:
        return -0.0
    msg = "Invalid input"
    raise ValueError(msg)


def _name(num: int) -> str:
    name = ""
    while True:
        name = _NAME_CHARS[num % len(_NAME_CHARS)] + name
        num = num // len(_NAME_CHARS) - 1
        if num < 0:
            break
    return f"{name}0" if _RESERVED.match(name) else name


def _safe_key(key: str) -> str:
    return key if _IDENTIFIER.match(key) else stringify_string(key)


def _safe_prop(key: str) -> str:
    return f".{key}" if _IDENTIFIER.match(key) else f"[{stringify_string(key)}]"


def uneval(value: Any, replacer: Callable[[Any], str | None] | None = None) -> str:
    """Encode *value* as a JavaScript expression.

    *replacer* may claim any non-primitive value by returning the source
    text to emit in its place.
    """
    counts: dict[int, int] = {}
    things: dict[int, Any] = {}
    kinds: dict[int, str] = {}
    custom: dict[int, str] = {}
    keys: list[str] = []

    def walk(thing: Any) -> None:
        if _is_primitive(thing):
            return
        key = id(thing)
        if key in counts:
            counts[key] += 1
            return
        counts[key] = 1
        things[key] = thing

        if replacer is not None:
            replaced = replacer(thing)
            if isinstance(replaced, str):
                custom[key] = replaced
                return

        kind = kinds[key] = _classify(thing, keys)
        if kind == "Array":
            for i, item in enumerate(thing):
                keys.append(f"[{i}]")
                walk(item)
                keys.pop()
        elif kind == "Set":
            for item in thing:
                walk(item)
        elif kind == "Map":
            for map_key, item in thing.items():
                keys.append(_map_path(map_key))
                walk(item)
                keys.pop()
        elif kind == "Object":
            for name, item in thing.items():
                keys.append(_key_path(name))
                walk(item)
                keys.pop()

    walk(value)

    repeated = sorted((key for key, count in counts.items() if count > 1), key=lambda k: -counts[k])
    names = {key: _name(i) for i, key in enumerate(repeated)}

    def emit(thing: Any) -> str:
        if _is_primitive(thing):
            return _stringify_primitive(thing)
        key = id(thing)
        if key in names:
            return names[key]
        if key in custom:
            return custom[key]
        return emit_value(thing, kinds[key])

    def emit_value(thing: Any, kind: str) -> str:
        if kind == "RegExp":
            return f'new RegExp({stringify_string(thing.pattern)}, "{_regex_flags(thing)}")'
        if kind == "Date":
            return f"new Date({_timestamp(thing)})"
        if kind == "Array":
            return f"[{','.join(emit(item) for item in thing)}]"
        if kind == "Set":
            return f"new Set([{','.join(emit(item) for item in thing)}])"
        if kind == "Map":
            entries = ",".join(f"[{emit(k)},{emit(v)}]" for k, v in thing.items())
            return f"new Map([{entries}])"
        return "{" + ",".join(f"{_safe_key(k)}:{emit(v)}" for k, v in thing.items()) + "}"

    expression = emit(value)
    if not names:
        return expression

    params = []
    statements = []
    initial = []
    for key, name in names.items():
        params.append(name)
        thing = things[key]
        if key in custom:
            initial.append(custom[key])
            continue
        kind = kinds[key]
        if kind in ("RegExp", "Date"):
            initial.append(emit_value(thing, kind))
        elif kind == "Array":
            initial.append(f"Array({len(thing)})")
            statements.extend(f"{name}[{i}]={emit(item)}" for i, item in enumerate(thing))
        elif kind == "Set":
            initial.append("new Set")
            if thing:
                statements.append(f"{name}." + ".".join(f"add({emit(item)})" for item in thing))
        elif kind == "Map":
            initial.append("new Map")
            if thing:
                statements.append(
                    f"{name}." + ".".join(f"set({emit(k)}, {emit(v)})" for k, v in thing.items())
                )
        else:
            initial.append("{}")
            statements.extend(f"{name}{_safe_prop(k)}={emit(v)}" for k, v in thing.items())

    statements.append(f"return {expression}")
    return f"(function({','.join(params)}){{{';'.join(statements)}}}({','.join(initial)}))"
