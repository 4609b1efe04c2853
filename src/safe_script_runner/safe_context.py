from __future__ import annotations

import builtins
import io
import json
import math
import re
from collections import ChainMap
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any


def format_value(value: Any) -> str:
    """Render one console argument as text; containers are shown as JSON.

    Example:
        ```python
        assert format_value({"a": 1}) == '{"a": 1}'
        ```
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return "[Object]"
    return str(value)


class ConsoleRecorder:
    """Console replacement that accumulates guest output in memory.

    Example:
        ```python
        console = ConsoleRecorder()
        console.log("hello", 42)
        assert console.render() == "hello 42"
        ```
    """

    def __init__(self) -> None:
        """Start with an empty accumulator.

        Example:
            ```python
            console = ConsoleRecorder()
            ```
        """
        self._buffer = io.StringIO()

    def _write(self, prefix: str, args: tuple[Any, ...], sep: str, end: str, render: Any) -> None:
        """Append one formatted record to the accumulator.

        Example:
            ```python
            console._write("", ("x",), " ", "\\n", str)
            ```
        """
        text = (sep if isinstance(sep, str) else " ").join(render(arg) for arg in args)
        self._buffer.write(prefix + text + (end if isinstance(end, str) else "\n"))

    def log(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        """Record an informational line; also bound to guest `print`.

        Example:
            ```python
            console.log("total", 4)
            ```
        """
        self._write("", args, sep, end, format_value)

    def error(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        """Record an error line prefixed with `ERROR: `.

        Example:
            ```python
            console.error("bad input")
            ```
        """
        self._write("ERROR: ", args, sep, end, str)

    def warn(self, *args: Any, sep: str = " ", end: str = "\n", **_: Any) -> None:
        """Record a warning line prefixed with `WARN: `.

        Example:
            ```python
            console.warn("slow path")
            ```
        """
        self._write("WARN: ", args, sep, end, str)

    def render(self) -> str:
        """Return everything recorded so far, without the trailing newline.

        Example:
            ```python
            text = console.render()
            ```
        """
        return self._buffer.getvalue().rstrip("\n")


class _SealedMapping(MutableMapping):
    """Mapping whose values may change but whose key set is fixed.

    Not a `dict` subclass, so unbound `dict` methods cannot reach its storage.
    """

    __slots__ = ("_index", "_values")

    def __init__(self, source: Mapping[Any, Any]) -> None:
        """Copy `source`; its keys become the permanent key set.

        Example:
            ```python
            sealed = _SealedMapping({"a": 1})
            ```
        """
        items = list(dict(source).items())
        object.__setattr__(self, "_index", MappingProxyType({key: i for i, (key, _) in enumerate(items)}))
        object.__setattr__(self, "_values", [value for _, value in items])

    def __setattr__(self, name: str, value: Any) -> None:
        """Refuse attribute assignment so the key index cannot be swapped.

        Example:
            ```python
            sealed.extra = 1  # raises AttributeError
            ```
        """
        raise AttributeError("Cannot set attributes on a sealed object")

    def __getitem__(self, key: Any) -> Any:
        """Return the value stored under an existing key.

        Example:
            ```python
            value = sealed["a"]
            ```
        """
        return self._values[self._index[key]]

    def __setitem__(self, key: Any, value: Any) -> None:
        """Update an existing key, refusing new ones.

        Example:
            ```python
            sealed["a"] = 2
            ```
        """
        if key not in self._index:
            raise TypeError("Cannot add or remove keys of a sealed object")
        self._values[self._index[key]] = value

    def __delitem__(self, key: Any) -> None:
        """Refuse key removal; `pop`, `popitem` and `clear` route through here.

        Example:
            ```python
            del sealed["a"]  # raises TypeError
            ```
        """
        raise TypeError("Cannot add or remove keys of a sealed object")

    def __iter__(self) -> Iterator[Any]:
        """Iterate keys in insertion order.

        Example:
            ```python
            keys = list(sealed)
            ```
        """
        return iter(self._index)

    def __len__(self) -> int:
        """Return the fixed number of keys.

        Example:
            ```python
            assert len(Object.seal({"a": 1})) == 1
            ```
        """
        return len(self._index)

    def __repr__(self) -> str:
        """Render like the dict it was sealed from.

        Example:
            ```python
            repr(Object.seal({"a": 1}))
            ```
        """
        return repr(dict(self.items()))


class ModuleFacade:
    """Read-only namespace exposing a fixed set of attributes to guest code.

    Guests cannot rebind, add or delete attributes, and underscore-prefixed
    names of the wrapped module are never exposed.

    Example:
        ```python
        facade = ModuleFacade("math", {"pi": 3.14})
        assert facade.pi == 3.14
        ```
    """

    __slots__ = ("_name", "_attrs")

    def __init__(self, name: str, attrs: Mapping[str, Any]) -> None:
        """Snapshot `attrs` under a display name.

        Example:
            ```python
            facade = ModuleFacade("JSON", {"dumps": json.dumps})
            ```
        """
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_attrs", MappingProxyType(dict(attrs)))

    @classmethod
    def of_module(cls, name: str, module: Any, names: Iterable[str] | None = None) -> "ModuleFacade":
        """Wrap the public attributes of `module`, or only `names` when given.

        Example:
            ```python
            facade = ModuleFacade.of_module("math", math)
            ```
        """
        if names is None:
            names = [attr for attr in dir(module) if not attr.startswith("_")]
        return cls(name, {attr: getattr(module, attr) for attr in names})

    def __getattr__(self, attr: str) -> Any:
        """Look up an exposed attribute.

        Example:
            ```python
            pi = ModuleFacade.of_module("math", math).pi
            ```
        """
        try:
            return self._attrs[attr]
        except KeyError:
            raise AttributeError(f"'{self._name}' has no attribute '{attr}'") from None

    def __setattr__(self, attr: str, value: Any) -> None:
        """Refuse every assignment.

        Example:
            ```python
            facade.pi = 3  # raises AttributeError
            ```
        """
        raise AttributeError(f"Cannot set attributes on '{self._name}'")

    def __delattr__(self, attr: str) -> None:
        """Refuse every deletion.

        Example:
            ```python
            del facade.pi  # raises AttributeError
            ```
        """
        raise AttributeError(f"Cannot delete attributes on '{self._name}'")

    def __dir__(self) -> list[str]:
        """List the exposed attribute names.

        Example:
            ```python
            names = dir(facade)
            ```
        """
        return sorted(self._attrs)

    def __repr__(self) -> str:
        """Show the facade's display name.

        Example:
            ```python
            repr(facade)
            ```
        """
        return f"<{self._name}>"


class ObjectFacade:
    """Reduced object helpers that never reach shared class state.

    Example:
        ```python
        Object = ObjectFacade()
        assert Object.keys({"a": 1}) == ["a"]
        ```
    """

    __slots__ = ()

    @staticmethod
    def keys(obj: Mapping[Any, Any]) -> list[Any]:
        """Return the keys of a mapping as a list.

        Example:
            ```python
            Object.keys({"a": 1})
            ```
        """
        return list(obj.keys())

    @staticmethod
    def values(obj: Mapping[Any, Any]) -> list[Any]:
        """Return the values of a mapping as a list.

        Example:
            ```python
            Object.values({"a": 1})
            ```
        """
        return list(obj.values())

    @staticmethod
    def entries(obj: Mapping[Any, Any]) -> list[list[Any]]:
        """Return `[key, value]` pairs of a mapping.

        Example:
            ```python
            Object.entries({"a": 1})
            ```
        """
        return [[key, value] for key, value in obj.items()]

    @staticmethod
    def assign(target: dict[Any, Any], *sources: Mapping[Any, Any]) -> dict[Any, Any]:
        """Merge `sources` into `target` left to right and return `target`.

        Example:
            ```python
            merged = Object.assign({}, {"a": 1}, {"b": 2})
            ```
        """
        for source in sources:
            target.update(source)
        return target

    @staticmethod
    def create(proto: Mapping[Any, Any] | None, properties: Mapping[Any, Any] | None = None) -> ChainMap:
        """Create a mapping whose missing keys fall through to `proto`.

        Example:
            ```python
            child = Object.create({"kind": "base"}, {"name": "x"})
            ```
        """
        return ChainMap(dict(properties or {}), dict(proto or {}))

    @staticmethod
    def freeze(obj: Any) -> Any:
        """Return a read-only view of a mapping or sequence.

        Example:
            ```python
            frozen = Object.freeze({"a": 1})
            ```
        """
        if isinstance(obj, Mapping):
            return MappingProxyType(dict(obj))
        if isinstance(obj, (list, tuple)):
            return tuple(obj)
        if isinstance(obj, set):
            return frozenset(obj)
        return obj

    @staticmethod
    def seal(obj: Mapping[Any, Any]) -> MutableMapping[Any, Any]:
        """Return a copy of `obj` whose key set can no longer change.

        Example:
            ```python
            sealed = Object.seal({"a": 1})
            ```
        """
        return _SealedMapping(obj)

    @staticmethod
    def is_(left: Any, right: Any) -> bool:
        """Identity comparison that also treats NaN as equal to NaN.

        Example:
            ```python
            assert Object.is_(float("nan"), float("nan"))
            ```
        """
        if left is right:
            return True
        return isinstance(left, float) and isinstance(right, float) and left != left and right != right

    @staticmethod
    def has_own(obj: Any, key: Any) -> bool:
        """Return whether `key` is an own entry of a mapping.

        Example:
            ```python
            assert Object.has_own({"a": 1}, "a")
            ```
        """
        if isinstance(obj, Mapping):
            return key in obj
        return False


_RE_NAMES = (
    "compile",
    "match",
    "search",
    "fullmatch",
    "findall",
    "finditer",
    "sub",
    "split",
    "escape",
    "IGNORECASE",
    "MULTILINE",
    "DOTALL",
)

_PLAIN_BINDINGS: dict[str, Any] = {
    # numbers
    "int": int,
    "float": float,
    "complex": complex,
    "Decimal": Decimal,
    "abs": abs,
    "round": round,
    "divmod": divmod,
    "pow": pow,
    # text
    "str": str,
    "format": format,
    "repr": repr,
    "ord": ord,
    # sequences
    "list": list,
    "tuple": tuple,
    "range": range,
    "set": set,
    "frozenset": frozenset,
    "len": len,
    "enumerate": enumerate,
    "zip": zip,
    "map": map,
    "filter": filter,
    "sorted": sorted,
    "reversed": reversed,
    "sum": sum,
    "min": min,
    "max": max,
    "any": any,
    "all": all,
    "iter": iter,
    "next": next,
    "slice": slice,
    "bool": bool,
    # dates
    "datetime": datetime,
    "date": date,
    "time": time,
    "timedelta": timedelta,
    # structured data and patterns
    "dict": dict,
    "isinstance": isinstance,
    # errors
    "Exception": Exception,
    "ValueError": ValueError,
    "TypeError": TypeError,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "ZeroDivisionError": ZeroDivisionError,
    "ArithmeticError": ArithmeticError,
    "RuntimeError": RuntimeError,
    "AssertionError": AssertionError,
    "StopIteration": StopIteration,
    "NameError": NameError,
    # class statements
    "__build_class__": builtins.__build_class__,
}


def create_safe_context() -> dict[str, Any]:
    """Build the fixed name-to-capability mapping visible to guest code.

    Each call returns a new mapping with a fresh console accumulator and fresh
    read-only facades, so nothing one guest rebinds is visible to the next.

    Example:
        ```python
        context = create_safe_context()
        context["print"]("hi")
        assert context["console"].render() == "hi"
        ```
    """
    console = ConsoleRecorder()
    context = dict(_PLAIN_BINDINGS)
    context["console"] = console
    context["print"] = console.log
    context["Object"] = ObjectFacade()
    context["math"] = ModuleFacade.of_module("math", math)
    context["JSON"] = ModuleFacade("JSON", {"dumps": json.dumps, "loads": json.loads})
    context["re"] = ModuleFacade.of_module("re", re, _RE_NAMES)
    return context
