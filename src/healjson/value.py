"""Parsed value tree.

A :data:`Value` is a tagged union of small frozen dataclasses.  Each node
(except :class:`Null` and :class:`AnyOf`) carries a :class:`CompletionState`:
``INCOMPLETE`` means the node was auto-closed at the end of the input rather
than terminated by its own delimiter.  Nodes also carry the parse-time repairs
(``fixes``) that produced them, which the coercer replays into its flag
tracker.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .flags import Flag
from .types import CompletionState, StringKind

_COMPLETE = CompletionState.COMPLETE


@dataclass(frozen=True, slots=True)
class Null:
    fixes: tuple[Flag, ...] = ()

    @property
    def completion(self) -> CompletionState:
        return _COMPLETE


@dataclass(frozen=True, slots=True)
class Bool:
    value: bool
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()


@dataclass(frozen=True, slots=True)
class Number:
    value: int | float
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()


@dataclass(frozen=True, slots=True)
class String:
    value: str
    kind: StringKind = StringKind.DOUBLE_QUOTED
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()
    # language tag split off a triple-backtick block
    lang: str | None = None


@dataclass(frozen=True, slots=True)
class Array:
    items: tuple[Value, ...]
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()


@dataclass(frozen=True, slots=True)
class Object:
    entries: tuple[tuple[str, Value], ...]
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()

    def keys(self) -> list[str]:
        return [k for k, _ in self.entries]

    def get(self, key: str) -> Value | None:
        for k, v in self.entries:
            if k == key:
                return v
        return None


@dataclass(frozen=True, slots=True)
class Markdown:
    tag: str
    inner: Value
    completion: CompletionState = _COMPLETE
    fixes: tuple[Flag, ...] = ()


@dataclass(frozen=True, slots=True)
class AnyOf:
    """Several interpretations of the same text; coercion picks one."""

    candidates: tuple[Value, ...]
    raw: str
    fixes: tuple[Flag, ...] = ()

    @property
    def completion(self) -> CompletionState:
        if any(completion_of(c) is CompletionState.INCOMPLETE for c in self.candidates):
            return CompletionState.INCOMPLETE
        return _COMPLETE


Value = Null | Bool | Number | String | Array | Object | Markdown | AnyOf

VALUE_TYPES: tuple[type, ...] = (Null, Bool, Number, String, Array, Object, Markdown, AnyOf)


def completion_of(value: Value) -> CompletionState:
    return value.completion


def with_fixes(value: Value, *fixes: Flag) -> Value:
    if not fixes:
        return value
    return dataclasses.replace(value, fixes=value.fixes + fixes)


def kind_name(value: Value) -> str:
    """Short type name used in flags and error messages."""
    if isinstance(value, Null):
        return "null"
    if isinstance(value, Bool):
        return "bool"
    if isinstance(value, Number):
        return "int" if isinstance(value.value, int) else "float"
    if isinstance(value, String):
        return "string"
    if isinstance(value, Array):
        return "array"
    if isinstance(value, Object):
        return "object"
    if isinstance(value, Markdown):
        return "markdown"
    return "anyof"


def to_python(value: Value) -> Any:
    """Convert a value tree to plain Python data (first interpretation of ``AnyOf``)."""
    if isinstance(value, Null):
        return None
    if isinstance(value, (Bool, Number, String)):
        return value.value
    if isinstance(value, Array):
        return [to_python(v) for v in value.items]
    if isinstance(value, Object):
        return {k: to_python(v) for k, v in value.entries}
    if isinstance(value, Markdown):
        return to_python(value.inner)
    if isinstance(value, AnyOf):
        return to_python(value.candidates[0]) if value.candidates else value.raw
    raise TypeError(f"not a value node: {type(value).__name__}")


def from_python(obj: Any, completion: CompletionState = _COMPLETE) -> Value:
    """Build a value tree from plain Python data (e.g. ``json.loads`` output)."""
    if isinstance(obj, VALUE_TYPES):
        return obj
    if isinstance(obj, Enum):
        obj = obj.value
    if obj is None:
        return Null()
    if isinstance(obj, bool):
        return Bool(obj, completion)
    if isinstance(obj, (int, float)):
        return Number(obj, completion)
    if isinstance(obj, str):
        return String(obj, StringKind.DOUBLE_QUOTED, completion)
    if isinstance(obj, dict):
        return Object(
            tuple((str(k), from_python(v, completion)) for k, v in obj.items()), completion
        )
    if isinstance(obj, (list, tuple, set, frozenset)):
        return Array(tuple(from_python(v, completion) for v in obj), completion)
    # pydantic models are rendered through their JSON form
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return from_python(dump(mode="json"), completion)
    return String(str(obj), StringKind.RAW, completion)
